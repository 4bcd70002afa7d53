"""
Configuration de l'application.

Les réglages sont lus depuis les variables d'environnement préfixées
LOGISTICS_ (et un éventuel fichier .env), validés par pydantic-settings.
"""

from __future__ import annotations

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LOGISTICS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_uri: str = "sqlite:///logistics.db"
    log_level: str = "INFO"

    smtp_host: str = "localhost"
    smtp_port: int = 587
    sender_email: str = "logistique@example.com"
    stock_alert_email: str = "stock@example.com"
    shipping_alert_email: str = "expeditions@example.com"

    # Nombre de tentatives d'une command en cas d'écriture concurrente.
    max_attempts: int = 5
    low_stock_threshold: int = 10
    default_delivery_days: int = 3


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings

