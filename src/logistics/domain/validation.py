"""
Validation des champs obligatoires des demandes.

Une valeur absente ou mal typée est refusée ici, avant toute écriture,
plutôt que par une contrainte NOT NULL au moment du flush.
"""

from __future__ import annotations

from typing import Type

from logistics.domain import errors


def require_text(
    value: object,
    field: str,
    error: Type[errors.ValidationFailed] = errors.ValidationFailed,
) -> str:
    if not isinstance(value, str) or not value.strip():
        raise error(f"Le champ {field} doit être une chaîne non vide (reçu {value!r})")
    return value


def optional_text(
    value: object,
    field: str,
    error: Type[errors.ValidationFailed] = errors.ValidationFailed,
) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise error(f"Le champ {field} doit être une chaîne (reçu {value!r})")
    return value


def require_price(value: object) -> float:
    # bool est une sous-classe d'int
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise errors.ValidationFailed(f"Prix invalide : {value!r}")
    return float(value)


def require_flag(value: object, field: str) -> bool:
    if not isinstance(value, bool):
        raise errors.ValidationFailed(f"Le champ {field} doit être un booléen (reçu {value!r})")
    return value
