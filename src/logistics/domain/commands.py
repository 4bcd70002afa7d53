"""
Commands du domaine.

Les commands représentent des intentions : quelque chose que
le système doit faire. Contrairement aux events (faits passés),
les commands sont des demandes qui peuvent échouer.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class Command:
    """Classe de base pour toutes les commands."""
    pass


# --- Inventaire ---


@dataclass(frozen=True)
class RegisterProduct(Command):
    """Demande d'enregistrement d'un produit et de son stock initial."""

    product_id: str
    sku: str
    name: str
    price: float = 0.0
    quantity: int = 0
    is_active: bool = True


@dataclass(frozen=True)
class ApplyTransaction(Command):
    """
    Demande d'écriture d'un mouvement de stock.

    `strict=True` transforme un manque de stock en erreur, quel que soit
    le type (retrait explicite).
    """

    product_id: str
    type: str
    quantity: int
    reason: Optional[str] = None
    reference_id: Optional[str] = None
    performed_by: Optional[str] = None
    notes: Optional[str] = None
    strict: bool = False


@dataclass(frozen=True)
class ApplyBulkTransactions(Command):
    """Même mouvement appliqué à plusieurs produits, tout ou rien."""

    type: str
    lines: tuple[tuple[str, int], ...]
    reason: Optional[str] = None
    performed_by: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class AdjustStock(Command):
    """Demande d'alignement du stock sur une quantité comptée."""

    product_id: str
    target_quantity: int
    reason: Optional[str] = None
    performed_by: Optional[str] = None
    notes: Optional[str] = None


# --- Expéditions ---


@dataclass(frozen=True)
class CreateShipment(Command):
    """
    Demande de création d'une expédition pour une commande client.

    Sans `items`, l'expédition reprend les lignes de la commande.
    """

    order_id: str
    carrier: str
    items: Optional[tuple[dict, ...]] = None
    tracking_number: Optional[str] = None
    estimated_delivery_at: Optional[datetime] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class TransitionShipment(Command):
    """Demande de changement de statut d'une expédition."""

    shipment_id: str
    status: str
    location: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class CancelShipment(Command):
    shipment_id: str
    reason: str
    location: Optional[str] = None
