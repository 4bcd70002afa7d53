"""
Events du domaine.

Les events représentent des faits qui se sont produits dans le système.
Ils sont immuables et nommés au passé (quelque chose s'est passé).
Ils sont émis par les agrégats et traités après le commit.
"""

from dataclasses import dataclass
from typing import Optional


class Event:
    """Classe de base pour tous les events du domaine."""
    pass


# --- Stock ---


@dataclass(frozen=True)
class StockLevelChanged(Event):
    """Une écriture a été ajoutée au journal d'un produit."""

    product_id: str
    transaction_id: str
    type: str
    previous_quantity: int
    new_quantity: int


@dataclass(frozen=True)
class LowStock(Event):
    """Le stock vient de passer sous le seuil d'alerte."""

    product_id: str
    quantity: int
    threshold: int


@dataclass(frozen=True)
class OutOfStock(Event):
    """Le stock d'un produit vient d'atteindre zéro."""

    product_id: str


# --- Expéditions ---


@dataclass(frozen=True)
class ShipmentCreated(Event):
    shipment_id: str
    order_id: str
    tracking_number: str
    carrier: str


@dataclass(frozen=True)
class ShipmentStatusChanged(Event):
    shipment_id: str
    order_id: str
    previous_status: str
    status: str
    location: Optional[str] = None


@dataclass(frozen=True)
class ShipmentDelivered(Event):
    shipment_id: str
    order_id: str
    tracking_number: str


@dataclass(frozen=True)
class ShipmentCancelled(Event):
    shipment_id: str
    order_id: str
    reason: Optional[str] = None
