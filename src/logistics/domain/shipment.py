"""
Modèle de domaine des expéditions.

Une Shipment suit l'acheminement d'une commande client. Son statut évolue
selon un graphe de transitions défini une seule fois ici (TRANSITIONS) ;
toute vérification de transition passe par `can_transition`.

Graphe :
    PENDING          → PICKED_UP, CANCELLED, FAILED
    PICKED_UP        → IN_TRANSIT, FAILED
    IN_TRANSIT       → OUT_FOR_DELIVERY, RETURNED, CANCELLED, FAILED
    OUT_FOR_DELIVERY → DELIVERED, RETURNED
    RETURNED         → IN_TRANSIT          (nouvelle tentative)
    FAILED           → PENDING             (reprise manuelle)
    DELIVERED, CANCELLED : terminaux
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Optional

from logistics.domain import errors, events, validation

DEFAULT_DELIVERY_DAYS = 3


class ShipmentStatus(Enum):
    PENDING = "pending"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    RETURNED = "returned"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: ShipmentStatus | str) -> ShipmentStatus:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise errors.InvalidStatus(f"Statut d'expédition invalide : {value!r}") from None

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self]

    @property
    def description(self) -> str:
        return STATUS_DESCRIPTIONS[self]


TRANSITIONS: dict[ShipmentStatus, frozenset[ShipmentStatus]] = {
    ShipmentStatus.PENDING: frozenset({
        ShipmentStatus.PICKED_UP,
        ShipmentStatus.CANCELLED,
        ShipmentStatus.FAILED,
    }),
    ShipmentStatus.PICKED_UP: frozenset({
        ShipmentStatus.IN_TRANSIT,
        ShipmentStatus.FAILED,
    }),
    ShipmentStatus.IN_TRANSIT: frozenset({
        ShipmentStatus.OUT_FOR_DELIVERY,
        ShipmentStatus.RETURNED,
        ShipmentStatus.CANCELLED,
        ShipmentStatus.FAILED,
    }),
    ShipmentStatus.OUT_FOR_DELIVERY: frozenset({
        ShipmentStatus.DELIVERED,
        ShipmentStatus.RETURNED,
    }),
    ShipmentStatus.RETURNED: frozenset({ShipmentStatus.IN_TRANSIT}),
    ShipmentStatus.FAILED: frozenset({ShipmentStatus.PENDING}),
    ShipmentStatus.DELIVERED: frozenset(),  # terminal
    ShipmentStatus.CANCELLED: frozenset(),  # terminal
}

STATUS_DESCRIPTIONS = {
    ShipmentStatus.PENDING: "Expédition créée - En préparation",
    ShipmentStatus.PICKED_UP: "Colis pris en charge par le transporteur",
    ShipmentStatus.IN_TRANSIT: "En transit vers la destination",
    ShipmentStatus.OUT_FOR_DELIVERY: "En cours de livraison",
    ShipmentStatus.DELIVERED: "Livré",
    ShipmentStatus.RETURNED: "Retourné à l'expéditeur",
    ShipmentStatus.CANCELLED: "Expédition annulée",
    ShipmentStatus.FAILED: "Échec de l'acheminement",
}


def can_transition(current: ShipmentStatus, target: ShipmentStatus) -> bool:
    return target in TRANSITIONS[current]


class Carrier(Enum):
    DHL = "dhl"
    FEDEX = "fedex"
    UPS = "ups"
    CORREOS_MEXICO = "correos_mexico"
    PAQUETEXPRESS = "paquetexpress"

    @classmethod
    def parse(cls, value: Carrier | str) -> Carrier:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise errors.InvalidCarrier(f"Transporteur inconnu : {value!r}") from None


TRACKING_NUMBER_PATTERN = re.compile(r"^TRK-[0-9A-F]{12}$")


def generate_tracking_number() -> str:
    return f"TRK-{uuid.uuid4().hex[:12].upper()}"


def is_generated_tracking_number(value: str) -> bool:
    return bool(TRACKING_NUMBER_PATTERN.match(value))


@dataclass
class ShipmentItem:
    """Ligne d'une expédition."""

    product_id: str
    sku: str
    quantity: int
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> ShipmentItem:
        if not isinstance(data, dict):
            raise errors.InvalidShipmentItems(f"Ligne d'expédition invalide : {data!r}")
        try:
            item = cls(
                product_id=validation.require_text(
                    data["product_id"], "product_id", errors.InvalidShipmentItems
                ),
                sku=validation.require_text(data["sku"], "sku", errors.InvalidShipmentItems),
                quantity=data["quantity"],
                name=validation.optional_text(data.get("name"), "name", errors.InvalidShipmentItems),
            )
        except KeyError as e:
            raise errors.InvalidShipmentItems(f"Champ manquant dans une ligne : {e.args[0]}") from None
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity < 1:
            raise errors.InvalidShipmentItems(
                f"La quantité de {item.sku} doit être au moins 1"
            )
        return item

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "sku": self.sku,
            "quantity": self.quantity,
            "name": self.name,
        }


@dataclass
class TrackingEntry:
    """Entrée de l'historique de suivi ; une par transition."""

    status: ShipmentStatus
    description: str
    timestamp: datetime
    location: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "description": self.description,
            "location": self.location,
            "notes": self.notes,
            "timestamp": self.timestamp,
        }


class Shipment:
    """
    Agrégat racine d'une expédition.

    Les dates shipped_at, delivered_at et cancelled_at ne sont posées
    qu'une fois, par la transition qui atteint le statut correspondant.
    L'historique de suivi est en ajout seul.
    """

    def __init__(
        self,
        id: str,
        order_id: str,
        carrier: Carrier,
        items: list[ShipmentItem],
        tracking_number: str,
        status: ShipmentStatus = ShipmentStatus.PENDING,
        estimated_delivery_at: Optional[datetime] = None,
        notes: Optional[str] = None,
        created_at: Optional[datetime] = None,
        version_number: int = 0,
    ):
        self.id = id
        self.order_id = order_id
        self.carrier = carrier
        self.items = items
        self.tracking_number = tracking_number
        self.status = status
        self.estimated_delivery_at = estimated_delivery_at
        self.notes = notes
        self.created_at = created_at or datetime.now(timezone.utc)
        self.updated_at = self.created_at
        self.shipped_at: Optional[datetime] = None
        self.delivered_at: Optional[datetime] = None
        self.cancelled_at: Optional[datetime] = None
        self.cancellation_reason: Optional[str] = None
        self.current_location: Optional[str] = None
        self.version_number = version_number
        self.tracking_history: list[TrackingEntry] = []
        self.events: list[events.Event] = []

    def __repr__(self) -> str:
        return f"<Shipment {self.tracking_number} {self.status.value}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Shipment):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @classmethod
    def create(
        cls,
        order_id: str,
        carrier: Carrier | str,
        items: Iterable[dict | ShipmentItem],
        tracking_number: Optional[str] = None,
        estimated_delivery_at: Optional[datetime] = None,
        notes: Optional[str] = None,
        delivery_days: int = DEFAULT_DELIVERY_DAYS,
        now: Optional[datetime] = None,
    ) -> Shipment:
        """Crée une expédition en attente, avec sa première entrée de suivi."""
        carrier = Carrier.parse(carrier)
        lines = [
            item if isinstance(item, ShipmentItem) else ShipmentItem.from_dict(item)
            for item in items
        ]
        if not lines:
            raise errors.InvalidShipmentItems("Une expédition doit contenir au moins une ligne")

        now = now or datetime.now(timezone.utc)
        shipment = cls(
            id=str(uuid.uuid4()),
            order_id=order_id,
            carrier=carrier,
            items=lines,
            tracking_number=(
                validation.optional_text(tracking_number, "tracking_number")
                or generate_tracking_number()
            ),
            estimated_delivery_at=estimated_delivery_at or now + timedelta(days=delivery_days),
            notes=notes,
            created_at=now,
        )
        shipment.tracking_history.append(
            TrackingEntry(
                status=ShipmentStatus.PENDING,
                description=ShipmentStatus.PENDING.description,
                timestamp=now,
                notes=notes,
            )
        )
        shipment.events.append(
            events.ShipmentCreated(
                shipment_id=shipment.id,
                order_id=order_id,
                tracking_number=shipment.tracking_number,
                carrier=carrier.value,
            )
        )
        return shipment

    @property
    def is_active(self) -> bool:
        return self.status is not ShipmentStatus.CANCELLED

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    def can_transition_to(self, target: ShipmentStatus | str) -> bool:
        return can_transition(self.status, ShipmentStatus.parse(target))

    def ensure_can_transition(self, target: ShipmentStatus | str) -> ShipmentStatus:
        """Valide la transition sans rien modifier ; retourne le statut cible."""
        target = ShipmentStatus.parse(target)
        if not can_transition(self.status, target):
            raise errors.InvalidStatusTransition(
                f"Impossible de passer de {self.status.value} à {target.value}"
            )
        return target

    def transition(
        self,
        target: ShipmentStatus | str,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        target = self.ensure_can_transition(target)
        now = now or datetime.now(timezone.utc)
        previous = self.status

        self.status = target
        if target is ShipmentStatus.PICKED_UP and self.shipped_at is None:
            self.shipped_at = now
        elif target is ShipmentStatus.DELIVERED and self.delivered_at is None:
            self.delivered_at = now
        elif target is ShipmentStatus.CANCELLED and self.cancelled_at is None:
            self.cancelled_at = now
            self.cancellation_reason = notes
        if location:
            self.current_location = location

        self.tracking_history.append(
            TrackingEntry(
                status=target,
                description=target.description,
                timestamp=now,
                location=location or self.current_location,
                notes=notes,
            )
        )
        self.updated_at = now
        self.version_number += 1

        self.events.append(
            events.ShipmentStatusChanged(
                shipment_id=self.id,
                order_id=self.order_id,
                previous_status=previous.value,
                status=target.value,
                location=location,
            )
        )
        if target is ShipmentStatus.DELIVERED:
            self.events.append(
                events.ShipmentDelivered(
                    shipment_id=self.id,
                    order_id=self.order_id,
                    tracking_number=self.tracking_number,
                )
            )
        elif target is ShipmentStatus.CANCELLED:
            self.events.append(
                events.ShipmentCancelled(
                    shipment_id=self.id, order_id=self.order_id, reason=notes
                )
            )

    def ensure_can_cancel(self) -> None:
        if self.status is ShipmentStatus.DELIVERED:
            raise errors.CannotCancelDelivered(
                "Impossible d'annuler une expédition déjà livrée"
            )
        self.ensure_can_transition(ShipmentStatus.CANCELLED)

    def cancel(
        self,
        reason: str,
        location: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self.ensure_can_cancel()
        self.transition(ShipmentStatus.CANCELLED, location=location, notes=reason, now=now)

    def to_dict(self, include_history: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_id": self.order_id,
            "tracking_number": self.tracking_number,
            "carrier": self.carrier.value,
            "status": self.status.value,
            "status_description": self.status.description,
            "items": [item.to_dict() for item in self.items],
            "total_items": self.total_items,
            "current_location": self.current_location,
            "estimated_delivery_at": self.estimated_delivery_at,
            "shipped_at": self.shipped_at,
            "delivered_at": self.delivered_at,
            "cancelled_at": self.cancelled_at,
            "cancellation_reason": self.cancellation_reason,
            "notes": self.notes,
            "created_at": self.created_at,
        }
        if include_history:
            data["tracking_history"] = [entry.to_dict() for entry in self.tracking_history]
        return data
