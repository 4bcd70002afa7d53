"""
Vue de la commande client telle que la consomment les expéditions.

La commande est un agrégat externe : on n'en lit qu'un instantané et on ne
la modifie qu'à travers l'OrderGateway.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class OrderStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


# Une expédition ne peut être créée que pour une commande en préparation.
FULFILLMENT_READY_STATUSES = frozenset({OrderStatus.PROCESSING})


@dataclass(frozen=True)
class OrderSnapshot:
    id: str
    status: OrderStatus
    items: tuple[dict, ...] = field(default_factory=tuple)
    shipping_address: Optional[dict] = None

    @property
    def is_fulfillment_ready(self) -> bool:
        return self.status in FULFILLMENT_READY_STATUSES
