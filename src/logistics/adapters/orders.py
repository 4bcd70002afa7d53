"""
Adapter pour les commandes clients (OrderGateway).

Les expéditions ne modifient jamais directement les champs d'une commande :
elles passent par les trois opérations de la gateway, qui vérifient le
statut courant et ajoutent chacune une entrée à l'historique de la commande.
"""

from __future__ import annotations

import abc
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from logistics.adapters import orm
from logistics.domain import errors
from logistics.domain.orders import OrderSnapshot, OrderStatus


class AbstractOrderGateway(abc.ABC):
    """
    Interface de la gateway de commandes.

    Les méthodes publiques valident la transition côté commande puis
    délèguent l'écriture à `_set_status`.
    """

    def find_by_id(self, order_id: str) -> OrderSnapshot | None:
        return self._get(order_id)

    def mark_shipped(self, order_id: str, tracking_number: str) -> None:
        self._change_status(
            order_id,
            expected=OrderStatus.PROCESSING,
            status=OrderStatus.SHIPPED,
            notes=f"Expédition créée - Suivi : {tracking_number}",
        )

    def mark_delivered(self, order_id: str) -> None:
        self._change_status(
            order_id,
            expected=OrderStatus.SHIPPED,
            status=OrderStatus.DELIVERED,
            notes="Livrée",
        )

    def revert_to_processing(self, order_id: str, reason: Optional[str]) -> None:
        self._change_status(
            order_id,
            expected=OrderStatus.SHIPPED,
            status=OrderStatus.PROCESSING,
            notes=f"Expédition annulée : {reason}",
        )

    def _change_status(
        self,
        order_id: str,
        expected: OrderStatus,
        status: OrderStatus,
        notes: str,
    ) -> None:
        order = self._get(order_id)
        if order is None:
            raise errors.OrderNotFound(f"Commande introuvable : {order_id}")
        if order.status is not expected:
            raise errors.InvalidOrderStatus(
                f"La commande {order_id} est {order.status.value}, "
                f"{expected.value} attendu"
            )
        self._set_status(order_id, status, notes)

    @abc.abstractmethod
    def add(self, order: OrderSnapshot) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, order_id: str) -> OrderSnapshot | None:
        raise NotImplementedError

    @abc.abstractmethod
    def _set_status(self, order_id: str, status: OrderStatus, notes: str) -> None:
        raise NotImplementedError


class SqlAlchemyOrderGateway(AbstractOrderGateway):
    """
    Gateway SQL partageant la session du Unit of Work.

    Le changement de statut de la commande est donc commité dans la même
    transaction que l'expédition : l'un n'est jamais visible sans l'autre.
    """

    def __init__(self, session: Session):
        self.session = session

    def add(self, order: OrderSnapshot) -> None:
        self.session.execute(
            insert(orm.orders).values(
                id=order.id,
                status=order.status.value,
                items=list(order.items),
                shipping_address=order.shipping_address,
            )
        )

    def _get(self, order_id: str) -> OrderSnapshot | None:
        row = self.session.execute(
            select(orm.orders).where(orm.orders.c.id == order_id)
        ).first()
        if row is None:
            return None
        return OrderSnapshot(
            id=row.id,
            status=OrderStatus(row.status),
            items=tuple(row.items),
            shipping_address=row.shipping_address,
        )

    def _set_status(self, order_id: str, status: OrderStatus, notes: str) -> None:
        self.session.execute(
            update(orm.orders)
            .where(orm.orders.c.id == order_id)
            .values(status=status.value)
        )
        self.session.execute(
            insert(orm.order_status_history).values(
                order_id=order_id,
                status=status.value,
                notes=notes,
                timestamp=datetime.now(timezone.utc),
            )
        )

    def status_history(self, order_id: str) -> list[dict]:
        rows = self.session.execute(
            select(orm.order_status_history)
            .where(orm.order_status_history.c.order_id == order_id)
            .order_by(orm.order_status_history.c.id)
        )
        return [
            {"status": r.status, "notes": r.notes, "timestamp": r.timestamp}
            for r in rows
        ]
