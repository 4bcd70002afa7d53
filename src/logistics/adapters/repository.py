"""
Pattern Repository.

Le repository fournit une abstraction sur la couche de persistance.
Il expose une interface de type collection (add, get) qui masque
les détails de l'accès aux données.

Deux repositories :
- StockRepository : le journal d'inventaire (ProductStock et ses écritures)
- ShipmentRepository : les expéditions et leur historique de suivi
"""

from __future__ import annotations

import abc

from sqlalchemy import select
from sqlalchemy.orm import Session

from logistics.domain import ledger, shipment


class AbstractStockRepository(abc.ABC):
    """
    Interface abstraite du journal d'inventaire.

    Le pattern Template Method est utilisé : les méthodes publiques
    (add, get) gèrent le tracking via `seen`, puis délèguent
    aux méthodes abstraites préfixées _ que les sous-classes implémentent.
    """

    seen: set[ledger.ProductStock]

    def __init__(self) -> None:
        # `seen` trace tous les agrégats consultés pendant la transaction,
        # ce qui permet au Unit of Work de collecter leurs événements.
        self.seen: set[ledger.ProductStock] = set()

    def add(self, stock: ledger.ProductStock) -> None:
        self._add(stock)
        self.seen.add(stock)

    def get(self, product_id: str) -> ledger.ProductStock | None:
        """Récupère le stock d'un produit et le marque comme vu."""
        stock = self._get(product_id)
        if stock:
            self.seen.add(stock)
        return stock

    @abc.abstractmethod
    def _add(self, stock: ledger.ProductStock) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, product_id: str) -> ledger.ProductStock | None:
        raise NotImplementedError


class SqlAlchemyStockRepository(AbstractStockRepository):
    """
    Implémentation SQLAlchemy du journal.

    `get` ne charge pas tout le journal du produit : seulement le stock et
    sa dernière écriture, quel que soit le nombre d'écritures passées.

    La lecture pose un verrou de ligne (SELECT ... FOR UPDATE) sur les
    moteurs qui le supportent ; le version_id_col couvre les autres.
    """

    def __init__(self, session: Session):
        super().__init__()
        self.session = session

    def _add(self, stock: ledger.ProductStock) -> None:
        self.session.add(stock)

    def _get(self, product_id: str) -> ledger.ProductStock | None:
        stock = self.session.scalars(
            select(ledger.ProductStock)
            .filter_by(product_id=product_id)
            .with_for_update()
        ).first()
        if stock is not None:
            # Seule la dernière écriture sert à vérifier le cache ; le
            # rejeu complet est fait côté lecture (views.stock_audit).
            stock.last_transaction = self.session.scalars(
                select(ledger.InventoryTransaction)
                .filter_by(product_id=product_id)
                .order_by(ledger.InventoryTransaction.sequence.desc())
                .limit(1)
            ).first()
        return stock


class AbstractShipmentRepository(abc.ABC):
    seen: set[shipment.Shipment]

    def __init__(self) -> None:
        self.seen: set[shipment.Shipment] = set()

    def add(self, item: shipment.Shipment) -> None:
        self._add(item)
        self.seen.add(item)

    def get(self, shipment_id: str) -> shipment.Shipment | None:
        item = self._get(shipment_id)
        if item:
            self.seen.add(item)
        return item

    def get_by_tracking_number(self, tracking_number: str) -> shipment.Shipment | None:
        item = self._get_by_tracking_number(tracking_number)
        if item:
            self.seen.add(item)
        return item

    def get_active_for_order(self, order_id: str) -> shipment.Shipment | None:
        """Retourne l'expédition non annulée d'une commande, s'il y en a une."""
        item = self._get_active_for_order(order_id)
        if item:
            self.seen.add(item)
        return item

    @abc.abstractmethod
    def _add(self, item: shipment.Shipment) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, shipment_id: str) -> shipment.Shipment | None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get_by_tracking_number(self, tracking_number: str) -> shipment.Shipment | None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get_active_for_order(self, order_id: str) -> shipment.Shipment | None:
        raise NotImplementedError


class SqlAlchemyShipmentRepository(AbstractShipmentRepository):

    def __init__(self, session: Session):
        super().__init__()
        self.session = session

    def _add(self, item: shipment.Shipment) -> None:
        self.session.add(item)

    def _get(self, shipment_id: str) -> shipment.Shipment | None:
        return self.session.scalars(
            select(shipment.Shipment)
            .filter_by(id=shipment_id)
            .with_for_update()
        ).first()

    def _get_by_tracking_number(self, tracking_number: str) -> shipment.Shipment | None:
        return self.session.scalars(
            select(shipment.Shipment).filter_by(tracking_number=tracking_number)
        ).first()

    def _get_active_for_order(self, order_id: str) -> shipment.Shipment | None:
        return self.session.scalars(
            select(shipment.Shipment)
            .filter_by(order_id=order_id)
            .filter(shipment.Shipment.status != shipment.ShipmentStatus.CANCELLED)
        ).first()
