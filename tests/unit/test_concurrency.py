"""
Écritures concurrentes sur un même produit.

Plusieurs threads partagent un même message bus. Le stockage en mémoire
ci-dessous se comporte comme la base : chaque Unit of Work travaille sur
sa propre copie des agrégats, et le commit vérifie sous verrou que la
version lue n'a pas bougé (sinon ConcurrencyConflict, que le bus rejoue).
"""

from __future__ import annotations

import dataclasses
import threading
import time

from logistics.adapters.catalog import AbstractCatalog, CatalogProduct
from logistics.adapters.notifications import AbstractNotifications
from logistics.adapters.repository import AbstractShipmentRepository, AbstractStockRepository
from logistics.config import Settings
from logistics.domain import commands, errors
from logistics.domain.ledger import InventoryTransaction, ProductStock
from logistics.service_layer import bootstrap, unit_of_work


@dataclasses.dataclass(frozen=True)
class StockRecord:
    quantity: int
    initial_quantity: int
    version_number: int
    transactions: tuple[InventoryTransaction, ...]


class SharedStore:
    def __init__(self, products: list[CatalogProduct]):
        self.lock = threading.Lock()
        self.catalog = {p.id: p for p in products}
        self.stocks: dict[str, StockRecord] = {}


class SnapshotStockRepository(AbstractStockRepository):
    def __init__(self, store: SharedStore):
        super().__init__()
        self.store = store
        self.loaded: dict[str, ProductStock] = {}
        self.read_versions: dict[str, int | None] = {}

    def _add(self, stock: ProductStock) -> None:
        self.loaded[stock.product_id] = stock
        self.read_versions.setdefault(stock.product_id, None)

    def _get(self, product_id: str) -> ProductStock | None:
        if product_id in self.loaded:
            return self.loaded[product_id]
        with self.store.lock:
            record = self.store.stocks.get(product_id)
        # Élargit la fenêtre entre lecture et commit.
        time.sleep(0.001)
        if record is None:
            return None
        self.read_versions[product_id] = record.version_number
        stock = ProductStock(
            product_id,
            quantity=record.quantity,
            initial_quantity=record.initial_quantity,
            version_number=record.version_number,
            transactions=list(record.transactions),
        )
        self.loaded[product_id] = stock
        return stock


class NoShipments(AbstractShipmentRepository):
    def _add(self, item):
        raise NotImplementedError

    def _get(self, shipment_id):
        return None

    def _get_by_tracking_number(self, tracking_number):
        return None

    def _get_active_for_order(self, order_id):
        return None


class SnapshotCatalog(AbstractCatalog):
    def __init__(self, store: SharedStore):
        self.store = store
        self.pending: dict[str, int] = {}

    def find_by_id(self, product_id: str) -> CatalogProduct | None:
        with self.store.lock:
            return self.store.catalog.get(product_id)

    def find_by_sku(self, sku: str) -> CatalogProduct | None:
        with self.store.lock:
            return next((p for p in self.store.catalog.values() if p.sku == sku), None)

    def add(self, product: CatalogProduct) -> None:
        raise NotImplementedError

    def update_quantity(self, product_id: str, quantity: int) -> None:
        self.pending[product_id] = quantity


class SnapshotUnitOfWork(unit_of_work.AbstractUnitOfWork):
    def __init__(self, store: SharedStore):
        self.store = store
        self._local = threading.local()

    @property
    def stocks(self) -> SnapshotStockRepository:
        return self._local.stocks

    @property
    def shipments(self) -> NoShipments:
        return self._local.shipments

    @property
    def catalog(self) -> SnapshotCatalog:
        return self._local.catalog

    def __enter__(self) -> SnapshotUnitOfWork:
        self._local.stocks = SnapshotStockRepository(self.store)
        self._local.shipments = NoShipments()
        self._local.catalog = SnapshotCatalog(self.store)
        return super().__enter__()

    def _commit(self) -> None:
        stocks = self.stocks
        with self.store.lock:
            for product_id in stocks.loaded:
                current = self.store.stocks.get(product_id)
                current_version = current.version_number if current else None
                if current_version != stocks.read_versions[product_id]:
                    raise errors.ConcurrencyConflict(f"Version obsolète pour {product_id}")
            for product_id, stock in stocks.loaded.items():
                self.store.stocks[product_id] = StockRecord(
                    quantity=stock.quantity,
                    initial_quantity=stock.initial_quantity,
                    version_number=stock.version_number,
                    transactions=tuple(stock.transactions),
                )
            for product_id, quantity in self.catalog.pending.items():
                self.store.catalog[product_id] = dataclasses.replace(
                    self.store.catalog[product_id], quantity=quantity
                )

    def rollback(self) -> None:
        # Les copies locales sont abandonnées au prochain __enter__.
        pass


class NullNotifications(AbstractNotifications):
    def send(self, destination: str, message: str) -> None:
        pass


K = 10


def test_aucune_mise_à_jour_perdue():
    store = SharedStore([CatalogProduct("prod-1", "LAMPE-BLEUE", "Lampe bleue", 29.9, 100)])
    store.stocks["prod-1"] = StockRecord(100, 100, 0, ())
    bus = bootstrap.bootstrap(
        start_orm=False,
        uow=SnapshotUnitOfWork(store),
        notifications_adapter=NullNotifications(),
        settings=Settings(max_attempts=K, low_stock_threshold=0),
    )
    mouvements = [("stock_in", 7) if i % 2 else ("sale", 3) for i in range(K)]
    échecs: list[Exception] = []

    def écrire(tx_type: str, quantité: int) -> None:
        try:
            bus.handle(commands.ApplyTransaction("prod-1", tx_type, quantité))
        except Exception as e:
            échecs.append(e)

    threads = [threading.Thread(target=écrire, args=m) for m in mouvements]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert échecs == []
    attendu = 100 + sum(q if t == "stock_in" else -q for t, q in mouvements)
    record = store.stocks["prod-1"]
    assert record.quantity == attendu
    assert store.catalog["prod-1"].quantity == attendu

    # Ordre total : séquences contiguës, chaque écriture part de la précédente.
    assert [tx.sequence for tx in record.transactions] == list(range(1, K + 1))
    précédente = record.initial_quantity
    for tx in record.transactions:
        assert tx.previous_quantity == précédente
        précédente = tx.new_quantity
    assert précédente == attendu
