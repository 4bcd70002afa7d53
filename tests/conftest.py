"""
Configuration partagée pour les tests.

Le mapping ORM est démarré une seule fois pour toute la session de tests.
Cela permet aux tests d'intégration et e2e d'utiliser SQLAlchemy
sans interférer avec les tests unitaires.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from logistics.adapters import orm
from logistics.adapters.notifications import AbstractNotifications
from logistics.config import Settings
from logistics.domain.orders import OrderSnapshot, OrderStatus
from logistics.service_layer import bootstrap, unit_of_work


@pytest.fixture(scope="session", autouse=True)
def mappers():
    """Démarre le mapping ORM une fois pour toute la session."""
    orm.start_mappers()


@pytest.fixture
def settings():
    return Settings(
        database_uri="sqlite:///:memory:",
        low_stock_threshold=10,
        max_attempts=5,
        default_delivery_days=3,
    )


@pytest.fixture
def sqlite_session_factory():
    """Base SQLite en mémoire avec toutes les tables."""
    engine = create_engine("sqlite:///:memory:")
    orm.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    """
    Base SQLite sur disque : plusieurs connexions voient les mêmes données,
    ce qui permet de simuler deux transactions concurrentes.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'logistics.db'}")
    orm.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


class FakeNotifications(AbstractNotifications):
    def __init__(self):
        self.envoyées = []

    def send(self, destination: str, message: str) -> None:
        self.envoyées.append({"destination": destination, "message": message})


@pytest.fixture
def notifications():
    return FakeNotifications()


@pytest.fixture
def sqlite_bus(sqlite_session_factory, settings, notifications):
    """Message bus configuré avec SQLite en mémoire."""
    uow = unit_of_work.SqlAlchemyUnitOfWork(session_factory=sqlite_session_factory)
    return bootstrap.bootstrap(
        start_orm=False,
        uow=uow,
        notifications_adapter=notifications,
        settings=settings,
    )


@pytest.fixture
def add_order(sqlite_bus):
    """Insère une commande client (par défaut en préparation)."""

    def _add_order(order_id="cmd-1", status=OrderStatus.PROCESSING, items=None):
        items = items or ({"product_id": "prod-1", "sku": "LAMPE-BLEUE", "quantity": 2},)
        with sqlite_bus.uow as uow:
            uow.orders.add(OrderSnapshot(order_id, status, tuple(items)))
            uow.commit()

    return _add_order
