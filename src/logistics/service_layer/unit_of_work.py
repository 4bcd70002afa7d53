"""
Pattern Unit of Work.

Le Unit of Work (UoW) gère la notion de transaction atomique.
Il coordonne l'écriture en base de données et la collecte
des événements émis par les agrégats au cours de la transaction.

Le UoW agit comme un context manager :
    with uow:
        # ... opérations sur les repositories et les gateways ...
        uow.commit()

Sans commit(), tout est annulé à la sortie du bloc : un échec après
validation ne laisse aucune écriture partielle.
"""

from __future__ import annotations

import abc
import threading
from typing import Iterator

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from logistics.adapters import catalog, orders, repository
from logistics.config import Settings
from logistics.domain import errors, events


def engine_from_settings(settings: Settings) -> Engine:
    return create_engine(settings.database_uri, isolation_level="SERIALIZABLE")


class AbstractUnitOfWork(abc.ABC):
    """
    Interface abstraite du Unit of Work.

    Fournit le journal (`stocks`), les expéditions (`shipments`) et les
    deux agrégats externes (`catalog`, `orders`) ; gère commit/rollback.
    Le rollback est automatique si commit() n'est pas appelé
    (grâce au __exit__ du context manager).
    """

    stocks: repository.AbstractStockRepository
    shipments: repository.AbstractShipmentRepository
    catalog: catalog.AbstractCatalog
    orders: orders.AbstractOrderGateway

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(self, *args: object) -> None:
        self.rollback()

    def commit(self) -> None:
        self._commit()

    def collect_new_events(self) -> Iterator[events.Event]:
        """
        Collecte tous les événements émis par les agrégats vus
        pendant cette transaction.
        """
        for aggregate in (*self.stocks.seen, *self.shipments.seen):
            while aggregate.events:
                yield aggregate.events.pop(0)

    @abc.abstractmethod
    def _commit(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self) -> None:
        raise NotImplementedError


def _is_unique_violation(exc: IntegrityError) -> bool:
    # 23505 : unique_violation (PostgreSQL, psycopg2 puis psycopg 3)
    code = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    return code == "23505" or "UNIQUE constraint failed" in str(exc.orig)


def _is_concurrency_failure(exc: BaseException | None) -> bool:
    """
    Vrai pour les échecs qu'une nouvelle tentative peut résoudre.

    Une violation d'unicité signale une écriture concurrente (même séquence,
    même numéro de suivi) ; les autres violations d'intégrité (NOT NULL,
    clé étrangère) viennent de la demande elle-même et remontent telles quelles.
    """
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, IntegrityError):
        return _is_unique_violation(exc)
    if isinstance(exc, OperationalError):
        # 40001 : serialization_failure (PostgreSQL)
        return (
            getattr(exc.orig, "pgcode", None) == "40001"
            or "database is locked" in str(exc.orig)
        )
    return False


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """
    Implémentation concrète du UoW avec SQLAlchemy.

    Crée une session à l'entrée du context manager,
    la ferme à la sortie. Rollback automatique si pas de commit.

    La session et les repositories sont rangés par thread : un même UoW
    (et donc un même message bus) peut servir des requêtes concurrentes.
    Les erreurs de verrouillage optimiste (StaleDataError) et de contrainte
    d'unicité sont converties en ConcurrencyConflict, que le message bus
    sait rejouer.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self._local = threading.local()

    @property
    def session(self) -> Session:
        return self._local.session

    @property
    def stocks(self) -> repository.SqlAlchemyStockRepository:
        return self._local.stocks

    @property
    def shipments(self) -> repository.SqlAlchemyShipmentRepository:
        return self._local.shipments

    @property
    def catalog(self) -> catalog.SqlAlchemyCatalog:
        return self._local.catalog

    @property
    def orders(self) -> orders.SqlAlchemyOrderGateway:
        return self._local.orders

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        session: Session = self.session_factory()
        self._local.session = session
        self._local.stocks = repository.SqlAlchemyStockRepository(session)
        self._local.shipments = repository.SqlAlchemyShipmentRepository(session)
        self._local.catalog = catalog.SqlAlchemyCatalog(session)
        self._local.orders = orders.SqlAlchemyOrderGateway(session)
        return super().__enter__()

    def __exit__(self, exc_type, exc, tb) -> None:
        super().__exit__(exc_type, exc, tb)
        self.session.close()
        if _is_concurrency_failure(exc):
            raise errors.ConcurrencyConflict(
                "Écriture concurrente détectée, l'opération doit être rejouée"
            ) from exc

    def _commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
