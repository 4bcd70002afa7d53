"""
Tests de concurrence réelle : plusieurs threads partagent un même message bus
sur une base SQLite sur disque.

Les conflits (version périmée, séquence déjà prise, base verrouillée) sont
convertis en ConcurrencyConflict par le Unit of Work et rejoués par le bus.
"""

import threading

import pytest

from logistics.config import Settings
from logistics.domain import commands, errors
from logistics.domain.orders import OrderSnapshot, OrderStatus
from logistics.service_layer import bootstrap, unit_of_work
from logistics.views import views

NB_THREADS = 10


@pytest.fixture
def file_bus(file_session_factory, notifications):
    return bootstrap.bootstrap(
        start_orm=False,
        uow=unit_of_work.SqlAlchemyUnitOfWork(file_session_factory),
        notifications_adapter=notifications,
        settings=Settings(
            database_uri="sqlite:///:memory:",
            low_stock_threshold=0,
            max_attempts=3 * NB_THREADS,
        ),
    )


def en_parallèle(bus, messages):
    """Lance chaque message dans son thread ; retourne résultats et erreurs."""
    départ = threading.Barrier(len(messages))
    résultats, erreurs = [], []

    def exécuter(message):
        départ.wait()
        try:
            résultats.extend(bus.handle(message))
        except Exception as e:
            erreurs.append(e)

    threads = [threading.Thread(target=exécuter, args=(m,)) for m in messages]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return résultats, erreurs


def test_entrées_concurrentes_sans_perte(file_bus):
    file_bus.handle(commands.RegisterProduct("prod-1", "LAMPE-BLEUE", "Lampe", 10.0, 10))

    résultats, erreurs = en_parallèle(
        file_bus,
        [commands.ApplyTransaction("prod-1", "stock_in", 10) for _ in range(NB_THREADS)],
    )

    assert erreurs == []
    assert len(résultats) == NB_THREADS
    audit = views.stock_audit("prod-1", file_bus.uow)
    assert audit["cached_quantity"] == 10 + 10 * NB_THREADS
    assert audit["transaction_count"] == NB_THREADS
    assert audit["consistent"]
    historique = views.product_history("prod-1", file_bus.uow)
    assert sorted(h["sequence"] for h in historique) == list(range(1, NB_THREADS + 1))
    assert sorted(h["new_quantity"] for h in historique) == [
        10 + 10 * n for n in range(1, NB_THREADS + 1)
    ]


def test_ventes_concurrentes_sur_stock_limité(file_bus):
    file_bus.handle(commands.RegisterProduct("prod-1", "LAMPE-BLEUE", "Lampe", 10.0, 5))

    résultats, erreurs = en_parallèle(
        file_bus,
        [
            commands.ApplyTransaction("prod-1", "stock_out", 1)
            for _ in range(NB_THREADS)
        ],
    )

    assert len(résultats) == 5
    assert len(erreurs) == NB_THREADS - 5
    assert all(isinstance(e, errors.InsufficientStock) for e in erreurs)
    audit = views.stock_audit("prod-1", file_bus.uow)
    assert audit["cached_quantity"] == 0
    assert audit["consistent"]


def test_une_seule_transition_concurrente_gagne(file_bus):
    with file_bus.uow as uow:
        uow.orders.add(OrderSnapshot(
            "cmd-1", OrderStatus.PROCESSING, ({"product_id": "prod-1", "sku": "S", "quantity": 1},)
        ))
        uow.commit()
    [expédition] = file_bus.handle(commands.CreateShipment("cmd-1", "dhl"))

    résultats, erreurs = en_parallèle(
        file_bus,
        [commands.TransitionShipment(expédition["id"], "picked_up") for _ in range(NB_THREADS)],
    )

    assert len(résultats) == 1
    assert len(erreurs) == NB_THREADS - 1
    assert all(isinstance(e, errors.InvalidStatusTransition) for e in erreurs)
    détail = views.shipment(expédition["id"], file_bus.uow)
    assert [h["status"] for h in détail["tracking_history"]] == ["pending", "picked_up"]
