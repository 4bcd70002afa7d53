"""
Bootstrap : assemblage de l'application (Composition Root).

Ce module construit le message bus avec toutes ses dépendances.
C'est ici que l'injection de dépendances est réalisée :
on assemble les composants concrets (ou les fakes pour les tests).

C'est le seul endroit de l'application qui connaît les
implémentations concrètes de chaque abstraction.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import sessionmaker

from logistics.adapters import notifications, orm
from logistics.config import Settings, get_settings
from logistics.domain import commands, events
from logistics.service_layer import handlers, messagebus, unit_of_work


def bootstrap(
    start_orm: bool = True,
    uow: unit_of_work.AbstractUnitOfWork | None = None,
    notifications_adapter: notifications.AbstractNotifications | None = None,
    settings: Settings | None = None,
    **extra_dependencies: Any,
) -> messagebus.MessageBus:
    """
    Construit et retourne un MessageBus configuré.

    En production, utilise les implémentations concrètes.
    En test, on injecte des fakes via les paramètres.
    """
    settings = settings or get_settings()

    if start_orm:
        orm.start_mappers()

    if uow is None:
        engine = unit_of_work.engine_from_settings(settings)
        orm.metadata.create_all(engine)
        uow = unit_of_work.SqlAlchemyUnitOfWork(sessionmaker(bind=engine))

    if notifications_adapter is None:
        notifications_adapter = notifications.EmailNotifications(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            sender=settings.sender_email,
        )

    dependencies: dict[str, Any] = {
        "notifications": notifications_adapter,
        "settings": settings,
        **extra_dependencies,
    }

    return messagebus.MessageBus(
        uow=uow,
        event_handlers=EVENT_HANDLERS,
        command_handlers=COMMAND_HANDLERS,
        dependencies=dependencies,
        max_attempts=settings.max_attempts,
    )


# --- Routage des messages vers les handlers ---

EVENT_HANDLERS: dict[type[events.Event], list] = {
    events.StockLevelChanged: [handlers.log_stock_level_changed],
    events.LowStock: [handlers.send_low_stock_alert],
    events.OutOfStock: [handlers.send_out_of_stock_alert],
    events.ShipmentCreated: [handlers.log_shipment_created],
    events.ShipmentStatusChanged: [handlers.log_shipment_status_changed],
    events.ShipmentDelivered: [handlers.send_delivery_notification],
    events.ShipmentCancelled: [handlers.send_cancellation_notification],
}

COMMAND_HANDLERS: dict[type[commands.Command], Any] = {
    commands.RegisterProduct: handlers.register_product,
    commands.ApplyTransaction: handlers.apply_transaction,
    commands.ApplyBulkTransactions: handlers.apply_bulk_transactions,
    commands.AdjustStock: handlers.adjust_stock,
    commands.CreateShipment: handlers.create_shipment,
    commands.TransitionShipment: handlers.transition_shipment,
    commands.CancelShipment: handlers.cancel_shipment,
}
