"""
Handlers pour les commands et events.

Les handlers sont les fonctions qui traitent les commands et events
transitant par le message bus.

- Command handlers : exécutent une action (peuvent échouer)
- Event handlers : réagissent à un fait passé (ne doivent pas échouer)

Chaque command handler ouvre un Unit of Work, valide tout avant de muter,
commite une seule fois, et retourne des données simples (dict) construites
avant le commit.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING, Optional

from logistics.adapters.catalog import CatalogProduct
from logistics.domain import commands, errors, events, ledger, validation
from logistics.domain.orders import OrderStatus
from logistics.domain.shipment import Shipment, ShipmentStatus

if TYPE_CHECKING:
    from logistics.adapters.notifications import AbstractNotifications
    from logistics.config import Settings
    from logistics.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)


# --- Helpers ---


def _load_stock(uow: AbstractUnitOfWork, product_id: str) -> ledger.ProductStock:
    """
    Retourne le stock d'un produit du catalogue.

    Un produit connu du catalogue mais sans ProductStock en reçoit un,
    initialisé avec la quantité du catalogue.
    """
    product = uow.catalog.find_by_id(product_id)
    if product is None:
        raise errors.ProductNotFound(f"Produit introuvable : {product_id}")
    stock = uow.stocks.get(product_id)
    if stock is None:
        stock = ledger.ProductStock(product_id=product.id, quantity=product.quantity)
        uow.stocks.add(stock)
    return stock


def _load_shipment(uow: AbstractUnitOfWork, shipment_id: str) -> Shipment:
    shipment = uow.shipments.get(shipment_id)
    if shipment is None:
        raise errors.ShipmentNotFound(f"Expédition introuvable : {shipment_id}")
    return shipment


def _sync_order(
    uow: AbstractUnitOfWork,
    shipment: Shipment,
    target: ShipmentStatus,
    reason: Optional[str],
) -> None:
    # Appelé avant la mutation de l'expédition : si la commande refuse,
    # l'expédition n'a pas bougé.
    if target is ShipmentStatus.DELIVERED:
        uow.orders.mark_delivered(shipment.order_id)
    elif target is ShipmentStatus.CANCELLED:
        order = uow.orders.find_by_id(shipment.order_id)
        if order is not None and order.status is OrderStatus.SHIPPED:
            uow.orders.revert_to_processing(shipment.order_id, reason)


# --- Command Handlers : inventaire ---


def register_product(
    cmd: commands.RegisterProduct,
    uow: AbstractUnitOfWork,
) -> dict:
    """Enregistre un produit au catalogue avec son stock initial."""
    stock = ledger.ProductStock(product_id=cmd.product_id, quantity=cmd.quantity)
    product = CatalogProduct(
        id=validation.require_text(cmd.product_id, "id"),
        sku=validation.require_text(cmd.sku, "sku"),
        name=validation.require_text(cmd.name, "name"),
        price=validation.require_price(cmd.price),
        quantity=cmd.quantity,
        is_active=validation.require_flag(cmd.is_active, "is_active"),
    )
    with uow:
        if uow.catalog.find_by_id(cmd.product_id) is not None:
            raise errors.ProductAlreadyExists(f"Le produit {cmd.product_id} existe déjà")
        if uow.catalog.find_by_sku(cmd.sku) is not None:
            raise errors.ProductAlreadyExists(f"Le SKU {cmd.sku} est déjà utilisé")
        uow.catalog.add(product)
        uow.stocks.add(stock)
        uow.commit()
    logger.info("Produit %s enregistré (stock initial %d)", cmd.product_id, cmd.quantity)
    return dataclasses.asdict(product)


def apply_transaction(
    cmd: commands.ApplyTransaction,
    uow: AbstractUnitOfWork,
    settings: Settings,
) -> dict:
    """
    Écrit un mouvement de stock dans le journal.

    Retourne l'écriture créée. Lève ProductNotFound, InvalidQuantity,
    InvalidTransactionType ou InsufficientStock ; dans tous ces cas
    rien n'est écrit.
    """
    with uow:
        stock = _load_stock(uow, cmd.product_id)
        transaction = stock.apply(
            cmd.type,
            cmd.quantity,
            reason=cmd.reason,
            reference_id=cmd.reference_id,
            performed_by=cmd.performed_by,
            notes=cmd.notes,
            strict=cmd.strict,
            low_stock_threshold=settings.low_stock_threshold,
        )
        uow.catalog.update_quantity(stock.product_id, stock.quantity)
        result = transaction.to_dict()
        uow.commit()
    logger.info(
        "Mouvement %s sur %s : %d -> %d",
        result["type"], result["product_id"],
        result["previous_quantity"], result["new_quantity"],
    )
    return result


def apply_bulk_transactions(
    cmd: commands.ApplyBulkTransactions,
    uow: AbstractUnitOfWork,
    settings: Settings,
) -> list[dict]:
    """Applique le même mouvement à plusieurs produits, tout ou rien."""
    if not cmd.lines:
        raise errors.ValidationFailed("Aucune ligne à appliquer")
    results = []
    with uow:
        for product_id, quantity in cmd.lines:
            stock = _load_stock(uow, product_id)
            transaction = stock.apply(
                cmd.type,
                quantity,
                reason=cmd.reason,
                performed_by=cmd.performed_by,
                notes=cmd.notes,
                low_stock_threshold=settings.low_stock_threshold,
            )
            uow.catalog.update_quantity(stock.product_id, stock.quantity)
            results.append(transaction.to_dict())
        uow.commit()
    logger.info("Mouvement groupé %s appliqué à %d produit(s)", cmd.type, len(results))
    return results


def adjust_stock(
    cmd: commands.AdjustStock,
    uow: AbstractUnitOfWork,
    settings: Settings,
) -> dict:
    """
    Aligne le stock sur une quantité comptée (inventaire physique).

    Retourne l'écriture et un résumé de l'ajustement.
    """
    with uow:
        stock = _load_stock(uow, cmd.product_id)
        transaction = stock.adjust_to(
            cmd.target_quantity,
            reason=cmd.reason,
            performed_by=cmd.performed_by,
            notes=cmd.notes,
            low_stock_threshold=settings.low_stock_threshold,
        )
        uow.catalog.update_quantity(stock.product_id, stock.quantity)
        result = {
            "transaction": transaction.to_dict(),
            "adjustment": {
                "previous_quantity": transaction.previous_quantity,
                "new_quantity": transaction.new_quantity,
                "difference": transaction.delta,
                "direction": "increase" if transaction.delta > 0 else "decrease",
            },
        }
        uow.commit()
    logger.info(
        "Stock de %s ajusté : %d -> %d",
        cmd.product_id, transaction.previous_quantity, transaction.new_quantity,
    )
    return result


# --- Command Handlers : expéditions ---


def create_shipment(
    cmd: commands.CreateShipment,
    uow: AbstractUnitOfWork,
    settings: Settings,
) -> dict:
    """
    Crée l'expédition d'une commande en préparation.

    La commande passe à « shipped » dans le même Unit of Work.
    """
    with uow:
        order = uow.orders.find_by_id(cmd.order_id)
        if order is None:
            raise errors.OrderNotFound(f"Commande introuvable : {cmd.order_id}")
        if not order.is_fulfillment_ready:
            raise errors.InvalidOrderStatus(
                f"La commande {order.id} ne peut pas être expédiée "
                f"(statut : {order.status.value})"
            )
        if uow.shipments.get_active_for_order(order.id) is not None:
            raise errors.ShipmentAlreadyExists(
                f"Une expédition existe déjà pour la commande {order.id}"
            )
        if cmd.tracking_number and uow.shipments.get_by_tracking_number(cmd.tracking_number):
            raise errors.DuplicateTrackingNumber(
                f"Numéro de suivi déjà utilisé : {cmd.tracking_number}"
            )

        shipment = Shipment.create(
            order_id=order.id,
            carrier=cmd.carrier,
            items=cmd.items if cmd.items is not None else order.items,
            tracking_number=cmd.tracking_number,
            estimated_delivery_at=cmd.estimated_delivery_at,
            notes=cmd.notes,
            delivery_days=settings.default_delivery_days,
        )
        uow.orders.mark_shipped(order.id, shipment.tracking_number)
        uow.shipments.add(shipment)
        result = shipment.to_dict()
        uow.commit()
    logger.info("Expédition %s créée pour la commande %s", result["tracking_number"], cmd.order_id)
    return result


def transition_shipment(
    cmd: commands.TransitionShipment,
    uow: AbstractUnitOfWork,
) -> dict:
    """
    Fait avancer une expédition dans son graphe de statuts.

    La transition est validée, puis la commande est mise à jour
    (livraison, annulation), puis seulement l'expédition.
    """
    with uow:
        shipment = _load_shipment(uow, cmd.shipment_id)
        target = shipment.ensure_can_transition(cmd.status)
        _sync_order(uow, shipment, target, reason=cmd.notes)
        shipment.transition(target, location=cmd.location, notes=cmd.notes)
        result = shipment.to_dict()
        uow.commit()
    logger.info("Expédition %s : statut %s", cmd.shipment_id, result["status"])
    return result


def cancel_shipment(
    cmd: commands.CancelShipment,
    uow: AbstractUnitOfWork,
) -> dict:
    with uow:
        shipment = _load_shipment(uow, cmd.shipment_id)
        shipment.ensure_can_cancel()
        _sync_order(uow, shipment, ShipmentStatus.CANCELLED, reason=cmd.reason)
        shipment.cancel(cmd.reason, location=cmd.location)
        result = shipment.to_dict()
        uow.commit()
    logger.info("Expédition %s annulée : %s", cmd.shipment_id, cmd.reason)
    return result


# --- Event Handlers ---


def log_stock_level_changed(event: events.StockLevelChanged) -> None:
    logger.debug(
        "Stock de %s : %d -> %d (%s)",
        event.product_id, event.previous_quantity, event.new_quantity, event.type,
    )


def send_low_stock_alert(
    event: events.LowStock,
    notifications: AbstractNotifications,
    settings: Settings,
) -> None:
    """Alerte quand le stock passe sous le seuil."""
    notifications.send(
        destination=settings.stock_alert_email,
        message=(
            f"Stock faible pour le produit {event.product_id} : "
            f"{event.quantity} unité(s) (seuil {event.threshold})"
        ),
    )


def send_out_of_stock_alert(
    event: events.OutOfStock,
    notifications: AbstractNotifications,
    settings: Settings,
) -> None:
    """Envoie une notification quand le stock est épuisé."""
    notifications.send(
        destination=settings.stock_alert_email,
        message=f"Rupture de stock pour le produit {event.product_id}",
    )


def log_shipment_created(event: events.ShipmentCreated) -> None:
    logger.info(
        "Expédition %s (%s) créée pour la commande %s",
        event.tracking_number, event.carrier, event.order_id,
    )


def log_shipment_status_changed(event: events.ShipmentStatusChanged) -> None:
    logger.info(
        "Expédition %s : %s -> %s%s",
        event.shipment_id, event.previous_status, event.status,
        f" ({event.location})" if event.location else "",
    )


def send_delivery_notification(
    event: events.ShipmentDelivered,
    notifications: AbstractNotifications,
    settings: Settings,
) -> None:
    notifications.send(
        destination=settings.shipping_alert_email,
        message=(
            f"Commande {event.order_id} livrée "
            f"(suivi {event.tracking_number})"
        ),
    )


def send_cancellation_notification(
    event: events.ShipmentCancelled,
    notifications: AbstractNotifications,
    settings: Settings,
) -> None:
    notifications.send(
        destination=settings.shipping_alert_email,
        message=(
            f"Expédition {event.shipment_id} de la commande {event.order_id} "
            f"annulée : {event.reason or 'sans motif'}"
        ),
    )
