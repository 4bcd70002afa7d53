"""
Views (lecture) pour le pattern CQRS.

Les views sont des fonctions de lecture pure qui interrogent
directement la base de données, sans passer par le modèle de domaine.

C'est le côté Query de CQRS : on sépare les chemins d'écriture
(qui passent par le domaine et le message bus) des chemins de
lecture (qui interrogent directement la BDD pour la performance).
Aucune de ces fonctions ne commite.
"""

from __future__ import annotations

import math
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select

from logistics.adapters import orm
from logistics.domain import errors
from logistics.domain.ledger import TransactionType
from logistics.domain.shipment import ShipmentStatus
from logistics.service_layer import unit_of_work

# Regroupement des types d'écriture pour les statistiques.
STAT_CATEGORIES = {
    TransactionType.STOCK_IN: "stock_in",
    TransactionType.STOCK_OUT: "stock_out",
    TransactionType.SALE: "sales",
    TransactionType.RETURN: "returns",
    TransactionType.ADJUSTMENT_IN: "adjustments",
    TransactionType.ADJUSTMENT_OUT: "adjustments",
    TransactionType.DAMAGE: "damages",
}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite stocke les dates UTC sans fuseau : une borne naïve est lue en
    # UTC, une borne avec décalage est ramenée en UTC avant comparaison.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _empty_stats() -> dict:
    return {name: {"count": 0, "quantity": 0} for name in set(STAT_CATEGORIES.values())}


def _transaction_row(row) -> dict:
    data = dict(row._mapping)
    data["type"] = row.type.value
    return data


def _ensure_product(uow: unit_of_work.SqlAlchemyUnitOfWork, product_id: str):
    product = uow.session.execute(
        select(orm.products).where(orm.products.c.id == product_id)
    ).first()
    if product is None:
        raise errors.ProductNotFound(f"Produit introuvable : {product_id}")
    return product


# --- Inventaire ---


def transaction(transaction_id: str, uow: unit_of_work.SqlAlchemyUnitOfWork) -> dict:
    with uow:
        row = uow.session.execute(
            select(orm.inventory_transactions)
            .where(orm.inventory_transactions.c.id == transaction_id)
        ).first()
        if row is None:
            raise errors.TransactionNotFound(f"Transaction introuvable : {transaction_id}")
        return _transaction_row(row)


def product_history(
    product_id: str,
    uow: unit_of_work.SqlAlchemyUnitOfWork,
    type: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> list[dict]:
    """
    Historique des écritures d'un produit, de la plus récente à la plus ancienne.

    Filtres optionnels : type d'écriture et intervalle de dates (bornes incluses).
    """
    t = orm.inventory_transactions
    query = select(t).where(t.c.product_id == product_id)
    if type is not None:
        query = query.where(t.c.type == TransactionType.parse(type))
    if since is not None:
        query = query.where(t.c.occurred_at >= _as_utc(since))
    if until is not None:
        query = query.where(t.c.occurred_at <= _as_utc(until))

    with uow:
        _ensure_product(uow, product_id)
        rows = uow.session.execute(query.order_by(t.c.sequence.desc()))
        return [_transaction_row(r) for r in rows]


def transaction_history(
    uow: unit_of_work.SqlAlchemyUnitOfWork,
    product_id: Optional[str] = None,
    type: Optional[str] = None,
    performed_by: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> list[dict]:
    """
    Écritures de tout le journal, les plus récentes d'abord.

    Contrairement à `product_history`, un produit inconnu ne lève pas
    d'erreur : le filtre ne retient simplement aucune écriture.
    """
    t = orm.inventory_transactions
    p = orm.products
    query = select(t, p.c.sku, p.c.name.label("product_name")).join(
        p, p.c.id == t.c.product_id, isouter=True
    )
    if product_id is not None:
        query = query.where(t.c.product_id == product_id)
    if type is not None:
        query = query.where(t.c.type == TransactionType.parse(type))
    if performed_by is not None:
        query = query.where(t.c.performed_by == performed_by)
    if since is not None:
        query = query.where(t.c.occurred_at >= _as_utc(since))
    if until is not None:
        query = query.where(t.c.occurred_at <= _as_utc(until))
    query = query.order_by(t.c.occurred_at.desc(), t.c.product_id, t.c.sequence.desc())
    if limit is not None:
        query = query.limit(limit)

    with uow:
        return [_transaction_row(r) for r in uow.session.execute(query)]


def product_stats(
    product_id: str,
    uow: unit_of_work.SqlAlchemyUnitOfWork,
    days: int = 30,
) -> dict:
    """
    Nombre d'écritures et quantités cumulées par catégorie sur les
    `days` derniers jours.
    """
    t = orm.inventory_transactions
    since = datetime.now(timezone.utc) - timedelta(days=days)
    stats = {
        "product_id": product_id,
        "period_days": days,
        "total_transactions": 0,
        **_empty_stats(),
    }
    with uow:
        product = _ensure_product(uow, product_id)
        rows = uow.session.execute(
            select(t.c.type, func.count(), func.sum(t.c.quantity))
            .where(t.c.product_id == product_id, t.c.occurred_at >= since)
            .group_by(t.c.type)
        )
        for tx_type, count, quantity in rows:
            category = stats[STAT_CATEGORIES[tx_type]]
            category["count"] += count
            category["quantity"] += quantity or 0
            stats["total_transactions"] += count
    stats["current_quantity"] = product.quantity
    return stats


def trend_analysis(
    product_id: str,
    uow: unit_of_work.SqlAlchemyUnitOfWork,
    days: int = 30,
) -> dict:
    """Mouvements jour par jour, ventilés par type d'écriture."""
    t = orm.inventory_transactions
    since = datetime.now(timezone.utc) - timedelta(days=days)
    day = func.date(t.c.occurred_at)
    daily: dict[str, dict] = defaultdict(dict)
    with uow:
        _ensure_product(uow, product_id)
        rows = uow.session.execute(
            select(day, t.c.type, func.count(), func.sum(t.c.quantity))
            .where(t.c.product_id == product_id, t.c.occurred_at >= since)
            .group_by(day, t.c.type)
            .order_by(day)
        )
        for date, tx_type, count, quantity in rows:
            daily[str(date)][tx_type.value] = {"count": count, "quantity": quantity or 0}
    return {
        "product_id": product_id,
        "period_days": days,
        "daily": [{"date": date, "by_type": by_type} for date, by_type in daily.items()],
    }


def stock_audit(product_id: str, uow: unit_of_work.SqlAlchemyUnitOfWork) -> dict:
    """
    Compare la quantité en cache au rejeu du journal.

    `consistent` est faux si le stock, le catalogue et le journal divergent.
    """
    t = orm.inventory_transactions
    s = orm.product_stocks
    with uow:
        product = _ensure_product(uow, product_id)
        stock = uow.session.execute(
            select(s).where(s.c.product_id == product_id)
        ).first()
        totals = uow.session.execute(
            select(
                func.count(),
                func.coalesce(func.sum(t.c.new_quantity - t.c.previous_quantity), 0),
            ).where(t.c.product_id == product_id)
        ).one()

    if stock is None:
        # Jamais mouvementé : le catalogue fait foi.
        return {
            "product_id": product_id,
            "cached_quantity": product.quantity,
            "catalog_quantity": product.quantity,
            "initial_quantity": product.quantity,
            "replayed_quantity": product.quantity,
            "transaction_count": 0,
            "consistent": True,
        }
    replayed = stock.initial_quantity + totals[1]
    return {
        "product_id": product_id,
        "cached_quantity": stock.quantity,
        "catalog_quantity": product.quantity,
        "initial_quantity": stock.initial_quantity,
        "replayed_quantity": replayed,
        "transaction_count": totals[0],
        "consistent": stock.quantity == replayed == product.quantity,
    }


def low_stock_products(threshold: int, uow: unit_of_work.SqlAlchemyUnitOfWork) -> list[dict]:
    """Produits actifs dont le stock est positif mais inférieur ou égal au seuil."""
    p = orm.products
    with uow:
        rows = uow.session.execute(
            select(p.c.id, p.c.sku, p.c.name, p.c.quantity)
            .where(p.c.is_active, p.c.quantity > 0, p.c.quantity <= threshold)
            .order_by(p.c.quantity, p.c.sku)
        )
        return [dict(r._mapping) for r in rows]


def out_of_stock_products(uow: unit_of_work.SqlAlchemyUnitOfWork) -> list[dict]:
    p = orm.products
    with uow:
        rows = uow.session.execute(
            select(p.c.id, p.c.sku, p.c.name)
            .where(p.c.is_active, p.c.quantity == 0)
            .order_by(p.c.sku)
        )
        return [dict(r._mapping) for r in rows]


def stock_status(quantity: int, threshold: int) -> str:
    if quantity == 0:
        return "out"
    if quantity <= threshold:
        return "low"
    return "normal"


def inventory_value(
    uow: unit_of_work.SqlAlchemyUnitOfWork,
    include_inactive: bool = False,
) -> dict:
    """Valeur du stock (quantité × prix), nombre d'unités et de produits."""
    p = orm.products
    query = select(
        func.coalesce(func.sum(p.c.quantity * p.c.price), 0),
        func.coalesce(func.sum(p.c.quantity), 0),
        func.count(),
    )
    if not include_inactive:
        query = query.where(p.c.is_active)
    with uow:
        total_value, total_items, product_count = uow.session.execute(query).one()
    return {
        "total_value": round(float(total_value), 2),
        "total_items": int(total_items),
        "product_count": product_count,
    }


def inventory_report(
    uow: unit_of_work.SqlAlchemyUnitOfWork,
    threshold: int,
    include_inactive: bool = False,
    days: int = 30,
) -> dict:
    """
    Rapport d'inventaire : chaque produit avec son état de stock et ses
    mouvements des `days` derniers jours, plus un résumé global.
    """
    p = orm.products
    t = orm.inventory_transactions
    since = datetime.now(timezone.utc) - timedelta(days=days)
    products_query = select(p).order_by(p.c.name, p.c.sku)
    if not include_inactive:
        products_query = products_query.where(p.c.is_active)

    with uow:
        products = uow.session.execute(products_query).all()
        movements = uow.session.execute(
            select(t.c.product_id, t.c.type, func.count(), func.sum(t.c.quantity))
            .where(t.c.occurred_at >= since)
            .group_by(t.c.product_id, t.c.type)
        ).all()

    stats: dict[str, dict] = defaultdict(_empty_stats)
    for product_id, tx_type, count, quantity in movements:
        category = stats[product_id][STAT_CATEGORIES[tx_type]]
        category["count"] += count
        category["quantity"] += quantity or 0

    lines = [
        {
            "id": row.id,
            "sku": row.sku,
            "name": row.name,
            "price": row.price,
            "current_stock": row.quantity,
            "stock_status": stock_status(row.quantity, threshold),
            "is_active": row.is_active,
            "stats": stats[row.id],
        }
        for row in products
    ]
    total_stock = sum(line["current_stock"] for line in lines)
    return {
        "summary": {
            "total_products": len(lines),
            "total_value": round(sum(line["current_stock"] * line["price"] for line in lines), 2),
            "low_stock_count": sum(1 for line in lines if line["stock_status"] == "low"),
            "out_of_stock_count": sum(1 for line in lines if line["stock_status"] == "out"),
            "average_stock": total_stock / len(lines) if lines else 0,
        },
        "threshold": threshold,
        "period_days": days,
        "products": lines,
        "generated_at": datetime.now(timezone.utc),
    }


def predicted_restock_date(
    product_id: str,
    uow: unit_of_work.SqlAlchemyUnitOfWork,
    days: int = 30,
) -> Optional[dict]:
    """
    Estime la date de rupture d'après la moyenne des ventes sur `days` jours.

    Retourne None quand le produit ne s'est pas vendu sur la période.
    """
    if days < 1:
        raise errors.ValidationFailed(f"Période invalide : {days} jour(s)")
    stats = product_stats(product_id, uow, days=days)
    sales = stats["sales"]
    if sales["quantity"] == 0:
        return None

    daily_average = sales["quantity"] / days
    days_left = math.floor(stats["current_quantity"] / daily_average)
    if sales["count"] > 10:
        confidence = "high"
    elif sales["count"] > 5:
        confidence = "medium"
    else:
        confidence = "low"
    return {
        "product_id": product_id,
        "current_stock": stats["current_quantity"],
        "daily_average_sales": round(daily_average, 2),
        "estimated_days_left": days_left,
        "predicted_restock_date": datetime.now(timezone.utc) + timedelta(days=days_left),
        "confidence": confidence,
    }


# --- Expéditions ---


def _shipment_details(uow: unit_of_work.SqlAlchemyUnitOfWork, row) -> dict:
    data = dict(row._mapping)
    data.pop("version_number")
    data["carrier"] = row.carrier.value
    data["status"] = row.status.value
    data["status_description"] = row.status.description

    items = uow.session.execute(
        select(
            orm.shipment_items.c.product_id,
            orm.shipment_items.c.sku,
            orm.shipment_items.c.name,
            orm.shipment_items.c.quantity,
        )
        .where(orm.shipment_items.c.shipment_id == row.id)
        .order_by(orm.shipment_items.c.id)
    )
    data["items"] = [dict(i._mapping) for i in items]
    data["total_items"] = sum(i["quantity"] for i in data["items"])

    history = uow.session.execute(
        select(
            orm.tracking_entries.c.status,
            orm.tracking_entries.c.description,
            orm.tracking_entries.c.location,
            orm.tracking_entries.c.notes,
            orm.tracking_entries.c.timestamp,
        )
        .where(orm.tracking_entries.c.shipment_id == row.id)
        .order_by(orm.tracking_entries.c.id)
    )
    data["tracking_history"] = [
        {**entry._mapping, "status": entry.status.value} for entry in history
    ]
    return data


def shipment(shipment_id: str, uow: unit_of_work.SqlAlchemyUnitOfWork) -> dict:
    with uow:
        row = uow.session.execute(
            select(orm.shipments).where(orm.shipments.c.id == shipment_id)
        ).first()
        if row is None:
            raise errors.ShipmentNotFound(f"Expédition introuvable : {shipment_id}")
        return _shipment_details(uow, row)


def track(tracking_number: str, uow: unit_of_work.SqlAlchemyUnitOfWork) -> dict:
    """
    Suivi public d'un colis par son numéro de suivi.

    N'expose ni les lignes ni les notes internes de l'expédition.
    """
    with uow:
        row = uow.session.execute(
            select(orm.shipments).where(orm.shipments.c.tracking_number == tracking_number)
        ).first()
        if row is None:
            raise errors.ShipmentNotFound(f"Numéro de suivi inconnu : {tracking_number}")
        details = _shipment_details(uow, row)
    return {
        key: details[key]
        for key in (
            "tracking_number",
            "carrier",
            "status",
            "status_description",
            "current_location",
            "estimated_delivery_at",
            "shipped_at",
            "delivered_at",
            "tracking_history",
        )
    }


def shipments_for_order(order_id: str, uow: unit_of_work.SqlAlchemyUnitOfWork) -> list[dict]:
    """Toutes les expéditions d'une commande, annulées comprises, les plus récentes d'abord."""
    with uow:
        rows = uow.session.execute(
            select(orm.shipments)
            .where(orm.shipments.c.order_id == order_id)
            .order_by(orm.shipments.c.created_at.desc())
        ).all()
        return [_shipment_details(uow, row) for row in rows]


# Statuts d'une expédition qui n'a pas encore atteint son destinataire.
_WAITING_STATUSES = (ShipmentStatus.PENDING, ShipmentStatus.IN_TRANSIT)


def shipments_by_status(status: str, uow: unit_of_work.SqlAlchemyUnitOfWork) -> list[dict]:
    target = ShipmentStatus.parse(status)
    with uow:
        rows = uow.session.execute(
            select(orm.shipments)
            .where(orm.shipments.c.status == target)
            .order_by(orm.shipments.c.created_at.desc())
        ).all()
        return [_shipment_details(uow, row) for row in rows]


def pending_shipments(uow: unit_of_work.SqlAlchemyUnitOfWork) -> list[dict]:
    """Expéditions en attente ou en transit, les plus anciennes d'abord."""
    with uow:
        rows = uow.session.execute(
            select(orm.shipments)
            .where(orm.shipments.c.status.in_(_WAITING_STATUSES))
            .order_by(orm.shipments.c.created_at)
        ).all()
        return [_shipment_details(uow, row) for row in rows]


def delayed_shipments(
    uow: unit_of_work.SqlAlchemyUnitOfWork,
    now: Optional[datetime] = None,
) -> list[dict]:
    """
    Expéditions en attente ou en transit dont la livraison estimée est dépassée.

    `delay_days` compte les jours de retard entamés.
    """
    now = _as_utc(now) or datetime.now(timezone.utc)
    s = orm.shipments
    with uow:
        rows = uow.session.execute(
            select(s)
            .where(s.c.status.in_(_WAITING_STATUSES), s.c.estimated_delivery_at < now)
            .order_by(s.c.estimated_delivery_at)
        ).all()
        delayed = [_shipment_details(uow, row) for row in rows]
    for details in delayed:
        late = now - _as_utc(details["estimated_delivery_at"])
        details["delay_days"] = math.ceil(late / timedelta(days=1))
    return delayed


def shipment_stats(
    uow: unit_of_work.SqlAlchemyUnitOfWork,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> dict:
    """
    Répartition des expéditions par statut et par transporteur, et durées
    de livraison (en jours) des expéditions livrées.

    Les bornes portent sur la date de création de l'expédition.
    """
    s = orm.shipments
    query = select(s.c.status, s.c.carrier, s.c.created_at, s.c.delivered_at)
    if since is not None:
        query = query.where(s.c.created_at >= _as_utc(since))
    if until is not None:
        query = query.where(s.c.created_at <= _as_utc(until))
    with uow:
        rows = uow.session.execute(query).all()

    by_status: dict[str, int] = defaultdict(int)
    by_carrier: dict[str, dict] = {}
    delivery_days: list[float] = []
    for status, carrier, created_at, delivered_at in rows:
        by_status[status.value] += 1
        carrier_stats = by_carrier.setdefault(carrier.value, {"total": 0, "delivered": 0})
        carrier_stats["total"] += 1
        if status is ShipmentStatus.DELIVERED and delivered_at is not None:
            carrier_stats["delivered"] += 1
            elapsed = _as_utc(delivered_at) - _as_utc(created_at)
            delivery_days.append(elapsed / timedelta(days=1))

    return {
        "total_shipments": len(rows),
        "by_status": dict(by_status),
        "by_carrier": [
            {
                "carrier": carrier,
                "total_shipments": counts["total"],
                "delivered_shipments": counts["delivered"],
                "delivery_rate": round(counts["delivered"] / counts["total"] * 100, 2),
            }
            for carrier, counts in sorted(by_carrier.items())
        ],
        "delivery_times": {
            "average_days": (
                round(sum(delivery_days) / len(delivery_days), 2) if delivery_days else 0
            ),
            "min_days": round(min(delivery_days), 2) if delivery_days else 0,
            "max_days": round(max(delivery_days), 2) if delivery_days else 0,
        },
    }
