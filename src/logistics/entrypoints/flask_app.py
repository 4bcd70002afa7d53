"""
Point d'entrée Flask.

L'API Flask est un thin adapter : elle se contente de
convertir les requêtes HTTP en commands, les envoie au
message bus, et convertit les résultats en réponses HTTP.

L'API ne contient aucune logique métier. Les erreurs du domaine
sont traduites en codes HTTP d'après leur famille :
NotFound -> 404, ValidationFailed/Conflict -> 400,
ConcurrencyConflict (tentatives épuisées) -> 503.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from flask import Flask, jsonify, request

from logistics.config import get_settings
from logistics.domain import commands, errors, validation
from logistics.service_layer import bootstrap, messagebus
from logistics.views import views

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Construit au premier appel ; les tests peuvent y placer leur propre bus.
bus: Optional[messagebus.MessageBus] = None


def get_bus() -> messagebus.MessageBus:
    global bus
    if bus is None:
        bus = bootstrap.bootstrap()
    return bus


def _handle(cmd: commands.Command) -> Any:
    results = get_bus().handle(cmd)
    return results.pop(0)


def _required(data: Optional[dict], *keys: str) -> dict:
    if not isinstance(data, dict):
        raise errors.ValidationFailed("Corps JSON attendu")
    missing = [key for key in keys if data.get(key) is None]
    if missing:
        raise errors.ValidationFailed(f"Champ(s) manquant(s) : {', '.join(missing)}")
    return data


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise errors.ValidationFailed(f"Date invalide : {value!r}") from None


def _int_arg(name: str, default: Optional[int]) -> Optional[int]:
    value = request.args.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise errors.ValidationFailed(f"Paramètre {name} invalide : {value!r}") from None


def _bool_arg(name: str, default: bool) -> bool:
    value = request.args.get(name)
    if value is None:
        return default
    if value.lower() in ("true", "1"):
        return True
    if value.lower() in ("false", "0"):
        return False
    raise errors.ValidationFailed(f"Paramètre {name} invalide : {value!r}")


@app.errorhandler(errors.LogisticsError)
def logistics_error_handler(e: errors.LogisticsError):
    if isinstance(e, errors.NotFound):
        status = 404
    elif isinstance(e, errors.ConcurrencyConflict):
        logger.error("Requête abandonnée après conflits répétés : %s", e.message)
        status = 503
    else:
        status = 400
    return jsonify({"message": e.message, "code": e.code}), status


# --- Inventaire ---


@app.route("/products", methods=["POST"])
def register_product_endpoint():
    """
    POST /products
    Body JSON : { id, sku, name, price?, quantity?, is_active? }
    """
    data = _required(request.json, "id", "sku", "name")
    cmd = commands.RegisterProduct(
        product_id=data["id"],
        sku=data["sku"],
        name=data["name"],
        price=data.get("price", 0.0),
        quantity=data.get("quantity", 0),
        is_active=data.get("is_active", True),
    )
    return jsonify(_handle(cmd)), 201


@app.route("/inventory/transactions", methods=["POST"])
def apply_transaction_endpoint():
    """
    POST /inventory/transactions
    Body JSON : { product_id, type, quantity, reason?, reference_id?,
                  performed_by?, notes?, strict? }

    Écrit un mouvement de stock. Retourne l'écriture créée.
    """
    data = _required(request.json, "product_id", "type", "quantity")
    cmd = commands.ApplyTransaction(
        product_id=data["product_id"],
        type=data["type"],
        quantity=data["quantity"],
        reason=data.get("reason"),
        reference_id=data.get("reference_id"),
        performed_by=data.get("performed_by"),
        notes=data.get("notes"),
        strict=validation.require_flag(data.get("strict", False), "strict"),
    )
    return jsonify(_handle(cmd)), 201


@app.route("/inventory/bulk", methods=["POST"])
def apply_bulk_endpoint():
    """
    POST /inventory/bulk
    Body JSON : { type, lines: [{product_id, quantity}], reason?, performed_by?, notes? }
    """
    data = _required(request.json, "type", "lines")
    lines = []
    for line in data["lines"]:
        _required(line, "product_id", "quantity")
        lines.append((line["product_id"], line["quantity"]))
    cmd = commands.ApplyBulkTransactions(
        type=data["type"],
        lines=tuple(lines),
        reason=data.get("reason"),
        performed_by=data.get("performed_by"),
        notes=data.get("notes"),
    )
    return jsonify({"transactions": _handle(cmd)}), 201


@app.route("/inventory/<product_id>/adjust", methods=["POST"])
def adjust_stock_endpoint(product_id: str):
    """
    POST /inventory/<product_id>/adjust
    Body JSON : { quantity, reason?, performed_by?, notes? }

    Aligne le stock sur la quantité comptée.
    """
    data = _required(request.json, "quantity")
    cmd = commands.AdjustStock(
        product_id=product_id,
        target_quantity=data["quantity"],
        reason=data.get("reason"),
        performed_by=data.get("performed_by"),
        notes=data.get("notes"),
    )
    return jsonify(_handle(cmd)), 200


@app.route("/inventory/transactions", methods=["GET"])
def transaction_history_endpoint():
    """
    GET /inventory/transactions?product_id=&type=&performed_by=&since=&until=&limit=

    Écritures de tout le journal, les plus récentes d'abord.
    """
    result = views.transaction_history(
        get_bus().uow,
        product_id=request.args.get("product_id"),
        type=request.args.get("type"),
        performed_by=request.args.get("performed_by"),
        since=_parse_datetime(request.args.get("since")),
        until=_parse_datetime(request.args.get("until")),
        limit=_int_arg("limit", None),
    )
    return jsonify(result), 200


@app.route("/inventory/<product_id>/history", methods=["GET"])
def history_endpoint(product_id: str):
    result = views.product_history(
        product_id,
        get_bus().uow,
        type=request.args.get("type"),
        since=_parse_datetime(request.args.get("since")),
        until=_parse_datetime(request.args.get("until")),
    )
    return jsonify(result), 200


@app.route("/inventory/<product_id>/stats", methods=["GET"])
def stats_endpoint(product_id: str):
    result = views.product_stats(product_id, get_bus().uow, days=_int_arg("days", 30))
    return jsonify(result), 200


@app.route("/inventory/<product_id>/trends", methods=["GET"])
def trends_endpoint(product_id: str):
    result = views.trend_analysis(product_id, get_bus().uow, days=_int_arg("days", 30))
    return jsonify(result), 200


@app.route("/inventory/<product_id>/audit", methods=["GET"])
def audit_endpoint(product_id: str):
    return jsonify(views.stock_audit(product_id, get_bus().uow)), 200


@app.route("/inventory/transactions/<transaction_id>", methods=["GET"])
def transaction_endpoint(transaction_id: str):
    return jsonify(views.transaction(transaction_id, get_bus().uow)), 200


@app.route("/inventory/low-stock", methods=["GET"])
def low_stock_endpoint():
    """
    GET /inventory/low-stock?threshold=N

    Produits en stock faible et produits en rupture.
    """
    threshold = _int_arg("threshold", get_settings().low_stock_threshold)
    uow = get_bus().uow
    return jsonify({
        "threshold": threshold,
        "low_stock": views.low_stock_products(threshold, uow),
        "out_of_stock": views.out_of_stock_products(uow),
    }), 200


@app.route("/inventory/value", methods=["GET"])
def inventory_value_endpoint():
    include_inactive = _bool_arg("include_inactive", False)
    return jsonify(views.inventory_value(get_bus().uow, include_inactive=include_inactive)), 200


@app.route("/inventory/report", methods=["GET"])
def inventory_report_endpoint():
    """GET /inventory/report?threshold=N&include_inactive=false&days=30"""
    result = views.inventory_report(
        get_bus().uow,
        threshold=_int_arg("threshold", get_settings().low_stock_threshold),
        include_inactive=_bool_arg("include_inactive", False),
        days=_int_arg("days", 30),
    )
    return jsonify(result), 200


@app.route("/inventory/<product_id>/restock-prediction", methods=["GET"])
def restock_prediction_endpoint(product_id: str):
    """
    GET /inventory/<product_id>/restock-prediction?days=30

    `prediction` vaut null si le produit ne s'est pas vendu sur la période.
    """
    prediction = views.predicted_restock_date(
        product_id, get_bus().uow, days=_int_arg("days", 30)
    )
    return jsonify({"product_id": product_id, "prediction": prediction}), 200


# --- Expéditions ---


@app.route("/shipments", methods=["POST"])
def create_shipment_endpoint():
    """
    POST /shipments
    Body JSON : { order_id, carrier, items?, tracking_number?,
                  estimated_delivery_at?, notes? }

    Crée l'expédition d'une commande en préparation.
    """
    data = _required(request.json, "order_id", "carrier")
    items = data.get("items")
    cmd = commands.CreateShipment(
        order_id=data["order_id"],
        carrier=data["carrier"],
        items=tuple(items) if items is not None else None,
        tracking_number=data.get("tracking_number"),
        estimated_delivery_at=_parse_datetime(data.get("estimated_delivery_at")),
        notes=data.get("notes"),
    )
    return jsonify(_handle(cmd)), 201


@app.route("/shipments/<shipment_id>/status", methods=["POST"])
def transition_shipment_endpoint(shipment_id: str):
    """
    POST /shipments/<shipment_id>/status
    Body JSON : { status, location?, notes? }
    """
    data = _required(request.json, "status")
    cmd = commands.TransitionShipment(
        shipment_id=shipment_id,
        status=data["status"],
        location=data.get("location"),
        notes=data.get("notes"),
    )
    return jsonify(_handle(cmd)), 200


@app.route("/shipments/<shipment_id>/cancel", methods=["POST"])
def cancel_shipment_endpoint(shipment_id: str):
    data = _required(request.json, "reason")
    cmd = commands.CancelShipment(
        shipment_id=shipment_id,
        reason=data["reason"],
        location=data.get("location"),
    )
    return jsonify(_handle(cmd)), 200


@app.route("/shipments", methods=["GET"])
def shipments_by_status_endpoint():
    """GET /shipments?status=in_transit"""
    status = request.args.get("status")
    if status is None:
        raise errors.ValidationFailed("Paramètre status obligatoire")
    return jsonify(views.shipments_by_status(status, get_bus().uow)), 200


@app.route("/shipments/pending", methods=["GET"])
def pending_shipments_endpoint():
    return jsonify(views.pending_shipments(get_bus().uow)), 200


@app.route("/shipments/delayed", methods=["GET"])
def delayed_shipments_endpoint():
    return jsonify(views.delayed_shipments(get_bus().uow)), 200


@app.route("/shipments/stats", methods=["GET"])
def shipment_stats_endpoint():
    result = views.shipment_stats(
        get_bus().uow,
        since=_parse_datetime(request.args.get("since")),
        until=_parse_datetime(request.args.get("until")),
    )
    return jsonify(result), 200


@app.route("/shipments/<shipment_id>", methods=["GET"])
def shipment_endpoint(shipment_id: str):
    return jsonify(views.shipment(shipment_id, get_bus().uow)), 200


@app.route("/orders/<order_id>/shipments", methods=["GET"])
def order_shipments_endpoint(order_id: str):
    return jsonify(views.shipments_for_order(order_id, get_bus().uow)), 200


@app.route("/tracking/<tracking_number>", methods=["GET"])
def tracking_endpoint(tracking_number: str):
    """GET /tracking/<tracking_number> : suivi public d'un colis."""
    return jsonify(views.track(tracking_number, get_bus().uow)), 200
