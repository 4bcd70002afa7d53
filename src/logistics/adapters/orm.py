"""
Mapping ORM avec SQLAlchemy (classical mapping).

On définit les tables séparément, puis on mappe les classes
du domaine sur ces tables. Cela permet au modèle de domaine
de rester ignorant de la persistance (persistence ignorance).

Les colonnes `version_number` sont déclarées comme `version_id_col` :
SQLAlchemy ajoute `WHERE version_number = <valeur lue>` à chaque UPDATE
et lève StaleDataError si une autre transaction est passée entre-temps.
Le compteur est incrémenté par le domaine lui-même (version_id_generator
à False) : il sert aussi à numéroter les écritures du journal.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import registry, relationship

from logistics.domain import ledger, shipment

metadata = MetaData()
mapper_registry = registry(metadata=metadata)


def _enum(enum_cls) -> Enum:
    # On stocke la valeur ("stock_in") plutôt que le nom ("STOCK_IN").
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


# --- Catalogue et commandes (agrégats externes, accès via les gateways) ---

products = Table(
    "products",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("sku", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("price", Numeric(12, 2, asdecimal=False), nullable=False, server_default="0"),
    Column("quantity", Integer, nullable=False, server_default="0"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
)

orders = Table(
    "orders",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("status", String(32), nullable=False),
    Column("items", JSON, nullable=False),
    Column("shipping_address", JSON, nullable=True),
)

order_status_history = Table(
    "order_status_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String(64), ForeignKey("orders.id"), nullable=False),
    Column("status", String(32), nullable=False),
    Column("notes", Text),
    Column("timestamp", DateTime(timezone=True), nullable=False),
)

# --- Journal d'inventaire ---

product_stocks = Table(
    "product_stocks",
    metadata,
    Column("product_id", String(64), primary_key=True),
    Column("quantity", Integer, nullable=False),
    Column("initial_quantity", Integer, nullable=False),
    Column("version_number", Integer, nullable=False, server_default="0"),
)

inventory_transactions = Table(
    "inventory_transactions",
    metadata,
    Column("id", String(64), primary_key=True),
    Column(
        "product_id",
        String(64),
        ForeignKey("product_stocks.product_id"),
        nullable=False,
    ),
    Column("sequence", Integer, nullable=False),
    Column("type", _enum(ledger.TransactionType), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("previous_quantity", Integer, nullable=False),
    Column("new_quantity", Integer, nullable=False),
    Column("reason", String(500), nullable=False),
    Column("reference_id", String(64)),
    Column("performed_by", String(64)),
    Column("notes", Text),
    Column("occurred_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("product_id", "sequence", name="uq_transaction_sequence"),
    Index("ix_transactions_product_occurred", "product_id", "occurred_at"),
)

# --- Expéditions ---

shipments = Table(
    "shipments",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("order_id", String(64), nullable=False, index=True),
    Column("tracking_number", String(64), nullable=False, unique=True),
    Column("carrier", _enum(shipment.Carrier), nullable=False),
    Column("status", _enum(shipment.ShipmentStatus), nullable=False),
    Column("estimated_delivery_at", DateTime(timezone=True)),
    Column("shipped_at", DateTime(timezone=True)),
    Column("delivered_at", DateTime(timezone=True)),
    Column("cancelled_at", DateTime(timezone=True)),
    Column("cancellation_reason", String(500)),
    Column("current_location", String(255)),
    Column("notes", String(500)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("version_number", Integer, nullable=False, server_default="0"),
)

# Une seule expédition non annulée par commande.
Index(
    "uq_active_shipment_per_order",
    shipments.c.order_id,
    unique=True,
    sqlite_where=shipments.c.status != shipment.ShipmentStatus.CANCELLED,
    postgresql_where=shipments.c.status != shipment.ShipmentStatus.CANCELLED,
)

shipment_items = Table(
    "shipment_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("shipment_id", String(64), ForeignKey("shipments.id"), nullable=False),
    Column("product_id", String(64), nullable=False),
    Column("sku", String(255), nullable=False),
    Column("name", String(255)),
    Column("quantity", Integer, nullable=False),
)

tracking_entries = Table(
    "tracking_entries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("shipment_id", String(64), ForeignKey("shipments.id"), nullable=False),
    Column("status", _enum(shipment.ShipmentStatus), nullable=False),
    Column("description", String(255), nullable=False),
    Column("location", String(255)),
    Column("notes", Text),
    Column("timestamp", DateTime(timezone=True), nullable=False),
)


_mappers_started = False


def start_mappers() -> None:
    """
    Configure le mapping entre les classes du domaine et les tables SQL.

    Utilise le classical mapping : les classes du domaine ne connaissent
    pas SQLAlchemy. Peut être appelée plusieurs fois (tests, entrypoint) ;
    seul le premier appel mappe les classes.
    """
    global _mappers_started
    if _mappers_started:
        return

    transactions_mapper = mapper_registry.map_imperatively(
        ledger.InventoryTransaction,
        inventory_transactions,
    )
    mapper_registry.map_imperatively(
        ledger.ProductStock,
        product_stocks,
        properties={
            # Le journal n'est jamais relu par l'agrégat : seules les
            # nouvelles écritures passent par cette relation.
            "transactions": relationship(
                transactions_mapper,
                order_by=inventory_transactions.c.sequence,
                lazy="noload",
            ),
        },
        version_id_col=product_stocks.c.version_number,
        version_id_generator=False,
    )

    items_mapper = mapper_registry.map_imperatively(shipment.ShipmentItem, shipment_items)
    entries_mapper = mapper_registry.map_imperatively(shipment.TrackingEntry, tracking_entries)
    mapper_registry.map_imperatively(
        shipment.Shipment,
        shipments,
        properties={
            "items": relationship(items_mapper, order_by=shipment_items.c.id),
            "tracking_history": relationship(
                entries_mapper, order_by=tracking_entries.c.id
            ),
        },
        version_id_col=shipments.c.version_number,
        version_id_generator=False,
    )

    event.listen(ledger.ProductStock, "load", receive_load)
    event.listen(ledger.ProductStock, "load", receive_stock_load)
    event.listen(shipment.Shipment, "load", receive_load)
    _mappers_started = True


def receive_load(aggregate: object, _: object) -> None:
    """Initialise la liste d'événements quand un agrégat est chargé depuis la BDD."""
    aggregate.events = []


def receive_stock_load(stock: ledger.ProductStock, _: object) -> None:
    # Renseignée par le repository, qui lit la dernière écriture seule.
    stock.last_transaction = None
