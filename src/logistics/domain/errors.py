"""
Erreurs du domaine.

Chaque erreur porte un `code` stable (utilisé par la couche de présentation
pour choisir le code HTTP) et un message lisible. Les quatre familles
correspondent aux catégories d'échec du système :

- NotFound : l'entité référencée n'existe pas
- ValidationFailed : la demande est mal formée (quantité, type, statut…)
- Conflict : la demande est bien formée mais incompatible avec l'état actuel
- ConcurrencyConflict : une écriture concurrente a été détectée au commit ;
  le message bus rejoue la command avant de laisser remonter l'erreur
"""


class LogisticsError(Exception):
    """Classe de base de toutes les erreurs du domaine."""

    code = "LOGISTICS_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# --- Familles ---


class NotFound(LogisticsError):
    code = "NOT_FOUND"


class ValidationFailed(LogisticsError):
    code = "VALIDATION_FAILED"


class Conflict(LogisticsError):
    code = "CONFLICT"


class ConcurrencyConflict(LogisticsError):
    """Mise à jour concurrente détectée ; l'opération peut être rejouée."""

    code = "CONCURRENCY_CONFLICT"


# --- NotFound ---


class ProductNotFound(NotFound):
    code = "PRODUCT_NOT_FOUND"


class ShipmentNotFound(NotFound):
    code = "SHIPMENT_NOT_FOUND"


class OrderNotFound(NotFound):
    code = "ORDER_NOT_FOUND"


class TransactionNotFound(NotFound):
    code = "TRANSACTION_NOT_FOUND"


# --- ValidationFailed ---


class InvalidQuantity(ValidationFailed):
    code = "INVALID_QUANTITY"


class InvalidTransactionType(ValidationFailed):
    code = "INVALID_TRANSACTION_TYPE"


class InvalidStatus(ValidationFailed):
    code = "INVALID_STATUS"


class InvalidCarrier(ValidationFailed):
    code = "INVALID_CARRIER"


class InvalidShipmentItems(ValidationFailed):
    code = "INVALID_SHIPMENT_ITEMS"


# --- Conflict ---


class InsufficientStock(Conflict):
    code = "INSUFFICIENT_STOCK"


class NoStockChange(Conflict):
    code = "NO_STOCK_CHANGE"


class ProductAlreadyExists(Conflict):
    code = "PRODUCT_ALREADY_EXISTS"


class ShipmentAlreadyExists(Conflict):
    code = "SHIPMENT_ALREADY_EXISTS"


class DuplicateTrackingNumber(Conflict):
    code = "DUPLICATE_TRACKING_NUMBER"


class InvalidStatusTransition(Conflict):
    code = "INVALID_STATUS_TRANSITION"


class CannotCancelDelivered(Conflict):
    code = "CANNOT_CANCEL_DELIVERED"


class InvalidOrderStatus(Conflict):
    code = "INVALID_ORDER_STATUS"


# --- ConcurrencyConflict ---


class StaleLedger(ConcurrencyConflict):
    """
    La quantité en cache ne correspond plus à la dernière écriture du journal.

    Signe qu'une autre transaction a modifié le stock entre la lecture
    et l'écriture.
    """

    code = "STALE_LEDGER"
