"""
Modèle de domaine du journal d'inventaire.

Le journal (ledger) est la source de vérité : chaque mouvement de stock
est une InventoryTransaction immuable, numérotée par produit. La quantité
portée par ProductStock n'est qu'une vue matérialisée de ce journal,
revérifiée à chaque écriture.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from logistics.domain import errors, events

LOW_STOCK_THRESHOLD = 10


class StockPolicy(Enum):
    """
    Comportement d'un mouvement sortant qui dépasse le stock disponible.

    - CLAMP : la quantité est ramenée à zéro (politique de réconciliation)
    - STRICT : le mouvement est refusé avec InsufficientStock
    """

    CLAMP = "clamp"
    STRICT = "strict"


class TransactionType(Enum):
    STOCK_IN = "stock_in"
    STOCK_OUT = "stock_out"
    SALE = "sale"
    RETURN = "return"
    ADJUSTMENT_IN = "adjustment_in"
    ADJUSTMENT_OUT = "adjustment_out"
    DAMAGE = "damage"

    @classmethod
    def parse(cls, value: TransactionType | str) -> TransactionType:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise errors.InvalidTransactionType(
                f"Type de transaction invalide : {value!r}"
            ) from None

    @property
    def sign(self) -> int:
        return 1 if self in _INCREASING_TYPES else -1

    @property
    def policy(self) -> StockPolicy:
        return _POLICIES.get(self, StockPolicy.CLAMP)

    @property
    def default_reason(self) -> str:
        return _DEFAULT_REASONS[self]


_INCREASING_TYPES = frozenset({
    TransactionType.STOCK_IN,
    TransactionType.RETURN,
    TransactionType.ADJUSTMENT_IN,
})

# Seule la sortie de stock explicite est stricte ; ventes, ajustements
# et casse réconcilient le stock en le bornant à zéro.
_POLICIES = {
    TransactionType.STOCK_OUT: StockPolicy.STRICT,
    TransactionType.SALE: StockPolicy.CLAMP,
    TransactionType.ADJUSTMENT_OUT: StockPolicy.CLAMP,
    TransactionType.DAMAGE: StockPolicy.CLAMP,
}

_DEFAULT_REASONS = {
    TransactionType.STOCK_IN: "Entrée de stock",
    TransactionType.STOCK_OUT: "Sortie de stock",
    TransactionType.SALE: "Vente de produit",
    TransactionType.RETURN: "Retour de produit",
    TransactionType.ADJUSTMENT_IN: "Ajustement manuel d'inventaire",
    TransactionType.ADJUSTMENT_OUT: "Ajustement manuel d'inventaire",
    TransactionType.DAMAGE: "Produit endommagé",
}


def _validate_quantity(quantity: object, allow_zero: bool = False) -> int:
    # bool est une sous-classe d'int
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise errors.InvalidQuantity(f"Quantité invalide : {quantity!r}")
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise errors.InvalidQuantity(
            f"La quantité doit être un entier {'positif' if allow_zero else 'strictement positif'}"
        )
    return quantity


class InventoryTransaction:
    """
    Écriture du journal d'inventaire.

    `quantity` est l'amplitude demandée, toujours positive ; le sens découle
    du type. `previous_quantity` et `new_quantity` photographient le stock
    avant et après l'écriture. Quand un mouvement sortant est borné à zéro,
    l'écart réellement appliqué (`delta`) est plus petit que `quantity`.

    Une écriture n'est jamais modifiée ni supprimée : c'est la piste d'audit.
    """

    def __init__(
        self,
        id: str,
        product_id: str,
        type: TransactionType,
        quantity: int,
        previous_quantity: int,
        new_quantity: int,
        sequence: int,
        reason: str,
        reference_id: Optional[str] = None,
        performed_by: Optional[str] = None,
        notes: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ):
        self.id = id
        self.product_id = product_id
        self.type = type
        self.quantity = quantity
        self.previous_quantity = previous_quantity
        self.new_quantity = new_quantity
        self.sequence = sequence
        self.reason = reason
        self.reference_id = reference_id
        self.performed_by = performed_by
        self.notes = notes
        self.occurred_at = occurred_at or datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return f"<InventoryTransaction {self.product_id}#{self.sequence} {self.type.value}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, InventoryTransaction):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def delta(self) -> int:
        """Écart signé effectivement appliqué au stock."""
        return self.new_quantity - self.previous_quantity

    @property
    def clamped(self) -> bool:
        return abs(self.delta) != self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type.value,
            "quantity": self.quantity,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "sequence": self.sequence,
            "reason": self.reason,
            "reference_id": self.reference_id,
            "performed_by": self.performed_by,
            "notes": self.notes,
            "occurred_at": self.occurred_at,
        }


class ProductStock:
    """
    Agrégat racine du stock d'un produit.

    C'est la frontière de cohérence du journal : toute modification de
    `quantity` passe par `apply`, qui ajoute exactement une écriture.
    `version_number` sert au verrouillage optimiste et numérote les
    écritures (`sequence`), ce qui donne un ordre total par produit.

    `transactions` ne porte que les écritures connues de cette instance :
    un stock rechargé depuis la base ne relit pas son journal. La
    vérification de cohérence s'appuie sur `last_transaction`, la plus
    récente, que le repository charge seule.
    """

    def __init__(
        self,
        product_id: str,
        quantity: int = 0,
        initial_quantity: Optional[int] = None,
        version_number: int = 0,
        transactions: Optional[list[InventoryTransaction]] = None,
    ):
        _validate_quantity(quantity, allow_zero=True)
        self.product_id = product_id
        self.quantity = quantity
        self.initial_quantity = quantity if initial_quantity is None else initial_quantity
        self.version_number = version_number
        self.transactions = transactions or []
        self.last_transaction: Optional[InventoryTransaction] = (
            self.transactions[-1] if self.transactions else None
        )
        self.events: list[events.Event] = []

    def __repr__(self) -> str:
        return f"<ProductStock {self.product_id} qty={self.quantity}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProductStock):
            return NotImplemented
        return self.product_id == other.product_id

    def __hash__(self) -> int:
        return hash(self.product_id)

    def _check_consistency(self) -> None:
        expected = (
            self.last_transaction.new_quantity
            if self.last_transaction is not None
            else self.initial_quantity
        )
        if self.quantity != expected:
            raise errors.StaleLedger(
                f"Stock incohérent pour {self.product_id} : "
                f"{self.quantity} en cache, {expected} dans le journal"
            )

    def apply(
        self,
        type: TransactionType | str,
        quantity: int,
        reason: Optional[str] = None,
        reference_id: Optional[str] = None,
        performed_by: Optional[str] = None,
        notes: Optional[str] = None,
        strict: bool = False,
        low_stock_threshold: int = LOW_STOCK_THRESHOLD,
        now: Optional[datetime] = None,
    ) -> InventoryTransaction:
        """
        Ajoute une écriture au journal et met à jour la quantité.

        Toutes les validations ont lieu avant la moindre mutation : en cas
        d'erreur, l'agrégat reste inchangé.
        """
        tx_type = TransactionType.parse(type)
        _validate_quantity(quantity)
        self._check_consistency()

        previous = self.quantity
        new = previous + tx_type.sign * quantity
        if new < 0:
            if strict or tx_type.policy is StockPolicy.STRICT:
                raise errors.InsufficientStock(
                    f"Stock insuffisant pour {self.product_id}. "
                    f"Disponible : {previous}, demandé : {quantity}"
                )
            new = 0

        self.version_number += 1
        transaction = InventoryTransaction(
            id=str(uuid.uuid4()),
            product_id=self.product_id,
            type=tx_type,
            quantity=quantity,
            previous_quantity=previous,
            new_quantity=new,
            sequence=self.version_number,
            reason=reason or tx_type.default_reason,
            reference_id=reference_id,
            performed_by=performed_by,
            notes=notes,
            occurred_at=now,
        )
        self.transactions.append(transaction)
        self.last_transaction = transaction
        self.quantity = new

        self.events.append(
            events.StockLevelChanged(
                product_id=self.product_id,
                transaction_id=transaction.id,
                type=tx_type.value,
                previous_quantity=previous,
                new_quantity=new,
            )
        )
        if new == 0 and previous > 0:
            self.events.append(events.OutOfStock(product_id=self.product_id))
        elif 0 < new <= low_stock_threshold < previous:
            self.events.append(
                events.LowStock(
                    product_id=self.product_id,
                    quantity=new,
                    threshold=low_stock_threshold,
                )
            )
        return transaction

    def adjust_to(
        self,
        target_quantity: int,
        reason: Optional[str] = None,
        performed_by: Optional[str] = None,
        notes: Optional[str] = None,
        low_stock_threshold: int = LOW_STOCK_THRESHOLD,
        now: Optional[datetime] = None,
    ) -> InventoryTransaction:
        """
        Aligne le stock sur une quantité comptée.

        L'écart devient un AdjustmentIn ou un AdjustmentOut ; un écart nul
        lève NoStockChange.
        """
        _validate_quantity(target_quantity, allow_zero=True)
        difference = target_quantity - self.quantity
        if difference == 0:
            raise errors.NoStockChange(
                f"Le stock de {self.product_id} vaut déjà {target_quantity}"
            )
        tx_type = (
            TransactionType.ADJUSTMENT_IN if difference > 0
            else TransactionType.ADJUSTMENT_OUT
        )
        return self.apply(
            tx_type,
            abs(difference),
            reason=reason,
            performed_by=performed_by,
            notes=notes,
            low_stock_threshold=low_stock_threshold,
            now=now,
        )
