"""
Tests unitaires du journal d'inventaire.

Ces tests vérifient le comportement de ProductStock et de ses écritures
en isolation complète, sans base de données ni I/O.
C'est le "low gear" : on teste la logique métier au plus près.
"""

import pytest

from logistics.domain import errors, events
from logistics.domain.ledger import (
    InventoryTransaction,
    ProductStock,
    StockPolicy,
    TransactionType,
)


# --- Helpers ---


def types_d_événements(stock: ProductStock) -> list[type]:
    return [type(e) for e in stock.events]


# --- Tests des types d'écriture ---


class TestTransactionType:
    @pytest.mark.parametrize("tx_type", ["stock_in", "return", "adjustment_in"])
    def test_types_entrants(self, tx_type):
        assert TransactionType(tx_type).sign == 1

    @pytest.mark.parametrize("tx_type", ["stock_out", "sale", "adjustment_out", "damage"])
    def test_types_sortants(self, tx_type):
        assert TransactionType(tx_type).sign == -1

    def test_seule_la_sortie_de_stock_est_stricte(self):
        stricts = {t for t in TransactionType if t.policy is StockPolicy.STRICT}
        assert stricts == {TransactionType.STOCK_OUT}

    def test_type_inconnu(self):
        with pytest.raises(errors.InvalidTransactionType):
            TransactionType.parse("vol")


# --- Tests de ProductStock.apply ---


class TestAppliquerUneÉcriture:
    def test_vente_puis_sortie_stricte_insuffisante(self):
        stock = ProductStock("prod-1", quantity=50)

        tx = stock.apply(TransactionType.SALE, 20)

        assert stock.quantity == 30
        assert (tx.previous_quantity, tx.new_quantity) == (50, 30)

        with pytest.raises(errors.InsufficientStock, match="Disponible : 30"):
            stock.apply(TransactionType.STOCK_OUT, 40)

        assert stock.quantity == 30
        assert stock.transactions == [tx]

    def test_entrée_augmente_le_stock(self):
        stock = ProductStock("prod-1", quantity=5)
        tx = stock.apply("stock_in", 10)
        assert stock.quantity == 15
        assert tx.delta == 10

    def test_la_vente_est_bornée_à_zéro(self):
        stock = ProductStock("prod-1", quantity=5)

        tx = stock.apply(TransactionType.SALE, 8)

        assert stock.quantity == 0
        assert tx.quantity == 8
        assert tx.delta == -5
        assert tx.clamped

    @pytest.mark.parametrize("tx_type", ["sale", "adjustment_out", "damage"])
    def test_les_types_conciliants_ne_lèvent_pas(self, tx_type):
        stock = ProductStock("prod-1", quantity=3)
        stock.apply(tx_type, 10)
        assert stock.quantity == 0

    def test_le_mode_strict_s_applique_à_tous_les_types(self):
        stock = ProductStock("prod-1", quantity=3)

        with pytest.raises(errors.InsufficientStock):
            stock.apply(TransactionType.SALE, 10, strict=True)

        assert stock.quantity == 3
        assert stock.transactions == []

    def test_la_sortie_stricte_peut_vider_le_stock(self):
        stock = ProductStock("prod-1", quantity=7)
        stock.apply(TransactionType.STOCK_OUT, 7)
        assert stock.quantity == 0

    @pytest.mark.parametrize("quantité", [0, -3, 2.5, True, "3", None])
    def test_quantité_invalide(self, quantité):
        stock = ProductStock("prod-1", quantity=10)

        with pytest.raises(errors.InvalidQuantity):
            stock.apply(TransactionType.STOCK_IN, quantité)

        assert stock.quantity == 10
        assert stock.transactions == []
        assert stock.version_number == 0

    def test_type_invalide_ne_modifie_rien(self):
        stock = ProductStock("prod-1", quantity=10)
        with pytest.raises(errors.InvalidTransactionType):
            stock.apply("cadeau", 1)
        assert stock.transactions == []

    def test_les_écritures_sont_numérotées(self):
        stock = ProductStock("prod-1", quantity=10)
        for _ in range(3):
            stock.apply(TransactionType.STOCK_IN, 1)
        assert [tx.sequence for tx in stock.transactions] == [1, 2, 3]
        assert stock.version_number == 3

    def test_raison_par_défaut(self):
        stock = ProductStock("prod-1", quantity=10)
        tx = stock.apply(TransactionType.SALE, 1)
        assert tx.reason == "Vente de produit"

    def test_raison_fournie(self):
        stock = ProductStock("prod-1", quantity=10)
        tx = stock.apply(TransactionType.DAMAGE, 1, reason="Carton écrasé", reference_id="cmd-9")
        assert tx.reason == "Carton écrasé"
        assert tx.reference_id == "cmd-9"

    def test_stock_initial_négatif_refusé(self):
        with pytest.raises(errors.InvalidQuantity):
            ProductStock("prod-1", quantity=-1)

    def test_cache_incohérent_détecté(self):
        stock = ProductStock("prod-1", quantity=10)
        stock.apply(TransactionType.SALE, 2)
        stock.quantity = 99  # écriture hors journal

        with pytest.raises(errors.StaleLedger):
            stock.apply(TransactionType.SALE, 1)

        assert len(stock.transactions) == 1


class TestStockRechargé:
    """Un stock relu depuis la base ne porte que sa dernière écriture."""

    def stock_rechargé(self, dernière_quantité: int) -> ProductStock:
        stock = ProductStock("prod-1", quantity=8, initial_quantity=10, version_number=2)
        stock.last_transaction = InventoryTransaction(
            "tx-2", "prod-1", TransactionType.SALE, 1, 9, dernière_quantité, 2, "Vente"
        )
        return stock

    def test_écrire_sans_le_journal_complet(self):
        stock = self.stock_rechargé(dernière_quantité=8)

        tx = stock.apply(TransactionType.STOCK_IN, 5)

        assert (tx.previous_quantity, tx.new_quantity, tx.sequence) == (8, 13, 3)
        assert stock.transactions == [tx]
        assert stock.last_transaction is tx

    def test_ancre_incohérente_détectée(self):
        stock = self.stock_rechargé(dernière_quantité=7)

        with pytest.raises(errors.StaleLedger):
            stock.apply(TransactionType.STOCK_IN, 5)

        assert stock.quantity == 8
        assert stock.transactions == []


class TestRejeuDuJournal:
    def test_le_rejeu_reproduit_la_quantité(self):
        stock = ProductStock("prod-1", quantity=50)
        mouvements = [
            ("sale", 20),
            ("return", 3),
            ("damage", 1),
            ("stock_in", 100),
            ("adjustment_out", 40),
            ("sale", 500),  # borné à zéro
            ("adjustment_in", 12),
        ]
        for tx_type, quantité in mouvements:
            stock.apply(tx_type, quantité)

        assert stock.quantity == 12
        assert stock.initial_quantity + sum(tx.delta for tx in stock.transactions) == stock.quantity

    def test_chaque_écriture_enchaîne_sur_la_précédente(self):
        stock = ProductStock("prod-1", quantity=4)
        for tx_type, quantité in [("sale", 1), ("stock_in", 6), ("damage", 20)]:
            stock.apply(tx_type, quantité)

        précédente = stock.initial_quantity
        for tx in stock.transactions:
            assert tx.previous_quantity == précédente
            précédente = tx.new_quantity
        assert précédente == stock.quantity


class TestAjustement:
    def test_ajustement_à_la_hausse(self):
        stock = ProductStock("prod-1", quantity=30)

        tx = stock.adjust_to(45)

        assert tx.type is TransactionType.ADJUSTMENT_IN
        assert tx.quantity == 15
        assert stock.quantity == 45

    def test_ajustement_à_la_baisse(self):
        stock = ProductStock("prod-1", quantity=30)
        tx = stock.adjust_to(0)
        assert tx.type is TransactionType.ADJUSTMENT_OUT
        assert tx.quantity == 30
        assert stock.quantity == 0

    def test_ajustement_idempotent(self):
        stock = ProductStock("prod-1", quantity=30)
        stock.adjust_to(45)

        with pytest.raises(errors.NoStockChange):
            stock.adjust_to(45)

        assert stock.quantity == 45
        assert len(stock.transactions) == 1

    def test_cible_négative_refusée(self):
        stock = ProductStock("prod-1", quantity=30)
        with pytest.raises(errors.InvalidQuantity):
            stock.adjust_to(-5)


class TestÉvénements:
    def test_chaque_écriture_émet_stock_level_changed(self):
        stock = ProductStock("prod-1", quantity=50)
        tx = stock.apply(TransactionType.STOCK_IN, 5)
        assert stock.events == [
            events.StockLevelChanged(
                product_id="prod-1",
                transaction_id=tx.id,
                type="stock_in",
                previous_quantity=50,
                new_quantity=55,
            )
        ]

    def test_passage_sous_le_seuil(self):
        stock = ProductStock("prod-1", quantity=15)
        stock.apply(TransactionType.SALE, 6, low_stock_threshold=10)
        assert types_d_événements(stock) == [events.StockLevelChanged, events.LowStock]
        assert stock.events[1].quantity == 9

    def test_pas_de_nouvelle_alerte_déjà_sous_le_seuil(self):
        stock = ProductStock("prod-1", quantity=9)
        stock.apply(TransactionType.SALE, 1, low_stock_threshold=10)
        assert types_d_événements(stock) == [events.StockLevelChanged]

    def test_rupture_de_stock(self):
        stock = ProductStock("prod-1", quantity=4)
        stock.apply(TransactionType.DAMAGE, 4)
        assert types_d_événements(stock) == [events.StockLevelChanged, events.OutOfStock]


class TestInventoryTransaction:
    def test_égalité_par_identifiant(self):
        a = InventoryTransaction("tx-1", "prod-1", TransactionType.SALE, 1, 5, 4, 1, "Vente")
        b = InventoryTransaction("tx-1", "prod-1", TransactionType.SALE, 2, 5, 3, 1, "Vente")
        assert a == b
        assert len({a, b}) == 1

    def test_to_dict(self):
        tx = InventoryTransaction("tx-1", "prod-1", TransactionType.SALE, 1, 5, 4, 1, "Vente")
        data = tx.to_dict()
        assert data["type"] == "sale"
        assert (data["previous_quantity"], data["new_quantity"]) == (5, 4)
        assert data["occurred_at"] is not None
