"""
Adapter pour le catalogue produits.

Le catalogue est un agrégat externe. Le journal d'inventaire le consulte
(le produit existe-t-il ?) et y recopie la quantité après chaque écriture :
`update_quantity` est l'unique point de mutation, appelé seulement par les
handlers d'inventaire.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass

from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from logistics.adapters import orm


@dataclass(frozen=True)
class CatalogProduct:
    id: str
    sku: str
    name: str
    price: float
    quantity: int
    is_active: bool = True


class AbstractCatalog(abc.ABC):

    @abc.abstractmethod
    def find_by_id(self, product_id: str) -> CatalogProduct | None:
        raise NotImplementedError

    @abc.abstractmethod
    def find_by_sku(self, sku: str) -> CatalogProduct | None:
        raise NotImplementedError

    @abc.abstractmethod
    def add(self, product: CatalogProduct) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def update_quantity(self, product_id: str, quantity: int) -> None:
        raise NotImplementedError


class SqlAlchemyCatalog(AbstractCatalog):
    """Catalogue stocké dans la même base ; partage la session du Unit of Work."""

    def __init__(self, session: Session):
        self.session = session

    def find_by_id(self, product_id: str) -> CatalogProduct | None:
        row = self.session.execute(
            select(orm.products).where(orm.products.c.id == product_id)
        ).first()
        if row is None:
            return None
        return CatalogProduct(**row._mapping)

    def find_by_sku(self, sku: str) -> CatalogProduct | None:
        row = self.session.execute(
            select(orm.products).where(orm.products.c.sku == sku)
        ).first()
        if row is None:
            return None
        return CatalogProduct(**row._mapping)

    def add(self, product: CatalogProduct) -> None:
        self.session.execute(
            insert(orm.products).values(
                id=product.id,
                sku=product.sku,
                name=product.name,
                price=product.price,
                quantity=product.quantity,
                is_active=product.is_active,
            )
        )

    def update_quantity(self, product_id: str, quantity: int) -> None:
        self.session.execute(
            update(orm.products)
            .where(orm.products.c.id == product_id)
            .values(quantity=quantity)
        )
