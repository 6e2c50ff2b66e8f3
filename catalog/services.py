# catalog/services.py
"""
Read-only catalog/stock view consumed by pricing and order creation.

Callers get immutable snapshots so that nothing outside the catalog app
writes prices or stock through a model instance it happened to load.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional

from .models import Product


@dataclass(frozen=True)
class ProductSnapshot:
    id: int
    code: str
    name: str
    is_active: bool
    retail_price: Optional[Decimal]
    wholesale_price: Optional[Decimal]
    stock_quantity: int
    category_id: Optional[int]
    is_promo: bool = False

    @classmethod
    def from_model(cls, p: Product) -> "ProductSnapshot":
        return cls(
            id=p.id,
            code=p.code,
            name=p.name,
            is_active=p.is_active,
            retail_price=p.retail_price,
            wholesale_price=p.wholesale_price,
            stock_quantity=int(p.stock_quantity or 0),
            category_id=p.category_id,
            is_promo=p.is_promo,
        )


_SNAPSHOT_FIELDS = (
    "id", "code", "name", "is_active", "retail_price", "wholesale_price",
    "stock_quantity", "category_id", "is_promo",
)


def get_product(product_id: int) -> Optional[ProductSnapshot]:
    p = Product.objects.only(*_SNAPSHOT_FIELDS).filter(id=product_id).first()
    return ProductSnapshot.from_model(p) if p else None


def get_products(product_ids: Iterable[int]) -> Dict[int, ProductSnapshot]:
    """
    Authoritative snapshots for a set of ids, re-read from the database at
    call time. Unknown ids are simply absent from the result.
    """
    ids = {int(i) for i in product_ids}
    if not ids:
        return {}
    qs = Product.objects.only(*_SNAPSHOT_FIELDS).filter(id__in=ids)
    return {p.id: ProductSnapshot.from_model(p) for p in qs}
