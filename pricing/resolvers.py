# pricing/resolvers.py
"""
Unit price waterfall.

Resolution walks an ordered chain of resolvers; the first one that returns
a PriceResolution wins. Each resolver only knows its own rule, so a new
override scope is added by inserting a resolver into DEFAULT_CHAIN.

    ProductOverrideResolver  -> customer's product-scoped personal price
    CategoryOverrideResolver -> customer's category-scoped personal price
    BasePriceResolver        -> wholesale price (wholesale buyers) or retail
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

from django.db.models import Q

from catalog.services import ProductSnapshot
from .models import PersonalPrice

CENTS = Decimal("0.01")
HUNDRED = Decimal("100")

RETAIL = "retail"
WHOLESALE = "wholesale"


def money(q: Decimal) -> Decimal:
    return Decimal(q).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingContext:
    customer_id: Optional[int]
    client_type: str = RETAIL

    @classmethod
    def guest(cls) -> "PricingContext":
        return cls(customer_id=None, client_type=RETAIL)

    @property
    def is_guest(self) -> bool:
        return self.customer_id is None

    @property
    def effective_client_type(self) -> str:
        # guests never get wholesale pricing, whatever the caller passed
        return RETAIL if self.is_guest else self.client_type


@dataclass(frozen=True)
class PriceResolution:
    unit_price: Decimal
    source: str
    override_id: Optional[int] = None


@dataclass(frozen=True)
class OverrideTerms:
    id: int
    discount_percent: Optional[Decimal]
    fixed_price: Optional[Decimal]


class OverrideSet:
    """
    Effective personal prices of one customer at one instant, indexed by
    product and by category. Among several rows for the same target the most
    recently created one is used.
    """

    def __init__(self, rows: Iterable[PersonalPrice] = ()):
        self._by_product: Dict[int, OverrideTerms] = {}
        self._by_category: Dict[int, OverrideTerms] = {}
        # rows arrive newest first; keep the first seen per target
        for row in rows:
            terms = OverrideTerms(row.id, row.discount_percent, row.fixed_price)
            if row.product_id:
                self._by_product.setdefault(row.product_id, terms)
            elif row.category_id:
                self._by_category.setdefault(row.category_id, terms)

    @classmethod
    def empty(cls) -> "OverrideSet":
        return cls()

    @classmethod
    def load(cls, customer_id, product_ids=None, category_ids=None, when=None) -> "OverrideSet":
        if customer_id is None:
            return cls.empty()
        qs = PersonalPrice.objects.filter(customer_id=customer_id).effective_at(when)
        if product_ids is not None or category_ids is not None:
            cond = Q(pk__in=[])
            if product_ids:
                cond |= Q(product_id__in=list(product_ids))
            if category_ids:
                cond |= Q(product__isnull=True, category_id__in=list(category_ids))
            qs = qs.filter(cond)
        return cls(qs.order_by("-created_at", "-id"))

    def for_product(self, product_id) -> Optional[OverrideTerms]:
        return self._by_product.get(product_id)

    def for_category(self, category_id) -> Optional[OverrideTerms]:
        if category_id is None:
            return None
        return self._by_category.get(category_id)


def base_price(ctx: PricingContext, product: ProductSnapshot) -> Optional[Decimal]:
    if ctx.effective_client_type == WHOLESALE and product.wholesale_price is not None:
        return product.wholesale_price
    return product.retail_price


# returned by a resolver that owns the line but cannot price it
UNRESOLVABLE = object()


class PriceResolver:
    source = "base"

    def resolve(self, ctx: PricingContext, product: ProductSnapshot, category_id,
                overrides: OverrideSet) -> Optional[PriceResolution]:
        raise NotImplementedError


class _OverrideResolver(PriceResolver):
    def lookup(self, product: ProductSnapshot, category_id, overrides: OverrideSet) -> Optional[OverrideTerms]:
        raise NotImplementedError

    def resolve(self, ctx, product, category_id, overrides):
        if ctx.is_guest:
            return None
        terms = self.lookup(product, category_id, overrides)
        if terms is None:
            return None
        if terms.fixed_price is not None:
            return PriceResolution(money(terms.fixed_price), self.source, terms.id)
        base = base_price(ctx, product)
        if base is None:
            # a percentage needs something to be a percentage of; the
            # override still shadows every scope after it
            return UNRESOLVABLE
        pct = Decimal(terms.discount_percent or 0)
        return PriceResolution(money(base * (1 - pct / HUNDRED)), self.source, terms.id)


class ProductOverrideResolver(_OverrideResolver):
    source = "product_override"

    def lookup(self, product, category_id, overrides):
        return overrides.for_product(product.id)


class CategoryOverrideResolver(_OverrideResolver):
    source = "category_override"

    def lookup(self, product, category_id, overrides):
        return overrides.for_category(category_id)


class BasePriceResolver(PriceResolver):
    def resolve(self, ctx, product, category_id, overrides):
        price = base_price(ctx, product)
        if price is None:
            return None
        is_wholesale = (
            ctx.effective_client_type == WHOLESALE and product.wholesale_price is not None
        )
        return PriceResolution(money(price), WHOLESALE if is_wholesale else RETAIL)


DEFAULT_CHAIN: List[PriceResolver] = [
    ProductOverrideResolver(),
    CategoryOverrideResolver(),
    BasePriceResolver(),
]


def run_chain(ctx, product, category_id, overrides, chain=None) -> Optional[PriceResolution]:
    for resolver in (chain or DEFAULT_CHAIN):
        found = resolver.resolve(ctx, product, category_id, overrides)
        if found is UNRESOLVABLE:
            return None
        if found is not None:
            return found
    return None
