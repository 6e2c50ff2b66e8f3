# pricing/services.py
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence

from django.utils import timezone

from catalog.services import ProductSnapshot
from common.exceptions import ServiceError
from customers.services import role_info
from .resolvers import (
    OverrideSet,
    PriceResolution,
    PricingContext,
    RETAIL,
    WHOLESALE,
    run_chain,
)

logger = logging.getLogger(__name__)


class PricingError(ServiceError):
    code = "pricing_error"


class PriceUnresolvableError(PricingError):
    """No valid unit price could be found for a line. Never priced at zero."""
    code = "price_unresolvable"


def context_for_customer(customer) -> PricingContext:
    """
    Pricing context for an authenticated customer, or the guest context when
    `customer` is None. Wholesale eligibility comes from the role only.
    """
    if customer is None:
        return PricingContext.guest()
    info = role_info(customer.id, customer.role)
    return PricingContext(
        customer_id=customer.id,
        client_type=WHOLESALE if info.is_wholesale_eligible else RETAIL,
    )


def resolve_price(
    ctx: PricingContext,
    product: ProductSnapshot,
    category_id=None,
    *,
    quantity: Optional[int] = None,
    overrides: Optional[OverrideSet] = None,
    when=None,
) -> PriceResolution:
    if not product.is_active:
        raise PriceUnresolvableError(
            f'Product "{product.name}" is not available',
            product_id=product.id,
        )
    if quantity is not None and quantity > product.stock_quantity:
        raise PriceUnresolvableError(
            f'Product "{product.name}" is out of stock for quantity {quantity}',
            product_id=product.id,
        )
    if category_id is None:
        category_id = product.category_id
    if overrides is None:
        overrides = OverrideSet.load(
            ctx.customer_id,
            product_ids=[product.id],
            category_ids=[category_id] if category_id else [],
            when=when,
        )
    found = run_chain(ctx, product, category_id, overrides)
    if found is None:
        raise PriceUnresolvableError(
            f'Product "{product.name}" has no price',
            product_id=product.id,
        )
    return found


def resolve_unit_price(ctx: PricingContext, product: ProductSnapshot, category_id=None, **kwargs) -> Decimal:
    return resolve_price(ctx, product, category_id, **kwargs).unit_price


@dataclass(frozen=True)
class PricedLine:
    product: ProductSnapshot
    quantity: int
    unit_price: Decimal
    source: str

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


def resolve_cart_prices(ctx: PricingContext, lines: Sequence[tuple]) -> List[PricedLine]:
    """
    Price every (ProductSnapshot, quantity) pair with one override lookup.
    The first unresolvable line aborts the whole cart.
    """
    when = timezone.now()
    products = [p for p, _ in lines]
    overrides = OverrideSet.load(
        ctx.customer_id,
        product_ids=[p.id for p in products],
        category_ids=[p.category_id for p in products if p.category_id],
        when=when,
    )
    priced: List[PricedLine] = []
    for product, qty in lines:
        found = resolve_price(ctx, product, overrides=overrides, when=when)
        priced.append(PricedLine(product=product, quantity=qty, unit_price=found.unit_price, source=found.source))
    logger.debug(
        "Priced %d line(s) for customer=%s client_type=%s",
        len(priced), ctx.customer_id, ctx.effective_client_type,
    )
    return priced
