# orders/services.py
"""
Order creation.

create_order() is the single entry point for placing an order, for guests
and customers alike:

    idempotency claim -> cart validation + stock check -> pricing
    -> [atomic: persist + stock decrement -> point spend -> point earn
        -> store response] -> order_created (on commit)

Pricing and stock problems abort before anything is written. A refused
point spend does not: the order stands and the response carries the reason.
"""
import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional

from django.db import transaction
from django.db.models import F

from catalog.models import Product
from catalog.services import get_products
from common.exceptions import ServiceError
from idempotency.services import (
    claim,
    complete,
    normalize_key,
    release,
    request_hash,
    serialize_body,
)
from loyalty.services import LoyaltyError, earn_points, spend_points
from pricing.resolvers import WHOLESALE, money
from pricing.services import PriceUnresolvableError, PricedLine, context_for_customer, resolve_cart_prices
from .models import Order, OrderItem, WholesaleRule
from .signals import order_created

logger = logging.getLogger(__name__)

CONTACT_FIELDS = ("contact_name", "contact_phone", "contact_email", "comment")


class OrderError(ServiceError):
    code = "order_error"


class OrderValidationError(OrderError):
    code = "validation_error"


class InsufficientStockError(OrderError):
    code = "insufficient_stock"
    status_code = 409


@dataclass(frozen=True)
class OrderResult:
    body: dict
    replayed: bool = False
    status: int = 201


def _positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def normalize_cart(cart_lines: Iterable) -> "OrderedDict[int, int]":
    """
    Accepts dicts with product_id/quantity or (product_id, quantity) pairs.
    Lines for the same product are merged.
    """
    merged: "OrderedDict[int, int]" = OrderedDict()
    for line in cart_lines or []:
        if isinstance(line, dict):
            product_id, quantity = line.get("product_id"), line.get("quantity")
        else:
            product_id, quantity = line
        if not _positive_int(product_id):
            raise OrderValidationError("Invalid product id", product_id=product_id)
        if not _positive_int(quantity):
            raise OrderValidationError(
                "Quantity must be a positive integer",
                product_id=product_id,
                quantity=quantity,
            )
        merged[product_id] = merged.get(product_id, 0) + quantity
    if not merged:
        raise OrderValidationError("Cart is empty")
    return merged


def _points_requested(points_to_spend) -> int:
    if points_to_spend in (None, 0):
        return 0
    if not _positive_int(points_to_spend):
        raise OrderValidationError("points_to_spend must be a positive integer", points_to_spend=points_to_spend)
    return points_to_spend


def _clean_contact(contact) -> dict:
    contact = contact or {}
    return {name: (contact.get(name) or "").strip() for name in CONTACT_FIELDS}


def _checked_lines(merged: "OrderedDict[int, int]") -> list:
    """Fresh product snapshots paired with quantities; every line must be in stock."""
    products = get_products(list(merged))
    lines = []
    for product_id, qty in merged.items():
        product = products.get(product_id)
        if product is None:
            raise OrderValidationError(f"Product {product_id} not found", product_id=product_id)
        if not product.is_active:
            raise PriceUnresolvableError(f'Product "{product.name}" is not available', product_id=product_id)
        if product.stock_quantity < qty:
            raise InsufficientStockError(
                f'Not enough "{product.name}" in stock: {product.stock_quantity} available',
                product_id=product_id,
                product_name=product.name,
                available=product.stock_quantity,
                requested=qty,
            )
        lines.append((product, qty))
    return lines


def apply_wholesale_rules(priced: List[PricedLine], total: Decimal) -> None:
    by_product = {line.product.id: line for line in priced}
    for rule in WholesaleRule.objects.filter(is_active=True):
        if rule.product_id is None:
            if rule.rule_type == WholesaleRule.MIN_ORDER_AMOUNT and total < rule.value:
                raise OrderValidationError(
                    f"Minimum wholesale order amount is {rule.value}",
                    rule=rule.rule_type,
                    minimum=str(rule.value),
                )
            continue

        line = by_product.get(rule.product_id)
        if line is None:
            continue
        if rule.rule_type == WholesaleRule.MIN_QUANTITY and line.quantity < rule.value:
            raise OrderValidationError(
                f'Minimum wholesale quantity for "{line.product.name}" is {int(rule.value)}',
                rule=rule.rule_type,
                product_id=line.product.id,
                minimum=int(rule.value),
            )
        step = int(rule.value)
        if rule.rule_type == WholesaleRule.MULTIPLICITY and step > 1 and line.quantity % step:
            raise OrderValidationError(
                f'Wholesale quantity for "{line.product.name}" must be a multiple of {step}',
                rule=rule.rule_type,
                product_id=line.product.id,
                multiple=step,
            )


def _take_stock(line: PricedLine) -> None:
    updated = Product.objects.filter(
        pk=line.product.id, stock_quantity__gte=line.quantity
    ).update(stock_quantity=F("stock_quantity") - line.quantity)
    if not updated:
        available = Product.objects.filter(pk=line.product.id).values_list("stock_quantity", flat=True).first() or 0
        raise InsufficientStockError(
            f'Not enough "{line.product.name}" in stock: {available} available',
            product_id=line.product.id,
            product_name=line.product.name,
            available=available,
            requested=line.quantity,
        )


def _persist(customer, client_type: str, priced: List[PricedLine], total: Decimal,
             idempotency_key: Optional[str], contact: dict) -> Order:
    order = Order.objects.create(
        customer=customer,
        client_type=client_type,
        total_amount=total,
        items_count=sum(line.quantity for line in priced),
        idempotency_key=idempotency_key,
        **contact,
    )
    order.assign_order_number()
    order.save(update_fields=["order_number"])

    OrderItem.objects.bulk_create([
        OrderItem(
            order=order,
            product_id=line.product.id,
            product_code=line.product.code,
            product_name=line.product.name,
            unit_price=line.unit_price,
            quantity=line.quantity,
            subtotal=money(line.subtotal),
            is_promo=line.product.is_promo,
        )
        for line in priced
    ])
    for line in priced:
        _take_stock(line)
    return order


def _response_body(order: Order, priced: List[PricedLine], loyalty_error: Optional[LoyaltyError]) -> dict:
    body = {
        "order_id": order.id,
        "order_number": order.order_number,
        "client_type": order.client_type,
        "line_items": [
            {
                "product_id": line.product.id,
                "unit_price": str(line.unit_price),
                "quantity": line.quantity,
                "subtotal": str(money(line.subtotal)),
                "is_promo": line.product.is_promo,
            }
            for line in priced
        ],
        "total_amount": str(order.total_amount),
        "items_count": order.items_count,
        "loyalty_points_spent": order.loyalty_points_spent,
    }
    if loyalty_error is not None:
        body["loyalty_points_error"] = loyalty_error.detail
        body["loyalty_points_error_code"] = loyalty_error.code
    return body


def create_order(customer, cart_lines, points_to_spend=None, idempotency_key=None, contact=None) -> OrderResult:
    """
    Place an order for `customer` (None for a guest).

    With an idempotency key a retried request gets the stored response of
    the first successful attempt and nothing else happens.
    """
    key = normalize_key(idempotency_key)
    merged = normalize_cart(cart_lines)
    points = _points_requested(points_to_spend) if customer is not None else 0
    contact = _clean_contact(contact)

    claimed = None
    if key:
        fingerprint = request_hash({
            "customer": customer.pk if customer is not None else None,
            "lines": sorted(merged.items()),
            "points": points,
            "contact": contact,
        })
        claimed = claim(key, fingerprint)
        if claimed.is_replay:
            return OrderResult(
                body=json.loads(claimed.response_body),
                replayed=True,
                status=claimed.response_status or 201,
            )

    try:
        ctx = context_for_customer(customer)
        priced = resolve_cart_prices(ctx, _checked_lines(merged))
        total = money(sum((line.subtotal for line in priced), Decimal("0")))
        if ctx.effective_client_type == WHOLESALE:
            apply_wholesale_rules(priced, total)

        with transaction.atomic():
            order = _persist(customer, ctx.effective_client_type, priced, total, key, contact)

            loyalty_error = None
            if points:
                try:
                    with transaction.atomic():
                        spend_points(customer, points, order=order)
                    order.loyalty_points_spent = points
                    order.save(update_fields=["loyalty_points_spent"])
                except LoyaltyError as exc:
                    loyalty_error = exc
                    logger.warning(
                        "Order %s: point spend of %d refused (%s)",
                        order.order_number, points, exc.code,
                    )

            if customer is not None:
                earn_points(customer, order.total_amount, order=order)

            body = _response_body(order, priced, loyalty_error)
            text = complete(claimed, body) if claimed else serialize_body(body)

            transaction.on_commit(
                lambda: order_created.send(sender=Order, order=order, customer=customer)
            )
    except Exception:
        if claimed:
            release(claimed)
        raise

    logger.info(
        "Created order %s id=%s customer=%s total=%s",
        order.order_number, order.id, customer.pk if customer is not None else None, order.total_amount,
    )
    return OrderResult(body=json.loads(text))
