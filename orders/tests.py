"""
Order creation tests: pricing, stock, loyalty spend/earn and idempotent
replay through create_order() and the HTTP view.
"""

import json
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.test import TestCase
from rest_framework.test import APIRequestFactory, force_authenticate

from catalog.models import Category, Product
from common.roles import CustomerRole
from customers.models import Customer
from idempotency.models import IdempotencyRecord
from idempotency.services import IdempotencyConflictError, IdempotencyKeyMismatchError
from loyalty.models import LoyaltyAccount, LoyaltyTransaction
from loyalty.services import adjust_points
from orders.models import Order, OrderItem, WholesaleRule
from orders.services import InsufficientStockError, OrderValidationError, create_order
from orders.signals import order_created
from orders.views import OrderListCreateView
from pricing.models import PersonalPrice
from pricing.services import PriceUnresolvableError


User = get_user_model()

GUEST_CONTACT = {
    "contact_name": "Guest Buyer",
    "contact_phone": "+380501234567",
    "contact_email": "guest@example.com",
}


def make_customer(username, role=CustomerRole.CLIENT):
    user = User.objects.create_user(username=username, password="pass")
    return user, Customer.objects.create(user=user, full_name=username.title(), role=role)


class OrderFixtureMixin:
    def setUp(self):
        self.category = Category.objects.create(name="Detergents")
        self.gel = Product.objects.create(
            code="gel-1l",
            name="Gel 1L",
            category=self.category,
            retail_price=Decimal("100.00"),
            wholesale_price=Decimal("80.00"),
            stock_quantity=20,
        )
        self.soap = Product.objects.create(
            code="soap",
            name="Soap",
            category=self.category,
            retail_price=Decimal("12.50"),
            stock_quantity=2,
            is_promo=True,
        )
        self.user, self.customer = make_customer("buyer")
        self.wholesale_user, self.wholesaler = make_customer("bulk", role=CustomerRole.WHOLESALER)


class CreateOrderTests(OrderFixtureMixin, TestCase):
    def test_guest_order_uses_retail_prices_and_decrements_stock(self):
        result = create_order(None, [(self.gel.id, 2), (self.soap.id, 1)], contact=GUEST_CONTACT)
        body = result.body

        self.assertFalse(result.replayed)
        self.assertEqual(body["client_type"], "retail")
        self.assertEqual(body["total_amount"], "212.50")
        self.assertEqual(body["items_count"], 3)
        self.assertEqual(body["loyalty_points_spent"], 0)
        self.assertNotIn("loyalty_points_error", body)
        self.assertEqual(body["line_items"][1], {
            "product_id": self.soap.id,
            "unit_price": "12.50",
            "quantity": 1,
            "subtotal": "12.50",
            "is_promo": True,
        })

        order = Order.objects.get(pk=body["order_id"])
        self.assertIsNone(order.customer)
        self.assertEqual(order.status, "new_order")
        self.assertEqual(order.contact_email, "guest@example.com")
        self.assertTrue(order.order_number.startswith("ORD-"))
        self.gel.refresh_from_db()
        self.assertEqual(self.gel.stock_quantity, 18)
        # guests earn nothing
        self.assertFalse(LoyaltyTransaction.objects.exists())

    def test_guest_insufficient_stock_creates_no_order(self):
        with self.assertRaises(InsufficientStockError) as ctx:
            create_order(None, [(self.soap.id, 5)], contact=GUEST_CONTACT)
        self.assertEqual(ctx.exception.extra["product_id"], self.soap.id)
        self.assertEqual(ctx.exception.extra["available"], 2)
        self.assertFalse(Order.objects.exists())
        self.soap.refresh_from_db()
        self.assertEqual(self.soap.stock_quantity, 2)

    def test_customer_order_is_stock_checked_too(self):
        with self.assertRaises(InsufficientStockError):
            create_order(self.customer, [(self.soap.id, 3)])
        self.assertFalse(Order.objects.exists())

    def test_duplicate_lines_are_merged(self):
        result = create_order(None, [(self.gel.id, 1), (self.gel.id, 2)], contact=GUEST_CONTACT)
        self.assertEqual(len(result.body["line_items"]), 1)
        self.assertEqual(result.body["line_items"][0]["quantity"], 3)
        self.assertEqual(OrderItem.objects.count(), 1)

    def test_merged_quantity_is_stock_checked(self):
        with self.assertRaises(InsufficientStockError):
            create_order(None, [(self.soap.id, 1), (self.soap.id, 2)], contact=GUEST_CONTACT)

    def test_invalid_carts_are_rejected(self):
        for lines in ([], [(self.gel.id, 0)], [(self.gel.id, -1)], [(self.gel.id, 1.5)], [(0, 1)]):
            with self.assertRaises(OrderValidationError):
                create_order(None, lines, contact=GUEST_CONTACT)
        self.assertFalse(Order.objects.exists())

    def test_unknown_product_is_rejected(self):
        with self.assertRaises(OrderValidationError):
            create_order(None, [(999999, 1)], contact=GUEST_CONTACT)

    def test_inactive_product_is_unresolvable(self):
        self.gel.is_active = False
        self.gel.save(update_fields=["is_active"])
        with self.assertRaises(PriceUnresolvableError) as ctx:
            create_order(None, [(self.soap.id, 1), (self.gel.id, 1)], contact=GUEST_CONTACT)
        self.assertEqual(ctx.exception.extra["product_id"], self.gel.id)
        self.assertFalse(Order.objects.exists())

    def test_unpriced_product_aborts_whole_order(self):
        self.soap.retail_price = None
        self.soap.save(update_fields=["retail_price"])
        with self.assertRaises(PriceUnresolvableError):
            create_order(self.customer, [(self.gel.id, 1), (self.soap.id, 1)])
        self.assertFalse(Order.objects.exists())
        self.gel.refresh_from_db()
        self.assertEqual(self.gel.stock_quantity, 20)

    def test_wholesaler_pays_wholesale_price(self):
        result = create_order(self.wholesaler, [(self.gel.id, 10)])
        self.assertEqual(result.body["client_type"], "wholesale")
        self.assertEqual(result.body["line_items"][0]["unit_price"], "80.00")
        self.assertEqual(result.body["total_amount"], "800.00")

    def test_personal_price_is_applied(self):
        PersonalPrice.objects.create(customer=self.customer, product=self.gel, fixed_price=Decimal("50.00"))
        result = create_order(self.customer, [(self.gel.id, 2)])
        self.assertEqual(result.body["total_amount"], "100.00")
        item = OrderItem.objects.get(order_id=result.body["order_id"])
        self.assertEqual(item.unit_price, Decimal("50.00"))
        self.assertEqual(item.product_name, "Gel 1L")

    def test_customer_earns_points_on_total(self):
        result = create_order(self.customer, [(self.gel.id, 3)])
        account = LoyaltyAccount.objects.get(customer=self.customer)
        self.assertEqual(account.points_balance, 300)
        self.assertEqual(account.total_lifetime_spend, Decimal("300.00"))
        earn = account.transactions.get(type=LoyaltyTransaction.EARN)
        self.assertEqual(earn.order_id, result.body["order_id"])

    def test_points_are_spent_with_the_order(self):
        adjust_points(self.customer, LoyaltyTransaction.MANUAL_ADD, 80, "Seed")
        result = create_order(self.customer, [(self.gel.id, 1)], points_to_spend=50)
        self.assertEqual(result.body["loyalty_points_spent"], 50)
        self.assertNotIn("loyalty_points_error", result.body)
        account = LoyaltyAccount.objects.get(customer=self.customer)
        # 80 - 50 spent + 100 earned
        self.assertEqual(account.points_balance, 130)
        spend = account.transactions.get(type=LoyaltyTransaction.SPEND)
        self.assertEqual(spend.order_id, result.body["order_id"])

    def test_refused_spend_keeps_order_and_reports_error(self):
        adjust_points(self.customer, LoyaltyTransaction.MANUAL_ADD, 30, "Seed")
        result = create_order(self.customer, [(self.soap.id, 1)], points_to_spend=50)

        self.assertTrue(Order.objects.filter(pk=result.body["order_id"]).exists())
        self.assertEqual(result.body["loyalty_points_spent"], 0)
        self.assertIn("loyalty_points_error", result.body)
        self.assertEqual(result.body["loyalty_points_error_code"], "insufficient_balance")
        account = LoyaltyAccount.objects.get(customer=self.customer)
        self.assertFalse(account.transactions.filter(type=LoyaltyTransaction.SPEND).exists())
        # 30 untouched + 12 earned on 12.50
        self.assertEqual(account.points_balance, 42)

    def test_points_request_from_guest_is_ignored(self):
        result = create_order(None, [(self.gel.id, 1)], points_to_spend=10, contact=GUEST_CONTACT)
        self.assertEqual(result.body["loyalty_points_spent"], 0)
        self.assertFalse(LoyaltyTransaction.objects.exists())

    def test_order_created_signal_fires_after_commit(self):
        handler = mock.Mock()
        order_created.connect(handler, dispatch_uid="test-order-created")
        try:
            with self.captureOnCommitCallbacks(execute=True):
                result = create_order(self.customer, [(self.gel.id, 1)])
        finally:
            order_created.disconnect(dispatch_uid="test-order-created")
        handler.assert_called_once()
        kwargs = handler.call_args.kwargs
        self.assertEqual(kwargs["order"].pk, result.body["order_id"])
        self.assertEqual(kwargs["customer"], self.customer)


class WholesaleRuleTests(OrderFixtureMixin, TestCase):
    def test_global_minimum_order_amount(self):
        WholesaleRule.objects.create(rule_type=WholesaleRule.MIN_ORDER_AMOUNT, value=Decimal("1000"))
        with self.assertRaises(OrderValidationError) as ctx:
            create_order(self.wholesaler, [(self.gel.id, 10)])
        self.assertEqual(ctx.exception.extra["rule"], "min_order_amount")
        self.assertEqual(create_order(self.wholesaler, [(self.gel.id, 13)]).body["total_amount"], "1040.00")

    def test_product_minimum_quantity(self):
        WholesaleRule.objects.create(rule_type=WholesaleRule.MIN_QUANTITY, value=Decimal("5"), product=self.gel)
        with self.assertRaises(OrderValidationError):
            create_order(self.wholesaler, [(self.gel.id, 4)])
        self.assertFalse(Order.objects.exists())

    def test_product_multiplicity(self):
        WholesaleRule.objects.create(rule_type=WholesaleRule.MULTIPLICITY, value=Decimal("6"), product=self.gel)
        with self.assertRaises(OrderValidationError):
            create_order(self.wholesaler, [(self.gel.id, 8)])
        self.assertEqual(create_order(self.wholesaler, [(self.gel.id, 12)]).body["items_count"], 12)

    def test_order_amount_rule_is_global_only(self):
        rule = WholesaleRule(rule_type=WholesaleRule.MIN_ORDER_AMOUNT, value=Decimal("5000"), product=self.gel)
        with self.assertRaises(ValidationError):
            rule.full_clean()
        with self.assertRaises(ValidationError):
            WholesaleRule(rule_type=WholesaleRule.MIN_QUANTITY, value=Decimal("5")).full_clean()

        # a product-scoped amount row that bypassed validation is not enforced
        rule.save()
        result = create_order(self.wholesaler, [(self.gel.id, 1)])
        self.assertEqual(result.body["total_amount"], "80.00")

    def test_rules_do_not_apply_to_retail_orders(self):
        WholesaleRule.objects.create(rule_type=WholesaleRule.MIN_QUANTITY, value=Decimal("5"), product=self.gel)
        create_order(self.customer, [(self.gel.id, 1)])
        self.assertEqual(Order.objects.count(), 1)

    def test_inactive_rule_is_ignored(self):
        WholesaleRule.objects.create(
            rule_type=WholesaleRule.MIN_QUANTITY, value=Decimal("5"), product=self.gel, is_active=False,
        )
        create_order(self.wholesaler, [(self.gel.id, 1)])
        self.assertEqual(Order.objects.count(), 1)


class IdempotentOrderTests(OrderFixtureMixin, TestCase):
    def test_retry_with_same_key_replays_without_new_order(self):
        first = create_order(self.customer, [(self.gel.id, 2)], idempotency_key="abc-123")
        second = create_order(self.customer, [(self.gel.id, 2)], idempotency_key="abc-123")

        self.assertFalse(first.replayed)
        self.assertTrue(second.replayed)
        self.assertEqual(json.dumps(first.body), json.dumps(second.body))
        self.assertEqual(Order.objects.count(), 1)
        self.gel.refresh_from_db()
        self.assertEqual(self.gel.stock_quantity, 18)
        self.assertEqual(LoyaltyTransaction.objects.filter(type=LoyaltyTransaction.EARN).count(), 1)

    def test_replay_survives_later_stock_changes(self):
        first = create_order(None, [(self.soap.id, 2)], idempotency_key="k", contact=GUEST_CONTACT)
        second = create_order(None, [(self.soap.id, 2)], idempotency_key="k", contact=GUEST_CONTACT)
        self.assertEqual(first.body, second.body)

    def test_same_key_different_payload_is_rejected(self):
        create_order(self.customer, [(self.gel.id, 2)], idempotency_key="abc-123")
        with self.assertRaises(IdempotencyKeyMismatchError):
            create_order(self.customer, [(self.gel.id, 3)], idempotency_key="abc-123")
        self.assertEqual(Order.objects.count(), 1)

    def test_in_flight_key_conflicts(self):
        IdempotencyRecord.objects.create(key="busy")
        with self.assertRaises(IdempotencyConflictError):
            create_order(self.customer, [(self.gel.id, 1)], idempotency_key="busy")
        self.assertFalse(Order.objects.exists())

    def test_failed_attempt_releases_key(self):
        with self.assertRaises(InsufficientStockError):
            create_order(None, [(self.soap.id, 5)], idempotency_key="retry-me", contact=GUEST_CONTACT)
        self.assertFalse(IdempotencyRecord.objects.filter(key="retry-me").exists())

        result = create_order(None, [(self.soap.id, 2)], idempotency_key="retry-me", contact=GUEST_CONTACT)
        self.assertFalse(result.replayed)
        self.assertEqual(IdempotencyRecord.objects.get(key="retry-me").status, IdempotencyRecord.COMPLETED)

    def test_unexpected_failure_rolls_back_and_releases(self):
        with mock.patch("orders.services.earn_points", side_effect=RuntimeError("boom")):
            with self.assertRaises(RuntimeError):
                create_order(self.customer, [(self.gel.id, 1)], idempotency_key="boom-key")
        self.assertFalse(Order.objects.exists())
        self.assertFalse(IdempotencyRecord.objects.filter(key="boom-key").exists())
        self.gel.refresh_from_db()
        self.assertEqual(self.gel.stock_quantity, 20)

        result = create_order(self.customer, [(self.gel.id, 1)], idempotency_key="boom-key")
        self.assertFalse(result.replayed)
        self.assertEqual(Order.objects.count(), 1)

    def test_completed_record_stores_the_response(self):
        result = create_order(self.customer, [(self.gel.id, 1)], idempotency_key="stored")
        record = IdempotencyRecord.objects.get(key="stored")
        self.assertEqual(record.status, IdempotencyRecord.COMPLETED)
        self.assertEqual(json.loads(record.response_body), result.body)
        self.assertEqual(Order.objects.get().idempotency_key, "stored")


class OrderApiTests(OrderFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.factory = APIRequestFactory()

    def post(self, payload, user=None, key=None):
        headers = {"HTTP_X_IDEMPOTENCY_KEY": key} if key else {}
        request = self.factory.post("/api/v1/orders/", payload, format="json", **headers)
        if user is not None:
            force_authenticate(request, user=user)
        response = OrderListCreateView.as_view()(request)
        response.render()
        return response

    def test_replay_returns_byte_identical_body(self):
        payload = {"items": [{"product_id": self.gel.id, "quantity": 2}]}
        first = self.post(payload, user=self.user, key="http-key")
        second = self.post(payload, user=self.user, key="http-key")

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 201)
        self.assertEqual(first.content, second.content)
        self.assertEqual(second["Idempotent-Replayed"], "true")
        self.assertEqual(Order.objects.count(), 1)

    def test_guest_checkout_requires_contact_details(self):
        response = self.post({"items": [{"product_id": self.gel.id, "quantity": 1}]})
        self.assertEqual(response.status_code, 400)
        self.assertIn("contact_phone", response.data)

    def test_inactive_product_maps_to_price_unresolvable(self):
        self.gel.is_active = False
        self.gel.save(update_fields=["is_active"])
        response = self.post({"items": [{"product_id": self.gel.id, "quantity": 1}]}, user=self.user)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "price_unresolvable")

    def test_guest_insufficient_stock_is_409(self):
        response = self.post({"items": [{"product_id": self.soap.id, "quantity": 5}], **GUEST_CONTACT})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "insufficient_stock")
        self.assertEqual(response.data["available"], 2)
        self.assertFalse(Order.objects.exists())

    def test_in_flight_key_is_409_with_retry_after(self):
        IdempotencyRecord.objects.create(key="busy")
        response = self.post({"items": [{"product_id": self.gel.id, "quantity": 1}]}, user=self.user, key="busy")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "idempotency_conflict")
        self.assertEqual(response["Retry-After"], "1")

    def test_key_mismatch_is_422(self):
        self.post({"items": [{"product_id": self.gel.id, "quantity": 1}]}, user=self.user, key="k1")
        response = self.post({"items": [{"product_id": self.gel.id, "quantity": 2}]}, user=self.user, key="k1")
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.data["code"], "idempotency_key_mismatch")

    def test_spend_failure_is_a_soft_warning(self):
        adjust_points(self.customer, LoyaltyTransaction.MANUAL_ADD, 30, "Seed")
        response = self.post({
            "items": [{"product_id": self.gel.id, "quantity": 1}],
            "loyalty_points_to_spend": 50,
        }, user=self.user)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["loyalty_points_error_code"], "insufficient_balance")

    def test_list_returns_own_orders(self):
        create_order(self.customer, [(self.gel.id, 1)])
        create_order(self.wholesaler, [(self.gel.id, 1)])
        request = self.factory.get("/api/v1/orders/")
        force_authenticate(request, user=self.user)
        response = OrderListCreateView.as_view()(request)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["results"][0]["items"][0]["product_code"], "gel-1l")

    def test_list_requires_customer(self):
        request = self.factory.get("/api/v1/orders/")
        response = OrderListCreateView.as_view()(request)
        self.assertEqual(response.status_code, 401)
