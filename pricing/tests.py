from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from catalog.models import Category, Product
from catalog.services import get_product
from common.roles import CustomerRole
from customers.models import Customer
from pricing.models import PersonalPrice
from pricing.resolvers import PricingContext, WHOLESALE
from pricing.services import (
    PriceUnresolvableError,
    context_for_customer,
    resolve_cart_prices,
    resolve_price,
    resolve_unit_price,
)
from pricing.views import PersonalPriceDetailView, PersonalPriceListCreateView, ResolvePriceView


User = get_user_model()


def make_customer(username, role=CustomerRole.CLIENT, **kwargs):
    user = User.objects.create_user(username=username, password="pass")
    customer = Customer.objects.create(user=user, full_name=username.title(), role=role, **kwargs)
    return user, customer


class PriceWaterfallTests(TestCase):
    def setUp(self):
        self.category = Category.objects.create(name="Detergents")
        self.other_category = Category.objects.create(name="Brushes")
        self.product = Product.objects.create(
            code="gel-1l",
            name="Gel 1L",
            category=self.category,
            retail_price=Decimal("100.00"),
            wholesale_price=Decimal("80.00"),
            stock_quantity=10,
        )
        self.retail_only = Product.objects.create(
            code="brush",
            name="Brush",
            category=self.other_category,
            retail_price=Decimal("40.00"),
            stock_quantity=10,
        )
        _, self.client_customer = make_customer("client")
        _, self.wholesaler = make_customer("wholesaler", role=CustomerRole.WHOLESALER)

    def price(self, customer, product=None, **kwargs):
        ctx = context_for_customer(customer)
        return resolve_price(ctx, get_product((product or self.product).id), **kwargs)

    def test_guest_gets_retail_price(self):
        found = self.price(None)
        self.assertEqual(found.unit_price, Decimal("100.00"))
        self.assertEqual(found.source, "retail")

    def test_wholesaler_without_override_gets_wholesale_price(self):
        found = self.price(self.wholesaler)
        self.assertEqual(found.unit_price, Decimal("80.00"))
        self.assertEqual(found.source, "wholesale")

    def test_wholesaler_falls_back_to_retail_when_no_wholesale_price(self):
        found = self.price(self.wholesaler, self.retail_only)
        self.assertEqual(found.unit_price, Decimal("40.00"))
        self.assertEqual(found.source, "retail")

    def test_fixed_price_override_applies_regardless_of_role(self):
        for customer in (self.client_customer, self.wholesaler):
            PersonalPrice.objects.create(customer=customer, product=self.product, fixed_price=Decimal("50.00"))
            found = self.price(customer)
            self.assertEqual(found.unit_price, Decimal("50.00"))
            self.assertEqual(found.source, "product_override")

    def test_fixed_price_wins_over_percentage_on_same_row(self):
        PersonalPrice.objects.create(
            customer=self.client_customer,
            product=self.product,
            discount_percent=Decimal("10"),
            fixed_price=Decimal("70.00"),
        )
        self.assertEqual(self.price(self.client_customer).unit_price, Decimal("70.00"))

    def test_product_override_beats_category_override(self):
        PersonalPrice.objects.create(customer=self.client_customer, category=self.category, discount_percent=Decimal("50"))
        PersonalPrice.objects.create(customer=self.client_customer, product=self.product, discount_percent=Decimal("10"))
        found = self.price(self.client_customer)
        self.assertEqual(found.unit_price, Decimal("90.00"))
        self.assertEqual(found.source, "product_override")

    def test_category_percentage_applies_to_wholesale_base(self):
        PersonalPrice.objects.create(customer=self.wholesaler, category=self.category, discount_percent=Decimal("10"))
        found = self.price(self.wholesaler)
        self.assertEqual(found.unit_price, Decimal("72.00"))
        self.assertEqual(found.source, "category_override")

    def test_override_for_other_category_is_ignored(self):
        PersonalPrice.objects.create(customer=self.client_customer, category=self.other_category, fixed_price=Decimal("1.00"))
        self.assertEqual(self.price(self.client_customer).unit_price, Decimal("100.00"))

    def test_expired_override_falls_back_to_base_price(self):
        now = timezone.now()
        PersonalPrice.objects.create(
            customer=self.client_customer,
            product=self.product,
            fixed_price=Decimal("50.00"),
            valid_from=now - timedelta(days=10),
            valid_until=now - timedelta(days=1),
        )
        found = self.price(self.client_customer)
        self.assertEqual(found.unit_price, Decimal("100.00"))
        self.assertEqual(found.source, "retail")

    def test_future_override_is_not_yet_effective(self):
        PersonalPrice.objects.create(
            customer=self.client_customer,
            product=self.product,
            fixed_price=Decimal("50.00"),
            valid_from=timezone.now() + timedelta(days=1),
        )
        self.assertEqual(self.price(self.client_customer).unit_price, Decimal("100.00"))

    def test_expired_product_override_lets_category_override_apply(self):
        PersonalPrice.objects.create(
            customer=self.client_customer,
            product=self.product,
            fixed_price=Decimal("50.00"),
            valid_until=timezone.now() - timedelta(hours=1),
        )
        PersonalPrice.objects.create(customer=self.client_customer, category=self.category, discount_percent=Decimal("20"))
        found = self.price(self.client_customer)
        self.assertEqual(found.unit_price, Decimal("80.00"))
        self.assertEqual(found.source, "category_override")

    def test_newest_override_wins_within_scope(self):
        PersonalPrice.objects.create(customer=self.client_customer, product=self.product, fixed_price=Decimal("60.00"))
        newest = PersonalPrice.objects.create(customer=self.client_customer, product=self.product, fixed_price=Decimal("55.00"))
        found = self.price(self.client_customer)
        self.assertEqual(found.unit_price, Decimal("55.00"))
        self.assertEqual(found.override_id, newest.id)

    def test_guest_never_receives_overrides(self):
        PersonalPrice.objects.create(customer=self.client_customer, product=self.product, fixed_price=Decimal("1.00"))
        # a guest context asking for wholesale still gets retail
        ctx = PricingContext(customer_id=None, client_type=WHOLESALE)
        found = resolve_price(ctx, get_product(self.product.id))
        self.assertEqual(found.unit_price, Decimal("100.00"))

    def test_percentage_is_rounded_half_up(self):
        self.product.retail_price = Decimal("10.05")
        self.product.save(update_fields=["retail_price"])
        PersonalPrice.objects.create(customer=self.client_customer, product=self.product, discount_percent=Decimal("50"))
        self.assertEqual(self.price(self.client_customer).unit_price, Decimal("5.03"))

    def test_inactive_product_is_unresolvable(self):
        self.product.is_active = False
        self.product.save(update_fields=["is_active"])
        with self.assertRaises(PriceUnresolvableError) as ctx:
            self.price(None)
        self.assertEqual(ctx.exception.extra["product_id"], self.product.id)

    def test_missing_base_price_is_unresolvable_never_zero(self):
        self.retail_only.retail_price = None
        self.retail_only.save(update_fields=["retail_price"])
        with self.assertRaises(PriceUnresolvableError):
            self.price(self.client_customer, self.retail_only)

    def test_percentage_override_without_base_price_is_unresolvable(self):
        self.retail_only.retail_price = None
        self.retail_only.save(update_fields=["retail_price"])
        PersonalPrice.objects.create(customer=self.client_customer, product=self.retail_only, discount_percent=Decimal("10"))
        with self.assertRaises(PriceUnresolvableError):
            self.price(self.client_customer, self.retail_only)

    def test_unusable_product_override_still_shadows_category_override(self):
        self.retail_only.retail_price = None
        self.retail_only.save(update_fields=["retail_price"])
        PersonalPrice.objects.create(customer=self.client_customer, product=self.retail_only, discount_percent=Decimal("10"))
        PersonalPrice.objects.create(customer=self.client_customer, category=self.other_category, fixed_price=Decimal("7.00"))
        with self.assertRaises(PriceUnresolvableError) as ctx:
            self.price(self.client_customer, self.retail_only)
        self.assertEqual(ctx.exception.extra["product_id"], self.retail_only.id)

    def test_fixed_override_prices_product_without_base_price(self):
        self.retail_only.retail_price = None
        self.retail_only.save(update_fields=["retail_price"])
        PersonalPrice.objects.create(customer=self.client_customer, product=self.retail_only, fixed_price=Decimal("12.00"))
        self.assertEqual(self.price(self.client_customer, self.retail_only).unit_price, Decimal("12.00"))

    def test_quantity_above_stock_is_unresolvable(self):
        with self.assertRaises(PriceUnresolvableError):
            self.price(None, quantity=11)
        self.assertEqual(self.price(None, quantity=10).unit_price, Decimal("100.00"))

    def test_resolve_unit_price_returns_decimal(self):
        ctx = context_for_customer(self.wholesaler)
        self.assertEqual(resolve_unit_price(ctx, get_product(self.product.id)), Decimal("80.00"))

    def test_resolve_cart_prices_prices_every_line(self):
        PersonalPrice.objects.create(customer=self.client_customer, category=self.other_category, fixed_price=Decimal("30.00"))
        ctx = context_for_customer(self.client_customer)
        priced = resolve_cart_prices(ctx, [
            (get_product(self.product.id), 2),
            (get_product(self.retail_only.id), 3),
        ])
        self.assertEqual([p.unit_price for p in priced], [Decimal("100.00"), Decimal("30.00")])
        self.assertEqual([p.source for p in priced], ["retail", "category_override"])
        self.assertEqual(priced[1].subtotal, Decimal("90.00"))

    def test_resolve_cart_prices_reports_failing_product(self):
        self.retail_only.is_active = False
        self.retail_only.save(update_fields=["is_active"])
        ctx = context_for_customer(None)
        with self.assertRaises(PriceUnresolvableError) as ctx_err:
            resolve_cart_prices(ctx, [
                (get_product(self.product.id), 1),
                (get_product(self.retail_only.id), 1),
            ])
        self.assertEqual(ctx_err.exception.extra["product_id"], self.retail_only.id)


class PersonalPriceApiTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.category = Category.objects.create(name="Detergents")
        self.product = Product.objects.create(
            code="gel-1l",
            name="Gel 1L",
            category=self.category,
            retail_price=Decimal("100.00"),
            wholesale_price=Decimal("80.00"),
            stock_quantity=10,
        )
        self.manager_user, _ = make_customer("manager", role=CustomerRole.MANAGER)
        self.buyer_user, self.buyer = make_customer("buyer")

    def post(self, payload, user):
        request = self.factory.post("/api/v1/pricing/personal-prices", payload, format="json")
        force_authenticate(request, user=user)
        return PersonalPriceListCreateView.as_view()(request)

    def test_manager_creates_override(self):
        response = self.post({"customer": self.buyer.id, "product": self.product.id, "fixed_price": "55.00"}, self.manager_user)
        self.assertEqual(response.status_code, 201, response.data)
        row = PersonalPrice.objects.get(pk=response.data["id"])
        self.assertEqual(row.created_by, self.manager_user)
        self.assertEqual(row.fixed_price, Decimal("55.00"))

    def test_regular_customer_cannot_manage_overrides(self):
        response = self.post({"customer": self.buyer.id, "product": self.product.id, "fixed_price": "1.00"}, self.buyer_user)
        self.assertEqual(response.status_code, 403)
        self.assertFalse(PersonalPrice.objects.exists())

    def test_scope_is_required(self):
        response = self.post({"customer": self.buyer.id, "discount_percent": "10"}, self.manager_user)
        self.assertEqual(response.status_code, 400)
        self.assertIn("product", response.data)

    def test_value_is_required(self):
        response = self.post({"customer": self.buyer.id, "product": self.product.id}, self.manager_user)
        self.assertEqual(response.status_code, 400)
        self.assertIn("discount_percent", response.data)

    def test_discount_must_be_within_range(self):
        response = self.post({"customer": self.buyer.id, "product": self.product.id, "discount_percent": "120"}, self.manager_user)
        self.assertEqual(response.status_code, 400)

    def test_validity_window_must_be_ordered(self):
        now = timezone.now()
        response = self.post({
            "customer": self.buyer.id,
            "product": self.product.id,
            "fixed_price": "10.00",
            "valid_from": (now + timedelta(days=2)).isoformat(),
            "valid_until": now.isoformat(),
        }, self.manager_user)
        self.assertEqual(response.status_code, 400)
        self.assertIn("valid_until", response.data)

    def test_list_filters_by_customer(self):
        _, other = make_customer("other")
        PersonalPrice.objects.create(customer=self.buyer, product=self.product, fixed_price=Decimal("10.00"))
        PersonalPrice.objects.create(customer=other, product=self.product, fixed_price=Decimal("20.00"))
        request = self.factory.get("/api/v1/pricing/personal-prices", {"customer": self.buyer.id})
        force_authenticate(request, user=self.manager_user)
        response = PersonalPriceListCreateView.as_view()(request)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["results"][0]["customer"], self.buyer.id)

    def test_patch_and_delete(self):
        row = PersonalPrice.objects.create(customer=self.buyer, product=self.product, fixed_price=Decimal("10.00"))
        request = self.factory.patch(f"/api/v1/pricing/personal-prices/{row.id}", {"fixed_price": "12.50"}, format="json")
        force_authenticate(request, user=self.manager_user)
        response = PersonalPriceDetailView.as_view()(request, pk=row.id)
        self.assertEqual(response.status_code, 200, response.data)
        row.refresh_from_db()
        self.assertEqual(row.fixed_price, Decimal("12.50"))

        request = self.factory.delete(f"/api/v1/pricing/personal-prices/{row.id}")
        force_authenticate(request, user=self.manager_user)
        response = PersonalPriceDetailView.as_view()(request, pk=row.id)
        self.assertEqual(response.status_code, 204)
        self.assertFalse(PersonalPrice.objects.filter(pk=row.id).exists())


class ResolvePriceViewTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.product = Product.objects.create(
            code="gel-1l",
            name="Gel 1L",
            retail_price=Decimal("100.00"),
            wholesale_price=Decimal("80.00"),
            stock_quantity=10,
        )
        self.wholesale_user, _ = make_customer("wholesale", role=CustomerRole.WHOLESALER)

    def get(self, user=None, **params):
        request = self.factory.get("/api/v1/pricing/resolve", params)
        if user is not None:
            force_authenticate(request, user=user)
        return ResolvePriceView.as_view()(request)

    def test_guest_sees_retail_price(self):
        response = self.get(product_id=self.product.id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["unit_price"], "100.00")
        self.assertEqual(response.data["client_type"], "retail")

    def test_wholesaler_sees_wholesale_price(self):
        response = self.get(self.wholesale_user, product_id=self.product.id)
        self.assertEqual(response.data["unit_price"], "80.00")
        self.assertEqual(response.data["source"], "wholesale")

    def test_inactive_product_maps_to_error_code(self):
        self.product.is_active = False
        self.product.save(update_fields=["is_active"])
        response = self.get(product_id=self.product.id)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "price_unresolvable")

    def test_unknown_product_is_404(self):
        self.assertEqual(self.get(product_id=999999).status_code, 404)
