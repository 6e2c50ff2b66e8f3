from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import TestCase

from catalog.models import Category, Product
from customers.models import Customer
from loyalty.models import LoyaltyAccount, LoyaltyTransaction
from orders.models import Order
from orders.services import create_order
from referrals.models import Referral
from referrals.services import ensure_referral_code, register_referral


User = get_user_model()


def make_customer(username):
    user = User.objects.create_user(username=username, password="pass")
    return Customer.objects.create(user=user, full_name=username.title())


class RegisterReferralTests(TestCase):
    def setUp(self):
        self.referrer = make_customer("anna")
        self.code = ensure_referral_code(self.referrer)

    def test_code_is_generated_once(self):
        self.assertEqual(len(self.code), 8)
        self.assertEqual(ensure_referral_code(self.referrer), self.code)

    def test_register_links_customers(self):
        newcomer = make_customer("bohdan")
        referral = register_referral(newcomer, self.code.lower())
        self.assertEqual(referral.referrer, self.referrer)
        self.assertEqual(referral.status, Referral.REGISTERED)
        self.assertEqual(newcomer.referred_by, referral)

    def test_unknown_code_and_self_referral_are_ignored(self):
        newcomer = make_customer("bohdan")
        self.assertIsNone(register_referral(newcomer, "NOPE0000"))
        self.assertIsNone(register_referral(newcomer, ""))
        self.assertIsNone(register_referral(self.referrer, self.code))
        self.assertFalse(Referral.objects.exists())

    def test_customer_is_referred_only_once(self):
        other = make_customer("olena")
        other_code = ensure_referral_code(other)
        newcomer = make_customer("bohdan")
        register_referral(newcomer, self.code)
        self.assertIsNone(register_referral(newcomer, other_code))
        self.assertEqual(Referral.objects.get().referrer, self.referrer)


class FirstOrderBonusTests(TestCase):
    def setUp(self):
        category = Category.objects.create(name="Cleaning")
        self.product = Product.objects.create(
            code="spray",
            name="Spray",
            category=category,
            retail_price=Decimal("40.00"),
            stock_quantity=10,
        )
        self.referrer = make_customer("anna")
        self.newcomer = make_customer("bohdan")
        register_referral(self.newcomer, ensure_referral_code(self.referrer))

    def place_order(self, customer):
        with self.captureOnCommitCallbacks(execute=True):
            return create_order(customer, [(self.product.id, 1)])

    def referrer_bonus_entries(self):
        return LoyaltyTransaction.objects.filter(
            account__customer=self.referrer, type=LoyaltyTransaction.MANUAL_ADD,
        )

    def test_first_order_grants_bonus_to_referrer(self):
        self.place_order(self.newcomer)

        referral = Referral.objects.get(referred=self.newcomer)
        self.assertEqual(referral.status, Referral.BONUS_GRANTED)
        self.assertEqual(referral.bonus_points, 100)
        self.assertIsNotNone(referral.converted_at)

        entry = self.referrer_bonus_entries().get()
        self.assertEqual(entry.points, 100)
        self.assertIn(Order.objects.get().order_number, entry.description)
        self.assertEqual(LoyaltyAccount.objects.get(customer=self.referrer).points_balance, 100)
        # the buyer only earns on the purchase
        self.assertEqual(LoyaltyAccount.objects.get(customer=self.newcomer).points_balance, 40)

    def test_second_order_grants_nothing(self):
        self.place_order(self.newcomer)
        self.place_order(self.newcomer)
        self.assertEqual(self.referrer_bonus_entries().count(), 1)

    def test_orders_of_unreferred_customers_grant_nothing(self):
        self.place_order(self.referrer)
        self.assertFalse(self.referrer_bonus_entries().exists())
        self.assertEqual(Referral.objects.get().status, Referral.REGISTERED)

    def test_reward_failure_does_not_break_the_order(self):
        with mock.patch("referrals.receivers.reward_first_order", side_effect=RuntimeError("boom")):
            with self.assertLogs("referrals.receivers", level="ERROR") as logs:
                result = self.place_order(self.newcomer)

        self.assertTrue(Order.objects.filter(pk=result.body["order_id"]).exists())
        self.assertIn("Referral reward failed", logs.output[0])
        self.assertEqual(Referral.objects.get().status, Referral.REGISTERED)

    @mock.patch("referrals.services.adjust_points", side_effect=RuntimeError("ledger down"))
    def test_failed_bonus_leaves_referral_registered(self, _adjust):
        with self.assertLogs("referrals.receivers", level="ERROR"):
            self.place_order(self.newcomer)
        referral = Referral.objects.get()
        self.assertEqual(referral.status, Referral.REGISTERED)
        self.assertIsNone(referral.converted_at)
