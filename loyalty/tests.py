import threading
import unittest
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import connection
from django.db.models import ProtectedError, Sum
from django.test import TestCase, TransactionTestCase, override_settings
from rest_framework.test import APIRequestFactory, force_authenticate

from common.roles import CustomerRole
from customers.models import Customer
from loyalty.models import LedgerImmutableError, LoyaltyAccount, LoyaltyTier, LoyaltyTransaction
from loyalty.services import (
    InsufficientBalanceError,
    LoyaltyValidationError,
    adjust_points,
    earn_points,
    get_loyalty_dashboard,
    get_or_create_account,
    get_transaction_history,
    rebuild_account_from_ledger,
    recalculate_tier,
    replace_tiers,
    spend_points,
)
from loyalty.views import AdjustPointsView, LoyaltyDashboardView, LoyaltyHistoryView, LoyaltyTiersView, ReconcileAccountView
from orders.models import Order


User = get_user_model()


def make_customer(username, role=CustomerRole.CLIENT):
    user = User.objects.create_user(username=username, password="pass")
    return user, Customer.objects.create(user=user, full_name=username.title(), role=role)


def ledger_sum(account):
    return account.transactions.aggregate(total=Sum("points"))["total"] or 0


def make_tiers():
    LoyaltyTier.objects.create(name="Bronze", min_spend=Decimal("0"), points_multiplier=Decimal("1"), sort_order=1)
    LoyaltyTier.objects.create(name="Silver", min_spend=Decimal("1000"), points_multiplier=Decimal("1.5"), sort_order=2)
    LoyaltyTier.objects.create(name="Gold", min_spend=Decimal("5000"), points_multiplier=Decimal("2"), sort_order=3)


class LedgerOperationTests(TestCase):
    def setUp(self):
        _, self.customer = make_customer("member")

    def test_account_is_created_lazily_on_first_earn(self):
        self.assertFalse(LoyaltyAccount.objects.filter(customer=self.customer).exists())
        entry = earn_points(self.customer, Decimal("123.99"))
        account = LoyaltyAccount.objects.get(customer=self.customer)
        self.assertEqual(entry.points, 123)
        self.assertEqual(entry.type, LoyaltyTransaction.EARN)
        self.assertEqual(account.points_balance, 123)
        self.assertEqual(account.total_lifetime_spend, Decimal("123.99"))
        self.assertEqual(entry.balance_after, 123)

    def test_earn_links_order(self):
        order = Order.objects.create(customer=self.customer, total_amount=Decimal("50.00"), order_number="ORD-TEST-1")
        entry = earn_points(self.customer, order.total_amount, order=order)
        self.assertEqual(entry.order, order)
        self.assertIn("ORD-TEST-1", entry.description)

    def test_earn_below_one_point_is_noop(self):
        self.assertIsNone(earn_points(self.customer, Decimal("0.99")))
        self.assertIsNone(earn_points(self.customer, Decimal("0")))
        self.assertFalse(LoyaltyTransaction.objects.exists())

    @override_settings(LOYALTY_BASE_POINTS_RATE=2)
    def test_earn_uses_base_rate(self):
        self.assertEqual(earn_points(self.customer, Decimal("10")).points, 20)

    def test_earn_uses_current_tier_multiplier(self):
        LoyaltyTier.objects.create(name="Bronze", min_spend=Decimal("0"), points_multiplier=Decimal("1.5"))
        # no tier yet on the first purchase
        self.assertEqual(earn_points(self.customer, Decimal("100")).points, 100)
        self.assertEqual(earn_points(self.customer, Decimal("100")).points, 150)

    def test_spend_decrements_balance(self):
        earn_points(self.customer, Decimal("100"))
        entry = spend_points(self.customer, 40)
        self.assertEqual(entry.points, -40)
        self.assertEqual(entry.balance_after, 60)
        self.assertEqual(LoyaltyAccount.objects.get(customer=self.customer).points_balance, 60)

    def test_spend_more_than_balance_is_rejected_without_writing(self):
        earn_points(self.customer, Decimal("30"))
        with self.assertRaises(InsufficientBalanceError) as ctx:
            spend_points(self.customer, 50)
        self.assertEqual(ctx.exception.code, "insufficient_balance")
        self.assertEqual(ctx.exception.extra["balance"], 30)
        account = LoyaltyAccount.objects.get(customer=self.customer)
        self.assertEqual(account.points_balance, 30)
        self.assertEqual(account.transactions.count(), 1)

    def test_spend_requires_positive_integer(self):
        for bad in (0, -5, 1.5, "10", True):
            with self.assertRaises(LoyaltyValidationError):
                spend_points(self.customer, bad)

    def test_manual_add_and_deduct(self):
        balance = adjust_points(self.customer, LoyaltyTransaction.MANUAL_ADD, 70, "Goodwill")
        self.assertEqual(balance, 70)
        balance = adjust_points(self.customer, LoyaltyTransaction.MANUAL_DEDUCT, 20, "Correction")
        self.assertEqual(balance, 50)
        kinds = list(LoyaltyTransaction.objects.order_by("id").values_list("type", "points"))
        self.assertEqual(kinds, [("manual_add", 70), ("manual_deduct", -20)])

    def test_manual_deduct_cannot_go_negative(self):
        adjust_points(self.customer, LoyaltyTransaction.MANUAL_ADD, 10, "Goodwill")
        with self.assertRaises(InsufficientBalanceError):
            adjust_points(self.customer, LoyaltyTransaction.MANUAL_DEDUCT, 11, "Too much")
        self.assertEqual(LoyaltyAccount.objects.get(customer=self.customer).points_balance, 10)

    def test_adjust_requires_description_and_known_kind(self):
        with self.assertRaises(LoyaltyValidationError):
            adjust_points(self.customer, LoyaltyTransaction.MANUAL_ADD, 10, "   ")
        with self.assertRaises(LoyaltyValidationError):
            adjust_points(self.customer, LoyaltyTransaction.MANUAL_ADD, 10, "x" * 501)
        with self.assertRaises(LoyaltyValidationError):
            adjust_points(self.customer, LoyaltyTransaction.EARN, 10, "Not allowed")

    def test_manual_add_does_not_count_as_spend(self):
        adjust_points(self.customer, LoyaltyTransaction.MANUAL_ADD, 500, "Gift")
        self.assertEqual(LoyaltyAccount.objects.get(customer=self.customer).total_lifetime_spend, Decimal("0.00"))

    def test_ledger_sum_matches_cached_balance(self):
        earn_points(self.customer, Decimal("250"))
        spend_points(self.customer, 100)
        adjust_points(self.customer, LoyaltyTransaction.MANUAL_ADD, 15, "Bonus")
        adjust_points(self.customer, LoyaltyTransaction.MANUAL_DEDUCT, 5, "Fix")
        with self.assertRaises(InsufficientBalanceError):
            spend_points(self.customer, 10_000)
        account = LoyaltyAccount.objects.get(customer=self.customer)
        self.assertEqual(ledger_sum(account), account.points_balance)
        self.assertEqual(account.points_balance, 160)


class TierTests(TestCase):
    def setUp(self):
        _, self.customer = make_customer("tiered")

    def test_tier_follows_lifetime_spend(self):
        make_tiers()
        earn_points(self.customer, Decimal("999"))
        account = LoyaltyAccount.objects.get(customer=self.customer)
        self.assertEqual(account.current_tier, "Bronze")

        earn_points(self.customer, Decimal("1"))
        account.refresh_from_db()
        self.assertEqual(account.current_tier, "Silver")

    def test_tier_is_null_when_none_qualifies(self):
        LoyaltyTier.objects.create(name="Silver", min_spend=Decimal("1000"))
        earn_points(self.customer, Decimal("50"))
        self.assertIsNone(LoyaltyAccount.objects.get(customer=self.customer).current_tier)

    def test_new_tier_table_applies_on_next_operation(self):
        earn_points(self.customer, Decimal("600"))
        account = LoyaltyAccount.objects.get(customer=self.customer)
        self.assertIsNone(account.current_tier)

        replace_tiers([{"name": "Member", "min_spend": "500"}])
        account.refresh_from_db()
        self.assertIsNone(account.current_tier)

        spend_points(self.customer, 1)
        account.refresh_from_db()
        self.assertEqual(account.current_tier, "Member")

    def test_recalculate_tier_writes_no_ledger_entry(self):
        make_tiers()
        account = get_or_create_account(self.customer)
        LoyaltyAccount.objects.filter(pk=account.pk).update(total_lifetime_spend=Decimal("6000"))
        account.refresh_from_db()
        self.assertEqual(recalculate_tier(account), "Gold")
        account.refresh_from_db()
        self.assertEqual(account.current_tier, "Gold")
        self.assertFalse(account.transactions.exists())

    def test_replace_tiers_validates_input(self):
        with self.assertRaises(LoyaltyValidationError):
            replace_tiers([{"name": "A", "min_spend": 0}, {"name": "A", "min_spend": 10}])
        with self.assertRaises(LoyaltyValidationError):
            replace_tiers([{"name": "", "min_spend": 0}])
        with self.assertRaises(LoyaltyValidationError):
            replace_tiers([{"name": "A", "min_spend": -1}])
        with self.assertRaises(LoyaltyValidationError):
            replace_tiers([{"name": "A", "min_spend": 0, "discount_percent": 101}])

    def test_replace_tiers_swaps_whole_table(self):
        make_tiers()
        tiers = replace_tiers([
            {"name": "Basic", "min_spend": "0", "sort_order": 0},
            {"name": "Pro", "min_spend": "300", "points_multiplier": "1.25", "sort_order": 1},
        ])
        self.assertEqual([t.name for t in tiers], ["Basic", "Pro"])
        self.assertEqual(LoyaltyTier.objects.count(), 2)


class LedgerImmutabilityTests(TestCase):
    def setUp(self):
        _, self.customer = make_customer("immutable")
        self.entry = earn_points(self.customer, Decimal("10"))

    def test_entry_cannot_be_updated(self):
        self.entry.points = 1000
        with self.assertRaises(LedgerImmutableError):
            self.entry.save()
        self.entry.refresh_from_db()
        self.assertEqual(self.entry.points, 10)

    def test_entry_cannot_be_deleted(self):
        with self.assertRaises(LedgerImmutableError):
            self.entry.delete()
        self.assertTrue(LoyaltyTransaction.objects.filter(pk=self.entry.pk).exists())

    def test_order_with_ledger_entries_cannot_be_deleted(self):
        order = Order.objects.create(customer=self.customer, order_number="ORD-20260101-000001", total_amount=Decimal("25.00"))
        entry = earn_points(self.customer, order.total_amount, order=order)
        with self.assertRaises(ProtectedError):
            order.delete()
        entry.refresh_from_db()
        self.assertEqual(entry.order_id, order.pk)

    def test_account_with_ledger_entries_cannot_be_deleted(self):
        with self.assertRaises(ProtectedError):
            self.customer.delete()
        with self.assertRaises(ProtectedError):
            LoyaltyAccount.objects.get(customer=self.customer).delete()
        self.assertEqual(LoyaltyTransaction.objects.filter(account__customer=self.customer).count(), 1)


class ReconciliationTests(TestCase):
    def setUp(self):
        _, self.customer = make_customer("reconciled")
        make_tiers()
        earn_points(self.customer, Decimal("1200"))
        spend_points(self.customer, 200)
        self.account = LoyaltyAccount.objects.get(customer=self.customer)

    def test_clean_account_reports_no_drift(self):
        report = rebuild_account_from_ledger(self.account)
        self.assertFalse(report.drifted)
        self.assertEqual(report.balance_after, 1000)
        self.assertEqual(report.entries, 2)

    def test_check_mode_reports_drift_without_writing(self):
        LoyaltyAccount.objects.filter(pk=self.account.pk).update(points_balance=5, current_tier="Gold")
        report = rebuild_account_from_ledger(self.account, commit=False)
        self.assertTrue(report.drifted)
        self.assertEqual(report.balance_before, 5)
        self.assertEqual(report.balance_after, 1000)
        self.assertEqual(report.tier_after, "Silver")
        self.account.refresh_from_db()
        self.assertEqual(self.account.points_balance, 5)

    def test_rebuild_repairs_cached_totals(self):
        LoyaltyAccount.objects.filter(pk=self.account.pk).update(
            points_balance=5, total_lifetime_spend=Decimal("1"), current_tier=None,
        )
        rebuild_account_from_ledger(self.account)
        self.account.refresh_from_db()
        self.assertEqual(self.account.points_balance, 1000)
        self.assertEqual(self.account.total_lifetime_spend, Decimal("1200.00"))
        self.assertEqual(self.account.current_tier, "Silver")

    def test_command_check_fails_on_drift(self):
        LoyaltyAccount.objects.filter(pk=self.account.pk).update(points_balance=5)
        with self.assertRaises(CommandError):
            call_command("rebuild_loyalty_balances", "--check", stdout=StringIO())
        self.account.refresh_from_db()
        self.assertEqual(self.account.points_balance, 5)

    def test_command_repairs_drift(self):
        LoyaltyAccount.objects.filter(pk=self.account.pk).update(points_balance=5)
        out = StringIO()
        call_command("rebuild_loyalty_balances", stdout=out)
        self.account.refresh_from_db()
        self.assertEqual(self.account.points_balance, 1000)
        self.assertIn("Repaired 1", out.getvalue())


class DashboardAndHistoryTests(TestCase):
    def setUp(self):
        _, self.customer = make_customer("dashboard")

    def test_dashboard_shows_recent_entries_and_next_tier(self):
        make_tiers()
        for _ in range(12):
            earn_points(self.customer, Decimal("10"))
        data = get_loyalty_dashboard(self.customer)
        self.assertEqual(data["points_balance"], 120)
        self.assertEqual(data["current_tier"], "Bronze")
        self.assertEqual(data["next_tier"].name, "Silver")
        self.assertEqual(len(data["recent_entries"]), 10)
        ids = [e.id for e in data["recent_entries"]]
        self.assertEqual(ids, sorted(ids, reverse=True))

    def test_dashboard_for_new_customer(self):
        data = get_loyalty_dashboard(self.customer)
        self.assertEqual(data["points_balance"], 0)
        self.assertIsNone(data["current_tier"])
        self.assertIsNone(data["next_tier"])
        self.assertEqual(data["recent_entries"], [])

    def test_history_is_paginated_newest_first(self):
        for amount in (10, 20, 30):
            earn_points(self.customer, Decimal(amount))
        page = get_transaction_history(self.customer, page=1, limit=2)
        self.assertEqual(page["count"], 3)
        self.assertEqual([e.points for e in page["results"]], [30, 20])
        page = get_transaction_history(self.customer, page=2, limit=2)
        self.assertEqual([e.points for e in page["results"]], [10])

    def test_history_limit_bounds(self):
        with self.assertRaises(LoyaltyValidationError):
            get_transaction_history(self.customer, limit=0)
        with self.assertRaises(LoyaltyValidationError):
            get_transaction_history(self.customer, limit=101)


class LoyaltyApiTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.user, self.customer = make_customer("api-member")
        self.admin_user, _ = make_customer("api-admin", role=CustomerRole.ADMIN)

    def test_dashboard_view(self):
        earn_points(self.customer, Decimal("42"))
        request = self.factory.get("/api/v1/loyalty/dashboard")
        force_authenticate(request, user=self.user)
        response = LoyaltyDashboardView.as_view()(request)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["points_balance"], 42)
        self.assertEqual(len(response.data["recent_entries"]), 1)

    def test_history_view_rejects_bad_limit(self):
        request = self.factory.get("/api/v1/loyalty/history", {"limit": 500})
        force_authenticate(request, user=self.user)
        response = LoyaltyHistoryView.as_view()(request)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "validation_error")

    def test_admin_adjust(self):
        request = self.factory.post("/api/v1/loyalty/admin/adjust", {
            "customer_id": self.customer.id,
            "type": "manual_add",
            "points": 25,
            "description": "Compensation",
        }, format="json")
        force_authenticate(request, user=self.admin_user)
        response = AdjustPointsView.as_view()(request)
        self.assertEqual(response.status_code, 200, response.data)
        self.assertEqual(response.data["new_balance"], 25)

    def test_admin_deduct_beyond_balance_is_400(self):
        request = self.factory.post("/api/v1/loyalty/admin/adjust", {
            "customer_id": self.customer.id,
            "type": "manual_deduct",
            "points": 5,
            "description": "Oops",
        }, format="json")
        force_authenticate(request, user=self.admin_user)
        response = AdjustPointsView.as_view()(request)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "insufficient_balance")

    def test_adjust_requires_staff_role(self):
        request = self.factory.post("/api/v1/loyalty/admin/adjust", {
            "customer_id": self.customer.id,
            "type": "manual_add",
            "points": 1000,
            "description": "Self-service",
        }, format="json")
        force_authenticate(request, user=self.user)
        response = AdjustPointsView.as_view()(request)
        self.assertEqual(response.status_code, 403)

    def test_tiers_put_and_get(self):
        request = self.factory.put("/api/v1/loyalty/admin/tiers", [
            {"name": "Bronze", "min_spend": "0"},
            {"name": "Silver", "min_spend": "1000", "points_multiplier": "1.5"},
        ], format="json")
        force_authenticate(request, user=self.admin_user)
        response = LoyaltyTiersView.as_view()(request)
        self.assertEqual(response.status_code, 200, response.data)
        self.assertEqual([t["name"] for t in response.data], ["Bronze", "Silver"])

        request = self.factory.get("/api/v1/loyalty/admin/tiers")
        force_authenticate(request, user=self.admin_user)
        response = LoyaltyTiersView.as_view()(request)
        self.assertEqual(len(response.data), 2)

    def test_reconcile_view(self):
        earn_points(self.customer, Decimal("10"))
        LoyaltyAccount.objects.filter(customer=self.customer).update(points_balance=3)
        request = self.factory.get(f"/api/v1/loyalty/admin/accounts/{self.customer.id}/reconcile")
        force_authenticate(request, user=self.admin_user)
        response = ReconcileAccountView.as_view()(request, customer_id=self.customer.id)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["drifted"])
        self.assertEqual(response.data["balance_after"], 10)
        # report only unless repair is asked for
        self.assertEqual(LoyaltyAccount.objects.get(customer=self.customer).points_balance, 3)


class StaleBalanceSpendTests(TestCase):
    """A debit decided on an out-of-date balance is refused by the conditional update."""

    def setUp(self):
        _, self.customer = make_customer("stale")
        adjust_points(self.customer, LoyaltyTransaction.MANUAL_ADD, 100, "Seed")
        # snapshot taken before the competing spend commits
        self.stale = LoyaltyAccount.objects.get(customer=self.customer)

    def test_spend_on_stale_balance_is_rejected(self):
        spend_points(self.customer, 80)
        self.assertEqual(self.stale.points_balance, 100)

        with mock.patch("loyalty.services._lock_account", return_value=self.stale):
            with self.assertRaises(InsufficientBalanceError) as ctx:
                spend_points(self.customer, 60)

        self.assertEqual(ctx.exception.extra["balance"], 20)
        account = LoyaltyAccount.objects.get(customer=self.customer)
        self.assertEqual(account.points_balance, 20)
        self.assertEqual(ledger_sum(account), account.points_balance)
        self.assertEqual(account.transactions.filter(type=LoyaltyTransaction.SPEND).count(), 1)

    def test_deduct_on_stale_balance_is_rejected(self):
        adjust_points(self.customer, LoyaltyTransaction.MANUAL_DEDUCT, 90, "Correction")

        with mock.patch("loyalty.services._lock_account", return_value=self.stale):
            with self.assertRaises(InsufficientBalanceError):
                adjust_points(self.customer, LoyaltyTransaction.MANUAL_DEDUCT, 50, "Correction")

        account = LoyaltyAccount.objects.get(customer=self.customer)
        self.assertEqual(account.points_balance, 10)
        self.assertEqual(ledger_sum(account), 10)


@unittest.skipUnless(connection.vendor == "postgresql", "row locks need PostgreSQL")
class ConcurrentSpendTests(TransactionTestCase):
    def setUp(self):
        _, self.customer = make_customer("concurrent")
        adjust_points(self.customer, LoyaltyTransaction.MANUAL_ADD, 100, "Seed")

    def test_parallel_spends_never_overdraw(self):
        results = []
        lock = threading.Lock()

        def worker():
            try:
                spend_points(self.customer, 60)
                outcome = "ok"
            except InsufficientBalanceError:
                outcome = "rejected"
            finally:
                connection.close()
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        account = LoyaltyAccount.objects.get(customer=self.customer)
        self.assertEqual(results.count("ok"), 1, results)
        self.assertEqual(account.points_balance, 40)
        self.assertEqual(ledger_sum(account), account.points_balance)
