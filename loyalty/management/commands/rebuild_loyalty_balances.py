"""
Management command to rebuild cached loyalty balances from the ledger.

Every account's points_balance, total_lifetime_spend and current_tier are
recomputed from its LoyaltyTransaction rows.

Usage:
    python manage.py rebuild_loyalty_balances
    python manage.py rebuild_loyalty_balances --customer <customer_id>
    python manage.py rebuild_loyalty_balances --check

Exit codes:
    0 - Every account matches its ledger (or was repaired)
    1 - --check found drift
"""

from django.core.management.base import BaseCommand, CommandError

from loyalty.models import LoyaltyAccount
from loyalty.services import rebuild_account_from_ledger


class Command(BaseCommand):
    help = "Recompute cached loyalty balances from the transaction ledger"

    def add_arguments(self, parser):
        parser.add_argument(
            "--customer",
            type=int,
            help="Rebuild the account of a single customer only",
        )
        parser.add_argument(
            "--check",
            action="store_true",
            help="Report drift without writing; exit non-zero if any is found",
        )

    def handle(self, *args, **options):
        customer_id = options.get("customer")
        check_only = options.get("check", False)

        accounts = LoyaltyAccount.objects.order_by("id")
        if customer_id:
            accounts = accounts.filter(customer_id=customer_id)
            if not accounts.exists():
                raise CommandError(f"No loyalty account for customer {customer_id}")

        checked = 0
        drifted = []
        for account in accounts.iterator():
            report = rebuild_account_from_ledger(account, commit=not check_only)
            checked += 1
            if report.drifted:
                drifted.append(report)
                self.stdout.write(
                    self.style.WARNING(
                        f"  - account {report.account_id} (customer {report.customer_id}): "
                        f"balance {report.balance_before} -> {report.balance_after}, "
                        f"spend {report.lifetime_spend_before} -> {report.lifetime_spend_after}, "
                        f"tier {report.tier_before} -> {report.tier_after}"
                    )
                )

        self.stdout.write(f"Checked: {checked} account(s)")
        self.stdout.write(f"Drifted: {len(drifted)}")

        if drifted and check_only:
            raise CommandError("Ledger drift found; rerun without --check to repair", returncode=1)
        if drifted:
            self.stdout.write(self.style.SUCCESS(f"Repaired {len(drifted)} account(s)"))
        else:
            self.stdout.write(self.style.SUCCESS("All loyalty accounts match the ledger"))
