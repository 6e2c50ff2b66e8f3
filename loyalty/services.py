# loyalty/services.py
"""
Loyalty ledger operations.

Every balance change goes through here: the account row is locked, the
balance is moved with a conditional UPDATE, and exactly one ledger entry is
appended. A rejected operation writes nothing.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Iterable, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count, F, Sum
from django.utils import timezone

from common.exceptions import ServiceError
from customers.models import Customer
from .models import LoyaltyAccount, LoyaltyTier, LoyaltyTransaction

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
MAX_DESCRIPTION = 500
MAX_HISTORY_LIMIT = 100


class LoyaltyError(ServiceError):
    code = "loyalty_error"


class LoyaltyValidationError(LoyaltyError):
    code = "validation_error"


class InsufficientBalanceError(LoyaltyError):
    code = "insufficient_balance"


def _base_rate() -> Decimal:
    return Decimal(str(getattr(settings, "LOYALTY_BASE_POINTS_RATE", 1)))


def _ordered_tiers() -> List[LoyaltyTier]:
    return list(LoyaltyTier.objects.order_by("sort_order", "min_spend", "id"))


def _tier_for(spend: Decimal, tiers: Iterable[LoyaltyTier]) -> Optional[LoyaltyTier]:
    found = None
    for tier in tiers:
        if tier.min_spend <= spend:
            found = tier
    return found


def _require_points(points) -> int:
    if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
        raise LoyaltyValidationError("Points must be a positive integer", points=points)
    return points


def get_or_create_account(customer: Customer) -> LoyaltyAccount:
    account, created = LoyaltyAccount.objects.get_or_create(customer=customer)
    if created:
        logger.info("Opened loyalty account %s for customer=%s", account.pk, customer.pk)
    return account


def _lock_account(customer: Customer) -> LoyaltyAccount:
    account = get_or_create_account(customer)
    return LoyaltyAccount.objects.select_for_update().get(pk=account.pk)


def _append(account: LoyaltyAccount, kind: str, points: int, *, order=None,
            spend_amount: Decimal = ZERO, description: str = "") -> LoyaltyTransaction:
    return LoyaltyTransaction.objects.create(
        account=account,
        order=order,
        type=kind,
        points=points,
        balance_after=account.points_balance,
        spend_amount=spend_amount,
        description=description,
    )


def _credit(account: LoyaltyAccount, kind: str, points: int, *, spend_amount: Decimal = ZERO,
            order=None, description: str = "") -> LoyaltyTransaction:
    LoyaltyAccount.objects.filter(pk=account.pk).update(
        points_balance=F("points_balance") + points,
        total_lifetime_spend=F("total_lifetime_spend") + spend_amount,
        updated_at=timezone.now(),
    )
    account.refresh_from_db(fields=["points_balance", "total_lifetime_spend", "updated_at"])
    return _append(account, kind, points, order=order, spend_amount=spend_amount, description=description)


def _debit(account: LoyaltyAccount, kind: str, points: int, *, order=None,
           description: str = "") -> LoyaltyTransaction:
    updated = LoyaltyAccount.objects.filter(
        pk=account.pk, points_balance__gte=points
    ).update(
        points_balance=F("points_balance") - points,
        updated_at=timezone.now(),
    )
    if not updated:
        account.refresh_from_db(fields=["points_balance"])
        logger.warning(
            "Rejected %s of %d point(s) for account=%s: balance %d",
            kind, points, account.pk, account.points_balance,
        )
        raise InsufficientBalanceError(
            f"Insufficient points: balance {account.points_balance}, requested {points}",
            balance=account.points_balance,
            requested=points,
        )
    account.refresh_from_db(fields=["points_balance", "updated_at"])
    return _append(account, kind, -points, order=order, description=description)


def recalculate_tier(account: LoyaltyAccount, tiers: Optional[Iterable[LoyaltyTier]] = None) -> Optional[str]:
    """
    Move the account into the last tier (ascending) whose min_spend it has
    reached, or to no tier. Writes only when the tier changes.
    """
    if tiers is None:
        tiers = _ordered_tiers()
    tier = _tier_for(account.total_lifetime_spend, tiers)
    new_name = tier.name if tier else None
    if new_name != account.current_tier:
        old_name = account.current_tier
        account.current_tier = new_name
        account.save(update_fields=["current_tier", "updated_at"])
        logger.info("Account %s tier %s -> %s", account.pk, old_name, new_name)
    return new_name


def earn_points(customer: Customer, order_amount, order=None) -> Optional[LoyaltyTransaction]:
    """
    Award floor(amount * base rate * tier multiplier) points for a purchase.
    Returns None when that comes to nothing.
    """
    amount = Decimal(order_amount or 0).quantize(Decimal("0.01"))
    if amount <= 0:
        return None

    with transaction.atomic():
        account = _lock_account(customer)
        tiers = _ordered_tiers()
        current = next((t for t in tiers if t.name == account.current_tier), None)
        multiplier = current.points_multiplier if current else Decimal("1")
        points = int((amount * _base_rate() * multiplier).to_integral_value(rounding=ROUND_FLOOR))
        if points <= 0:
            return None

        entry = _credit(
            account,
            LoyaltyTransaction.EARN,
            points,
            spend_amount=amount,
            order=order,
            description=f"Order {order.order_number}" if order is not None else "",
        )
        recalculate_tier(account, tiers)

    logger.info("Earned %d point(s) for customer=%s on amount %s", points, customer.pk, amount)
    return entry


def spend_points(customer: Customer, points, order=None) -> LoyaltyTransaction:
    points = _require_points(points)
    with transaction.atomic():
        account = _lock_account(customer)
        entry = _debit(
            account,
            LoyaltyTransaction.SPEND,
            points,
            order=order,
            description=f"Order {order.order_number}" if order is not None else "",
        )
        recalculate_tier(account)

    logger.info("Spent %d point(s) for customer=%s", points, customer.pk)
    return entry


def adjust_points(customer: Customer, kind: str, points, description: str) -> int:
    """
    Administrative credit or debit. Returns the balance after the change.
    """
    if kind not in (LoyaltyTransaction.MANUAL_ADD, LoyaltyTransaction.MANUAL_DEDUCT):
        raise LoyaltyValidationError(f"Unknown adjustment type: {kind}")
    points = _require_points(points)
    description = (description or "").strip()
    if not description:
        raise LoyaltyValidationError("Description is required")
    if len(description) > MAX_DESCRIPTION:
        raise LoyaltyValidationError(f"Description must be at most {MAX_DESCRIPTION} characters")

    with transaction.atomic():
        account = _lock_account(customer)
        if kind == LoyaltyTransaction.MANUAL_ADD:
            _credit(account, kind, points, description=description)
        else:
            _debit(account, kind, points, description=description)
        recalculate_tier(account)

    logger.info("Adjusted customer=%s %s %d point(s)", customer.pk, kind, points)
    return account.points_balance


@dataclass(frozen=True)
class ReconciliationReport:
    account_id: int
    customer_id: int
    entries: int
    balance_before: int
    balance_after: int
    lifetime_spend_before: Decimal
    lifetime_spend_after: Decimal
    tier_before: Optional[str]
    tier_after: Optional[str]

    @property
    def drifted(self) -> bool:
        return (
            self.balance_before != self.balance_after
            or self.lifetime_spend_before != self.lifetime_spend_after
            or self.tier_before != self.tier_after
        )


def rebuild_account_from_ledger(account: LoyaltyAccount, commit: bool = True) -> ReconciliationReport:
    """
    Recompute the cached balance, lifetime spend and tier from the ledger.
    With commit=False only reports what would change.
    """
    with transaction.atomic():
        account = LoyaltyAccount.objects.select_for_update().get(pk=account.pk)
        totals = account.transactions.aggregate(
            points=Sum("points"),
            spend=Sum("spend_amount"),
            entries=Count("id"),
        )
        balance = totals["points"] or 0
        spend = totals["spend"] or ZERO
        tier = _tier_for(spend, _ordered_tiers())

        report = ReconciliationReport(
            account_id=account.pk,
            customer_id=account.customer_id,
            entries=totals["entries"],
            balance_before=account.points_balance,
            balance_after=balance,
            lifetime_spend_before=account.total_lifetime_spend,
            lifetime_spend_after=spend,
            tier_before=account.current_tier,
            tier_after=tier.name if tier else None,
        )
        if report.drifted:
            logger.warning(
                "Ledger drift on account=%s: balance %s -> %s, spend %s -> %s",
                account.pk, report.balance_before, report.balance_after,
                report.lifetime_spend_before, report.lifetime_spend_after,
            )
            if commit:
                account.points_balance = report.balance_after
                account.total_lifetime_spend = report.lifetime_spend_after
                account.current_tier = report.tier_after
                account.save(update_fields=["points_balance", "total_lifetime_spend", "current_tier", "updated_at"])
    return report


def get_loyalty_dashboard(customer: Customer) -> dict:
    account = get_or_create_account(customer)
    tiers = _ordered_tiers()
    next_tier = next((t for t in tiers if t.min_spend > account.total_lifetime_spend), None)
    limit = getattr(settings, "LOYALTY_RECENT_ENTRIES", 10)
    recent = list(account.transactions.order_by("-created_at", "-id")[:limit])
    return {
        "points_balance": account.points_balance,
        "total_lifetime_spend": account.total_lifetime_spend,
        "current_tier": account.current_tier,
        "next_tier": next_tier,
        "recent_entries": recent,
    }


def get_transaction_history(customer: Customer, page: int = 1, limit: int = 20) -> dict:
    if limit < 1 or limit > MAX_HISTORY_LIMIT:
        raise LoyaltyValidationError(f"limit must be between 1 and {MAX_HISTORY_LIMIT}")
    if page < 1:
        raise LoyaltyValidationError("page must be 1 or greater")

    account = get_or_create_account(customer)
    qs = account.transactions.order_by("-created_at", "-id")
    offset = (page - 1) * limit
    return {
        "count": qs.count(),
        "page": page,
        "limit": limit,
        "results": list(qs[offset:offset + limit]),
    }


def get_tiers() -> List[LoyaltyTier]:
    return _ordered_tiers()


def _decimal(value, field: str, index: int) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise LoyaltyValidationError(f"tiers[{index}].{field} is not a number")


def replace_tiers(tiers: List[dict]) -> List[LoyaltyTier]:
    """
    Replace the whole tier table. Accounts pick up the new table on their
    next ledger operation.
    """
    rows = []
    seen = set()
    for i, item in enumerate(tiers):
        name = (item.get("name") or "").strip()
        if not name:
            raise LoyaltyValidationError(f"tiers[{i}].name is required")
        if name in seen:
            raise LoyaltyValidationError(f"Duplicate tier name: {name}")
        seen.add(name)

        min_spend = _decimal(item.get("min_spend", 0), "min_spend", i)
        multiplier = _decimal(item.get("points_multiplier", 1), "points_multiplier", i)
        discount = _decimal(item.get("discount_percent", 0), "discount_percent", i)
        if min_spend < 0:
            raise LoyaltyValidationError(f"tiers[{i}].min_spend must not be negative")
        if multiplier < 0:
            raise LoyaltyValidationError(f"tiers[{i}].points_multiplier must not be negative")
        if discount < 0 or discount > 100:
            raise LoyaltyValidationError(f"tiers[{i}].discount_percent must be between 0 and 100")

        rows.append(LoyaltyTier(
            name=name,
            min_spend=min_spend,
            points_multiplier=multiplier,
            discount_percent=discount,
            sort_order=item.get("sort_order", i),
        ))

    with transaction.atomic():
        LoyaltyTier.objects.all().delete()
        LoyaltyTier.objects.bulk_create(rows)

    logger.info("Replaced loyalty tier table with %d tier(s)", len(rows))
    return _ordered_tiers()
