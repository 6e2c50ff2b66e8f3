# loyalty/models.py

from decimal import Decimal

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

from customers.models import Customer


class LedgerImmutableError(Exception):
    """Raised when code tries to rewrite or remove a ledger entry."""


class LoyaltyTier(models.Model):
    """
    Tier definition. The tier an account sits in is the highest one whose
    min_spend does not exceed the account's lifetime spend.
    """

    name = models.CharField(max_length=64, unique=True)
    min_spend = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(0)],
    )
    points_multiplier = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        default=Decimal("1.00"),
        validators=[MinValueValidator(0)],
        help_text="Applied to the base earn rate.",
    )
    discount_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(0), MaxValueValidator(100)],
        help_text="Informational; not applied by the pricing engine.",
    )
    sort_order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["sort_order", "min_spend", "id"]

    def __str__(self) -> str:
        return self.name


class LoyaltyAccount(models.Model):
    """
    Cached running totals for one customer. Both numbers are derived from
    the ledger and only change through loyalty.services.
    """

    customer = models.OneToOneField(
        Customer,
        on_delete=models.CASCADE,
        related_name="loyalty_account",
    )
    points_balance = models.IntegerField(default=0)
    total_lifetime_spend = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    current_tier = models.CharField(max_length=64, blank=True, null=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=models.Q(points_balance__gte=0),
                name="loyalty_balance_not_negative",
            ),
        ]
        indexes = [
            models.Index(fields=["points_balance"], name="loyalty_acct_balance_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.customer_id}: {self.points_balance} pts"


class LoyaltyTransaction(models.Model):
    """
    Immutable log of loyalty point changes.
    """

    EARN = "earn"
    SPEND = "spend"
    MANUAL_ADD = "manual_add"
    MANUAL_DEDUCT = "manual_deduct"
    EXPIRE = "expire"

    TYPE_CHOICES = [
        (EARN, "Earn"),
        (SPEND, "Spend"),
        (MANUAL_ADD, "Manual add"),
        (MANUAL_DEDUCT, "Manual deduct"),
        (EXPIRE, "Expire"),
    ]

    account = models.ForeignKey(
        LoyaltyAccount,
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="loyalty_transactions",
    )

    type = models.CharField(max_length=16, choices=TYPE_CHOICES)
    points = models.IntegerField()
    balance_after = models.IntegerField()
    spend_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Order amount this entry added to lifetime spend.",
    )
    description = models.CharField(max_length=500, blank=True, default="")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["account", "created_at"], name="loyalty_tx_account_idx"),
            models.Index(fields=["type"], name="loyalty_tx_type_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.type} {self.points:+d} -> {self.balance_after}"

    def save(self, *args, **kwargs):
        if self.pk is not None and not self._state.adding:
            raise LedgerImmutableError("Ledger entries cannot be modified")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise LedgerImmutableError("Ledger entries cannot be deleted")
