# customers/models.py

from django.conf import settings
from django.db import models
from django.utils import timezone

from common.roles import CustomerRole


class Customer(models.Model):
    """
    Storefront customer profile bound to a Django auth user.
    Loyalty-specific numbers live in the loyalty app (LoyaltyAccount).
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="customer_profile",
    )
    full_name = models.CharField(max_length=160)
    email = models.EmailField(blank=True, null=True)
    phone_number = models.CharField(
        max_length=32,
        blank=True,
        null=True,
        help_text="E.164 or local format.",
    )
    role = models.CharField(
        max_length=20,
        choices=CustomerRole.choices,
        default=CustomerRole.CLIENT,
        db_index=True,
    )
    referral_code = models.CharField(
        max_length=16,
        unique=True,
        blank=True,
        null=True,
        help_text="Code other customers register with to become this customer's referrals.",
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-id"]
        indexes = [
            models.Index(fields=["role"], name="customer_role_idx"),
            models.Index(fields=["email"], name="customer_email_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.role})"

    @property
    def is_wholesale_eligible(self) -> bool:
        return self.role == CustomerRole.WHOLESALER
