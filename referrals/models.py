# referrals/models.py

from django.db import models
from django.utils import timezone

from customers.models import Customer


class Referral(models.Model):
    REGISTERED = "registered"
    FIRST_ORDER = "first_order"
    BONUS_GRANTED = "bonus_granted"
    STATUS_CHOICES = [
        (REGISTERED, "Registered"),
        (FIRST_ORDER, "First order"),
        (BONUS_GRANTED, "Bonus granted"),
    ]

    referrer = models.ForeignKey(Customer, on_delete=models.CASCADE, related_name="referrals_made")
    referred = models.OneToOneField(Customer, on_delete=models.CASCADE, related_name="referred_by")
    referral_code = models.CharField(max_length=16)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=REGISTERED, db_index=True)
    bonus_points = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(default=timezone.now)
    converted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.referrer_id} -> {self.referred_id} ({self.status})"
