# idempotency/models.py

from datetime import timedelta

from django.db import models
from django.utils import timezone


class IdempotencyRecord(models.Model):
    """
    One row per client idempotency key. A key is claimed as PENDING before
    the guarded work starts and flipped to COMPLETED, with the serialized
    response, in the same transaction that commits the work.
    """

    PENDING = "pending"
    COMPLETED = "completed"

    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (COMPLETED, "Completed"),
    ]

    key = models.CharField(max_length=255, unique=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=PENDING)
    request_hash = models.CharField(max_length=64, blank=True, default="")
    response_body = models.TextField(blank=True, default="")
    response_status = models.PositiveSmallIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.key} ({self.status})"

    def is_expired(self, retention: timedelta, now=None) -> bool:
        now = now or timezone.now()
        return self.created_at < now - retention

    def is_stale_pending(self, timeout: timedelta, now=None) -> bool:
        now = now or timezone.now()
        return self.status == self.PENDING and self.created_at < now - timeout
