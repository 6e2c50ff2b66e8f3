"""
Delete idempotency records older than IDEMPOTENCY_RETENTION_HOURS.

Usage:
    python manage.py purge_idempotency_records
    python manage.py purge_idempotency_records --dry-run
"""

from django.core.management.base import BaseCommand
from django.utils import timezone

from idempotency.models import IdempotencyRecord
from idempotency.services import purge_expired, retention_window


class Command(BaseCommand):
    help = "Purge idempotency records past the retention window"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only count the records that would be deleted",
        )

    def handle(self, *args, **options):
        if options.get("dry_run"):
            cutoff = timezone.now() - retention_window()
            count = IdempotencyRecord.objects.filter(created_at__lt=cutoff).count()
            self.stdout.write(f"Would purge {count} record(s) created before {cutoff.isoformat()}")
            return

        deleted = purge_expired()
        self.stdout.write(self.style.SUCCESS(f"Purged {deleted} idempotency record(s)"))
