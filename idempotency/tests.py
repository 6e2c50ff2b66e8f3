from datetime import timedelta
from io import StringIO

from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone

from idempotency.models import IdempotencyRecord
from idempotency.services import (
    IdempotencyConflictError,
    IdempotencyKeyInvalidError,
    IdempotencyKeyMismatchError,
    claim,
    complete,
    normalize_key,
    purge_expired,
    release,
    request_hash,
)


class ClaimTests(TestCase):
    def test_first_claim_inserts_pending_record(self):
        claimed = claim("key-1", "hash-a")
        self.assertFalse(claimed.is_replay)
        record = IdempotencyRecord.objects.get(key="key-1")
        self.assertEqual(record.status, IdempotencyRecord.PENDING)
        self.assertEqual(record.created_at, claimed.claimed_at)

    def test_completed_key_replays_stored_body(self):
        claimed = claim("key-1", "hash-a")
        text = complete(claimed, {"order_id": 7, "total_amount": "10.00"})

        again = claim("key-1", "hash-a")
        self.assertTrue(again.is_replay)
        self.assertEqual(again.response_body, text)
        self.assertEqual(again.response_status, 201)

    def test_pending_key_conflicts(self):
        claim("key-1", "hash-a")
        with self.assertRaises(IdempotencyConflictError) as ctx:
            claim("key-1", "hash-a")
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.retry_after, 1)

    def test_different_payload_is_a_mismatch(self):
        claimed = claim("key-1", "hash-a")
        complete(claimed, {"ok": True})
        with self.assertRaises(IdempotencyKeyMismatchError) as ctx:
            claim("key-1", "hash-b")
        self.assertEqual(ctx.exception.status_code, 422)

    @override_settings(IDEMPOTENCY_PENDING_TIMEOUT_SECONDS=60)
    def test_stale_pending_claim_is_reclaimed(self):
        claim("key-1", "hash-a")
        IdempotencyRecord.objects.filter(key="key-1").update(created_at=timezone.now() - timedelta(minutes=5))
        claimed = claim("key-1", "hash-a")
        self.assertFalse(claimed.is_replay)
        self.assertEqual(IdempotencyRecord.objects.filter(key="key-1").count(), 1)

    @override_settings(IDEMPOTENCY_RETENTION_HOURS=24)
    def test_expired_record_is_treated_as_absent(self):
        claimed = claim("key-1", "hash-a")
        complete(claimed, {"order_id": 1})
        IdempotencyRecord.objects.filter(key="key-1").update(created_at=timezone.now() - timedelta(hours=25))

        fresh = claim("key-1", "hash-b")
        self.assertFalse(fresh.is_replay)
        record = IdempotencyRecord.objects.get(key="key-1")
        self.assertEqual(record.status, IdempotencyRecord.PENDING)
        self.assertEqual(record.response_body, "")

    def test_release_frees_the_key(self):
        claimed = claim("key-1", "hash-a")
        release(claimed)
        self.assertFalse(IdempotencyRecord.objects.filter(key="key-1").exists())
        self.assertFalse(claim("key-1", "hash-a").is_replay)

    def test_lost_claim_cannot_complete_or_release(self):
        stale = claim("key-1", "hash-a")
        IdempotencyRecord.objects.filter(key="key-1").update(created_at=timezone.now() - timedelta(minutes=5))
        owner = claim("key-1", "hash-a")

        with self.assertRaises(IdempotencyConflictError):
            complete(stale, {"order_id": 1})
        release(stale)
        record = IdempotencyRecord.objects.get(key="key-1")
        self.assertEqual(record.created_at, owner.claimed_at)
        self.assertEqual(record.status, IdempotencyRecord.PENDING)


class HelperTests(TestCase):
    def test_request_hash_ignores_key_order(self):
        self.assertEqual(request_hash({"a": 1, "b": [1, 2]}), request_hash({"b": [1, 2], "a": 1}))
        self.assertNotEqual(request_hash({"a": 1}), request_hash({"a": 2}))

    def test_normalize_key(self):
        self.assertIsNone(normalize_key(None))
        self.assertIsNone(normalize_key("   "))
        self.assertEqual(normalize_key(" abc "), "abc")
        with self.assertRaises(IdempotencyKeyInvalidError):
            normalize_key("x" * 256)


@override_settings(IDEMPOTENCY_RETENTION_HOURS=24)
class PurgeTests(TestCase):
    def setUp(self):
        old = complete(claim("old", "h"), {"n": 1})
        self.assertTrue(old)
        claim("new", "h")
        IdempotencyRecord.objects.filter(key="old").update(created_at=timezone.now() - timedelta(hours=30))

    def test_purge_expired_deletes_only_old_records(self):
        self.assertEqual(purge_expired(), 1)
        self.assertEqual(list(IdempotencyRecord.objects.values_list("key", flat=True)), ["new"])

    def test_purge_command_dry_run_keeps_records(self):
        out = StringIO()
        call_command("purge_idempotency_records", "--dry-run", stdout=out)
        self.assertIn("Would purge 1", out.getvalue())
        self.assertEqual(IdempotencyRecord.objects.count(), 2)

    def test_purge_command(self):
        out = StringIO()
        call_command("purge_idempotency_records", stdout=out)
        self.assertIn("Purged 1", out.getvalue())
        self.assertEqual(IdempotencyRecord.objects.count(), 1)
