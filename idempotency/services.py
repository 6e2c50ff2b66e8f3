# idempotency/services.py
"""
Idempotency cache for client-keyed writes.

    claim(key, hash)      -> Claim (fresh, or a replay of the stored response)
    complete(claim, body) -> stores the response; call inside the work's transaction
    release(claim)        -> drops our pending claim after the work failed

A claim is an insert-if-absent on the unique `key` column; the database
decides which of several concurrent requests owns the key.
"""
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import IntegrityError, transaction
from django.utils import timezone

from common.exceptions import ServiceError
from .models import IdempotencyRecord

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 255


class IdempotencyError(ServiceError):
    code = "idempotency_error"


class IdempotencyKeyInvalidError(IdempotencyError):
    code = "validation_error"


class IdempotencyConflictError(IdempotencyError):
    """Another request holding the same key is still in flight."""
    code = "idempotency_conflict"
    status_code = 409
    retry_after = 1


class IdempotencyKeyMismatchError(IdempotencyError):
    """The key was already used for a different request payload."""
    code = "idempotency_key_mismatch"
    status_code = 422


@dataclass(frozen=True)
class Claim:
    """
    Result of claim(). A fresh claim carries `claimed_at`, which identifies
    this owner's row; a replay carries the stored response instead.
    """

    key: str
    claimed_at: Optional[datetime] = None
    response_body: Optional[str] = None
    response_status: Optional[int] = None

    @property
    def is_replay(self) -> bool:
        return self.response_body is not None


def retention_window() -> timedelta:
    return timedelta(hours=getattr(settings, "IDEMPOTENCY_RETENTION_HOURS", 24))


def pending_timeout() -> timedelta:
    return timedelta(seconds=getattr(settings, "IDEMPOTENCY_PENDING_TIMEOUT_SECONDS", 60))


def serialize_body(body) -> str:
    return json.dumps(body, cls=DjangoJSONEncoder, separators=(",", ":"))


def request_hash(payload) -> str:
    """Stable fingerprint of a request payload (key order does not matter)."""
    canonical = json.dumps(payload, cls=DjangoJSONEncoder, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def normalize_key(raw) -> Optional[str]:
    if raw is None:
        return None
    key = str(raw).strip()
    if not key:
        return None
    if len(key) > MAX_KEY_LENGTH:
        raise IdempotencyKeyInvalidError(f"Idempotency key must be at most {MAX_KEY_LENGTH} characters")
    return key


def _try_insert(key: str, fingerprint: str) -> Optional[datetime]:
    now = timezone.now()
    try:
        with transaction.atomic():
            IdempotencyRecord.objects.create(key=key, request_hash=fingerprint, created_at=now)
        return now
    except IntegrityError:
        return None


def _try_reclaim(record: IdempotencyRecord, fingerprint: str) -> Optional[datetime]:
    now = timezone.now()
    # conditional on the row being exactly what we looked at
    updated = IdempotencyRecord.objects.filter(
        pk=record.pk, status=record.status, created_at=record.created_at
    ).update(
        status=IdempotencyRecord.PENDING,
        request_hash=fingerprint,
        response_body="",
        response_status=None,
        created_at=now,
        completed_at=None,
    )
    return now if updated == 1 else None


def _conflict(key: str) -> IdempotencyConflictError:
    return IdempotencyConflictError(
        "A request with this idempotency key is already being processed",
        idempotency_key=key,
    )


def claim(key: str, fingerprint: str = "") -> Claim:
    """
    Take ownership of `key`, or return the response stored under it.

    Raises IdempotencyConflictError while another request holds the key and
    IdempotencyKeyMismatchError when the key was used for another payload.
    Expired records and pending records past the timeout are taken over.
    """
    for _ in range(3):
        claimed_at = _try_insert(key, fingerprint)
        if claimed_at:
            return Claim(key, claimed_at=claimed_at)

        record = IdempotencyRecord.objects.filter(key=key).first()
        if record is None:
            # released between our insert and read
            continue

        now = timezone.now()
        if record.is_expired(retention_window(), now) or record.is_stale_pending(pending_timeout(), now):
            claimed_at = _try_reclaim(record, fingerprint)
            if claimed_at:
                logger.info("Reclaimed idempotency key %s (was %s)", key, record.status)
                return Claim(key, claimed_at=claimed_at)
            continue

        if fingerprint and record.request_hash and record.request_hash != fingerprint:
            raise IdempotencyKeyMismatchError(
                "Idempotency key was already used with a different request",
                idempotency_key=key,
            )
        if record.status == IdempotencyRecord.COMPLETED:
            logger.info("Idempotent replay for key %s", key)
            return Claim(key, response_body=record.response_body, response_status=record.response_status)

        logger.warning("Idempotency conflict: key %s is still in flight", key)
        raise _conflict(key)

    raise _conflict(key)


def _owned(claimed: Claim):
    return IdempotencyRecord.objects.filter(
        key=claimed.key,
        status=IdempotencyRecord.PENDING,
        created_at=claimed.claimed_at,
    )


def complete(claimed: Claim, body, status: int = 201) -> str:
    """
    Store the response for a claimed key and return its serialized form.
    Must run inside the transaction that commits the guarded work.
    """
    text = serialize_body(body)
    updated = _owned(claimed).update(
        status=IdempotencyRecord.COMPLETED,
        response_body=text,
        response_status=status,
        completed_at=timezone.now(),
    )
    if not updated:
        # the claim went stale and was taken over; the work must not commit
        raise _conflict(claimed.key)
    return text


def release(claimed: Claim) -> None:
    deleted, _ = _owned(claimed).delete()
    if deleted:
        logger.info("Released idempotency key %s", claimed.key)


def purge_expired(now=None) -> int:
    now = now or timezone.now()
    deleted, _ = IdempotencyRecord.objects.filter(created_at__lt=now - retention_window()).delete()
    if deleted:
        logger.info("Purged %d expired idempotency record(s)", deleted)
    return deleted
