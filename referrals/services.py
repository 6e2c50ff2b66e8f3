# referrals/services.py
import logging
import secrets
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from customers.models import Customer
from loyalty.models import LoyaltyTransaction
from loyalty.services import adjust_points
from .models import Referral

logger = logging.getLogger(__name__)


def generate_referral_code() -> str:
    return secrets.token_hex(4).upper()


def ensure_referral_code(customer: Customer) -> str:
    if not customer.referral_code:
        code = generate_referral_code()
        while Customer.objects.filter(referral_code=code).exists():
            code = generate_referral_code()
        customer.referral_code = code
        customer.save(update_fields=["referral_code", "updated_at"])
    return customer.referral_code


def register_referral(referred: Customer, code: str) -> Optional[Referral]:
    """
    Link a newly registered customer to the owner of `code`. Unknown codes,
    self-referrals and already-referred customers are ignored.
    """
    code = (code or "").strip().upper()
    if not code:
        return None
    referrer = Customer.objects.filter(referral_code=code).first()
    if referrer is None or referrer.pk == referred.pk:
        return None
    referral, created = Referral.objects.get_or_create(
        referred=referred,
        defaults={"referrer": referrer, "referral_code": code},
    )
    return referral if created else None


def reward_first_order(customer: Customer, order) -> Optional[Referral]:
    """
    On a referred customer's first order: mark the referral converted and
    credit the referrer with REFERRAL_BONUS_POINTS.
    """
    bonus = getattr(settings, "REFERRAL_BONUS_POINTS", 100)
    with transaction.atomic():
        referral = (
            Referral.objects.select_for_update()
            .filter(referred=customer, status=Referral.REGISTERED)
            .select_related("referrer")
            .first()
        )
        if referral is None:
            return None

        referral.status = Referral.FIRST_ORDER
        referral.converted_at = timezone.now()
        referral.save(update_fields=["status", "converted_at"])

        adjust_points(
            referral.referrer,
            LoyaltyTransaction.MANUAL_ADD,
            bonus,
            f"Referral bonus: referred customer placed first order {order.order_number}",
        )

        referral.status = Referral.BONUS_GRANTED
        referral.bonus_points = bonus
        referral.save(update_fields=["status", "bonus_points"])

    logger.info("Referral %s converted; granted %d point(s) to customer=%s", referral.pk, bonus, referral.referrer_id)
    return referral
