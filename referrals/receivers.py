# referrals/receivers.py
import logging

from django.dispatch import receiver

from orders.signals import order_created
from .services import reward_first_order

logger = logging.getLogger(__name__)


@receiver(order_created, dispatch_uid="referrals.reward_first_order")
def on_order_created(sender, order, customer=None, **kwargs):
    if customer is None:
        return
    try:
        reward_first_order(customer, order)
    except Exception:
        # order is already committed
        logger.exception("Referral reward failed for order %s", order.pk)
