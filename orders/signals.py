# orders/signals.py
from django.dispatch import Signal

# Sent once an order has been committed.
# kwargs: order (orders.Order), customer (customers.Customer or None)
order_created = Signal()
