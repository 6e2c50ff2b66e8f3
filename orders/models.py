# orders/models.py

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from catalog.models import Product
from customers.models import Customer


class Order(models.Model):
    RETAIL = "retail"
    WHOLESALE = "wholesale"
    CLIENT_TYPE_CHOICES = [
        (RETAIL, "Retail"),
        (WHOLESALE, "Wholesale"),
    ]

    STATUS_CHOICES = [
        ("new_order", "New order"),
        ("processing", "Processing"),
        ("completed", "Completed"),
        ("cancelled", "Cancelled"),
    ]

    order_number = models.CharField(max_length=32, blank=True, null=True, unique=True)
    customer = models.ForeignKey(
        Customer,
        null=True,
        blank=True,
        related_name="orders",
        on_delete=models.SET_NULL,
        help_text="Empty for guest checkouts.",
    )
    client_type = models.CharField(max_length=16, choices=CLIENT_TYPE_CHOICES, default=RETAIL)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="new_order")

    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    items_count = models.PositiveIntegerField(default=0)
    loyalty_points_spent = models.PositiveIntegerField(default=0)
    idempotency_key = models.CharField(max_length=255, blank=True, null=True, db_index=True)

    # guest contact details
    contact_name = models.CharField(max_length=160, blank=True, default="")
    contact_phone = models.CharField(max_length=32, blank=True, default="")
    contact_email = models.EmailField(blank=True, default="")
    comment = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["customer", "created_at"], name="order_customer_created_idx"),
        ]

    def __str__(self):
        return f"Order {self.order_number or self.id} - {self.total_amount}"

    def assign_order_number(self):
        if self.order_number:
            return self.order_number
        day = (self.created_at or timezone.now()).strftime("%Y%m%d")
        self.order_number = f"ORD-{day}-{self.id:06d}"
        return self.order_number


class OrderItem(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="order_items")
    # snapshot of the product at order time
    product_code = models.CharField(max_length=64)
    product_name = models.CharField(max_length=200)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    quantity = models.PositiveIntegerField()
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    is_promo = models.BooleanField(default=False)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"OrderItem {self.order_id} - {self.product_code} x {self.quantity}"


class WholesaleRule(models.Model):
    """
    Constraint on wholesale orders. A rule without a product is global;
    only min_order_amount is meaningful globally.
    """

    MIN_ORDER_AMOUNT = "min_order_amount"
    MIN_QUANTITY = "min_quantity"
    MULTIPLICITY = "multiplicity"
    RULE_CHOICES = [
        (MIN_ORDER_AMOUNT, "Minimum order amount"),
        (MIN_QUANTITY, "Minimum quantity"),
        (MULTIPLICITY, "Quantity multiple of"),
    ]

    rule_type = models.CharField(max_length=32, choices=RULE_CHOICES)
    value = models.DecimalField(max_digits=12, decimal_places=2)
    product = models.ForeignKey(
        Product,
        null=True,
        blank=True,
        on_delete=models.CASCADE,
        related_name="wholesale_rules",
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["rule_type", "id"]
        constraints = [
            models.CheckConstraint(condition=models.Q(value__gt=0), name="wholesale_rule_value_positive"),
        ]

    def __str__(self):
        target = f"product {self.product_id}" if self.product_id else "all orders"
        return f"{self.rule_type}={self.value} ({target})"

    def clean(self):
        if self.rule_type == self.MIN_ORDER_AMOUNT and self.product_id:
            raise ValidationError({"product": "Minimum order amount applies to the whole order."})
        if self.rule_type in (self.MIN_QUANTITY, self.MULTIPLICITY) and not self.product_id:
            raise ValidationError({"product": "Quantity rules need a product."})
