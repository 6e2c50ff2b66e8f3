from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
        ("customers", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("order_number", models.CharField(blank=True, max_length=32, null=True, unique=True)),
                ("client_type", models.CharField(choices=[("retail", "Retail"), ("wholesale", "Wholesale")], default="retail", max_length=16)),
                ("status", models.CharField(choices=[("new_order", "New order"), ("processing", "Processing"), ("completed", "Completed"), ("cancelled", "Cancelled")], default="new_order", max_length=20)),
                ("total_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("items_count", models.PositiveIntegerField(default=0)),
                ("loyalty_points_spent", models.PositiveIntegerField(default=0)),
                ("idempotency_key", models.CharField(blank=True, db_index=True, max_length=255, null=True)),
                ("contact_name", models.CharField(blank=True, default="", max_length=160)),
                ("contact_phone", models.CharField(blank=True, default="", max_length=32)),
                ("contact_email", models.EmailField(blank=True, default="", max_length=254)),
                ("comment", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("customer", models.ForeignKey(blank=True, help_text="Empty for guest checkouts.", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="orders", to="customers.customer")),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [models.Index(fields=["customer", "created_at"], name="order_customer_created_idx")],
            },
        ),
        migrations.CreateModel(
            name="OrderItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("product_code", models.CharField(max_length=64)),
                ("product_name", models.CharField(max_length=200)),
                ("unit_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("quantity", models.PositiveIntegerField()),
                ("subtotal", models.DecimalField(decimal_places=2, max_digits=12)),
                ("is_promo", models.BooleanField(default=False)),
                ("order", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="items", to="orders.order")),
                ("product", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="order_items", to="catalog.product")),
            ],
            options={
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="WholesaleRule",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("rule_type", models.CharField(choices=[("min_order_amount", "Minimum order amount"), ("min_quantity", "Minimum quantity"), ("multiplicity", "Quantity multiple of")], max_length=32)),
                ("value", models.DecimalField(decimal_places=2, max_digits=12)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("product", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="wholesale_rules", to="catalog.product")),
            ],
            options={
                "ordering": ["rule_type", "id"],
                "constraints": [models.CheckConstraint(condition=models.Q(("value__gt", 0)), name="wholesale_rule_value_positive")],
            },
        ),
    ]
