from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("customers", "0001_initial"),
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="LoyaltyTier",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=64, unique=True)),
                ("min_spend", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12, validators=[django.core.validators.MinValueValidator(0)])),
                ("points_multiplier", models.DecimalField(decimal_places=2, default=Decimal("1.00"), help_text="Applied to the base earn rate.", max_digits=6, validators=[django.core.validators.MinValueValidator(0)])),
                ("discount_percent", models.DecimalField(decimal_places=2, default=Decimal("0.00"), help_text="Informational; not applied by the pricing engine.", max_digits=5, validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
                ("sort_order", models.PositiveIntegerField(default=0)),
            ],
            options={
                "ordering": ["sort_order", "min_spend", "id"],
            },
        ),
        migrations.CreateModel(
            name="LoyaltyAccount",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("points_balance", models.IntegerField(default=0)),
                ("total_lifetime_spend", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("current_tier", models.CharField(blank=True, max_length=64, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("customer", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="loyalty_account", to="customers.customer")),
            ],
            options={
                "indexes": [models.Index(fields=["points_balance"], name="loyalty_acct_balance_idx")],
                "constraints": [models.CheckConstraint(condition=models.Q(("points_balance__gte", 0)), name="loyalty_balance_not_negative")],
            },
        ),
        migrations.CreateModel(
            name="LoyaltyTransaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("type", models.CharField(choices=[("earn", "Earn"), ("spend", "Spend"), ("manual_add", "Manual add"), ("manual_deduct", "Manual deduct"), ("expire", "Expire")], max_length=16)),
                ("points", models.IntegerField()),
                ("balance_after", models.IntegerField()),
                ("spend_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), help_text="Order amount this entry added to lifetime spend.", max_digits=12)),
                ("description", models.CharField(blank=True, default="", max_length=500)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("account", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="transactions", to="loyalty.loyaltyaccount")),
                ("order", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="loyalty_transactions", to="orders.order")),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["account", "created_at"], name="loyalty_tx_account_idx"),
                    models.Index(fields=["type"], name="loyalty_tx_type_idx"),
                ],
            },
        ),
    ]
