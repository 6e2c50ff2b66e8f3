from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
        ("customers", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="PersonalPrice",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("discount_percent", models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ("fixed_price", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("valid_from", models.DateTimeField(blank=True, null=True)),
                ("valid_until", models.DateTimeField(blank=True, null=True)),
                ("category", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="personal_prices", to="catalog.category")),
                ("created_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="created_personal_prices", to=settings.AUTH_USER_MODEL)),
                ("customer", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="personal_prices", to="customers.customer")),
                ("product", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="personal_prices", to="catalog.product")),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["customer", "product"], name="personal_price_cust_prod_idx"),
                    models.Index(fields=["customer", "category"], name="personal_price_cust_cat_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("product__isnull", False), ("category__isnull", False), _connector="OR"), name="personal_price_has_scope"),
                    models.CheckConstraint(condition=models.Q(("discount_percent__isnull", False), ("fixed_price__isnull", False), _connector="OR"), name="personal_price_has_value"),
                    models.CheckConstraint(condition=models.Q(("discount_percent__isnull", True), models.Q(("discount_percent__gte", 0), ("discount_percent__lte", 100)), _connector="OR"), name="personal_price_discount_range"),
                ],
            },
        ),
    ]
