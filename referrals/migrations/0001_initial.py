import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("customers", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Referral",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("referral_code", models.CharField(max_length=16)),
                ("status", models.CharField(choices=[("registered", "Registered"), ("first_order", "First order"), ("bonus_granted", "Bonus granted")], db_index=True, default="registered", max_length=16)),
                ("bonus_points", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("converted_at", models.DateTimeField(blank=True, null=True)),
                ("referred", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="referred_by", to="customers.customer")),
                ("referrer", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="referrals_made", to="customers.customer")),
            ],
            options={
                "ordering": ["-created_at", "-id"],
            },
        ),
    ]
