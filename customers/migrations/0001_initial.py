from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("full_name", models.CharField(max_length=160)),
                ("email", models.EmailField(blank=True, max_length=254, null=True)),
                ("phone_number", models.CharField(blank=True, help_text="E.164 or local format.", max_length=32, null=True)),
                ("role", models.CharField(choices=[("client", "Client"), ("wholesaler", "Wholesaler"), ("manager", "Manager"), ("admin", "Admin")], db_index=True, default="client", max_length=20)),
                ("referral_code", models.CharField(blank=True, help_text="Code other customers register with to become this customer's referrals.", max_length=16, null=True, unique=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("user", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="customer_profile", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-id"],
                "indexes": [
                    models.Index(fields=["role"], name="customer_role_idx"),
                    models.Index(fields=["email"], name="customer_email_idx"),
                ],
            },
        ),
    ]
