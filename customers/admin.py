# customers/admin.py

from django.contrib import admin

from .models import Customer


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "full_name",
        "email",
        "phone_number",
        "role",
        "referral_code",
        "created_at",
    ]
    list_filter = ["role", "created_at"]
    search_fields = [
        "full_name__icontains",
        "email__icontains",
        "phone_number__icontains",
        "referral_code__exact",
    ]
    readonly_fields = ["created_at", "updated_at"]
    raw_id_fields = ["user"]
    ordering = ["-id"]
    list_per_page = 25

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("user")
