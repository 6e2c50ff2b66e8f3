# loyalty/admin.py

from django.contrib import admin, messages
from django.db.models import Count, Sum
from django.urls import reverse
from django.utils.html import format_html

from .models import LoyaltyTier, LoyaltyAccount, LoyaltyTransaction
from .services import rebuild_account_from_ledger


@admin.register(LoyaltyTier)
class LoyaltyTierAdmin(admin.ModelAdmin):
    list_display = ["name", "min_spend", "points_multiplier", "discount_percent", "sort_order"]
    list_editable = ["sort_order"]
    ordering = ["sort_order", "min_spend"]


@admin.register(LoyaltyAccount)
class LoyaltyAccountAdmin(admin.ModelAdmin):
    list_display = [
        "customer_name",
        "points_balance",
        "ledger_points",
        "total_lifetime_spend",
        "current_tier",
        "entries",
    ]
    list_filter = ["current_tier"]
    search_fields = ["customer__full_name", "customer__email"]
    # balances move only through the ledger
    readonly_fields = ["customer", "points_balance", "total_lifetime_spend", "current_tier", "created_at", "updated_at"]
    actions = ["rebuild_from_ledger"]

    def get_queryset(self, request):
        return (
            super().get_queryset(request)
            .select_related("customer")
            .annotate(ledger_sum=Sum("transactions__points"), entry_count=Count("transactions"))
        )

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def customer_name(self, obj):
        url = reverse("admin:customers_customer_change", args=[obj.customer_id])
        return format_html('<a href="{}">{}</a>', url, obj.customer.full_name)
    customer_name.short_description = "Customer"
    customer_name.admin_order_field = "customer__full_name"

    def ledger_points(self, obj):
        total = obj.ledger_sum or 0
        if total != obj.points_balance:
            return format_html('<strong style="color:#b00">{}</strong>', total)
        return total
    ledger_points.short_description = "Ledger sum"

    def entries(self, obj):
        return obj.entry_count
    entries.admin_order_field = "entry_count"

    @admin.action(description="Rebuild balances from ledger")
    def rebuild_from_ledger(self, request, queryset):
        fixed = sum(1 for account in queryset if rebuild_account_from_ledger(account).drifted)
        level = messages.WARNING if fixed else messages.SUCCESS
        self.message_user(request, f"{queryset.count()} account(s) checked, {fixed} repaired.", level)


@admin.register(LoyaltyTransaction)
class LoyaltyTransactionAdmin(admin.ModelAdmin):
    date_hierarchy = "created_at"
    list_display = ["created_at", "customer_name", "type", "points", "balance_after", "spend_amount", "order_link"]
    list_filter = ["type"]
    search_fields = ["account__customer__full_name", "description", "order__order_number"]
    list_select_related = ["account__customer", "order"]

    # append-only
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def customer_name(self, obj):
        return obj.account.customer.full_name
    customer_name.short_description = "Customer"

    def order_link(self, obj):
        if obj.order_id is None:
            return ""
        url = reverse("admin:orders_order_change", args=[obj.order_id])
        return format_html('<a href="{}">{}</a>', url, obj.order.order_number)
    order_link.short_description = "Order"
