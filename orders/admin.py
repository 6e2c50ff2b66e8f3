# orders/admin.py
from django.contrib import admin

from .models import Order, OrderItem, WholesaleRule


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ("product", "product_code", "product_name", "unit_price", "quantity", "subtotal", "is_promo")


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "order_number", "customer", "client_type", "status", "total_amount", "items_count", "created_at")
    list_filter = ("client_type", "status", "created_at")
    search_fields = ("id", "order_number", "customer__full_name", "contact_name", "contact_phone", "contact_email")
    date_hierarchy = "created_at"
    readonly_fields = ("order_number", "total_amount", "items_count", "loyalty_points_spent", "idempotency_key", "created_at")
    inlines = [OrderItemInline]

    # orders are referenced by the loyalty ledger
    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(WholesaleRule)
class WholesaleRuleAdmin(admin.ModelAdmin):
    list_display = ("rule_type", "value", "product", "is_active", "created_at")
    list_filter = ("rule_type", "is_active")
    search_fields = ("product__name", "product__code")
    raw_id_fields = ("product",)
