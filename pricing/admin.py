from django.contrib import admin

from .models import PersonalPrice


@admin.register(PersonalPrice)
class PersonalPriceAdmin(admin.ModelAdmin):
    list_display = ("customer", "product", "category", "discount_percent", "fixed_price", "valid_from", "valid_until", "created_at")
    list_filter = ("valid_from", "valid_until", "category")
    search_fields = ("customer__full_name", "customer__email", "product__name", "product__code", "category__name")
    raw_id_fields = ("customer", "product", "created_by")
    readonly_fields = ("created_by", "created_at", "updated_at")

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("customer", "product", "category")

    def save_model(self, request, obj, form, change):
        if not change and not obj.created_by_id:
            obj.created_by = request.user
        super().save_model(request, obj, form, change)
