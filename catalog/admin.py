from django.contrib import admin
from .models import Category, Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "category", "retail_price", "wholesale_price", "stock_quantity", "is_active", "is_promo")
    list_filter = ("category", "is_active", "is_promo")
    search_fields = ("name", "code")

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("category")


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ("name", "code")
    search_fields = ("name", "code")  # REQUIRED for autocomplete to work
