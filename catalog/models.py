# catalog/models.py

from django.db import models
from django.db.models import Q
from django.db.models.functions import Lower
from django.utils.text import slugify
from common.models import TimeStampedModel


class Category(TimeStampedModel):
    name = models.CharField(max_length=120, unique=True)
    code = models.SlugField(blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(Lower("code"), name="uniq_category_code_ci"),
        ]
        ordering = ["name"]
        verbose_name_plural = "Categories"

    def save(self, *args, **kwargs):
        if not self.code:
            self.code = slugify(self.name)
        super().save(*args, **kwargs)

    def __str__(self):
        return self.name


class Product(TimeStampedModel):
    code = models.SlugField(blank=False)
    name = models.CharField(max_length=200)
    category = models.ForeignKey(
        Category,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="products",
    )
    description = models.TextField(blank=True, default="")

    # Base prices; the pricing app decides which one (if any) a buyer pays.
    retail_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    wholesale_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    stock_quantity = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True, db_index=True)
    is_promo = models.BooleanField(default=False)

    class Meta:
        constraints = [
            models.UniqueConstraint(Lower("code"), name="uniq_product_code_ci"),
            models.CheckConstraint(condition=~Q(code=""), name="product_code_not_blank"),
            models.CheckConstraint(condition=Q(stock_quantity__gte=0), name="product_stock_not_negative"),
        ]
        indexes = [
            models.Index(fields=["category", "is_active"], name="product_category_active_idx"),
        ]
        ordering = ["name"]

    def __str__(self):
        return self.name
