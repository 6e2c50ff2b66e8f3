from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from common.models import TimeStampedModel


class PersonalPriceQuerySet(models.QuerySet):
    def effective_at(self, when=None):
        """
        Overrides whose validity window contains `when`. Rows with an open
        bound on either side count as valid on that side.
        """
        when = when or timezone.now()
        return (self
                .filter(Q(valid_from__isnull=True) | Q(valid_from__lte=when))
                .filter(Q(valid_until__isnull=True) | Q(valid_until__gte=when)))


class PersonalPrice(TimeStampedModel):
    """
    Customer-specific price rule scoped to a product or to a whole category.
    When both product and category are set the row is product-scoped.
    fixed_price wins over discount_percent when both are present.
    """
    customer = models.ForeignKey(
        "customers.Customer",
        on_delete=models.CASCADE,
        related_name="personal_prices",
    )
    product = models.ForeignKey(
        "catalog.Product",
        null=True,
        blank=True,
        on_delete=models.CASCADE,
        related_name="personal_prices",
    )
    category = models.ForeignKey(
        "catalog.Category",
        null=True,
        blank=True,
        on_delete=models.CASCADE,
        related_name="personal_prices",
    )
    discount_percent = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    fixed_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    valid_from = models.DateTimeField(null=True, blank=True)
    valid_until = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="created_personal_prices",
    )

    objects = PersonalPriceQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(product__isnull=False) | Q(category__isnull=False),
                name="personal_price_has_scope",
            ),
            models.CheckConstraint(
                condition=Q(discount_percent__isnull=False) | Q(fixed_price__isnull=False),
                name="personal_price_has_value",
            ),
            models.CheckConstraint(
                condition=Q(discount_percent__isnull=True)
                | (Q(discount_percent__gte=0) & Q(discount_percent__lte=100)),
                name="personal_price_discount_range",
            ),
        ]
        indexes = [
            models.Index(fields=["customer", "product"], name="personal_price_cust_prod_idx"),
            models.Index(fields=["customer", "category"], name="personal_price_cust_cat_idx"),
        ]

    def __str__(self):
        target = f"product={self.product_id}" if self.product_id else f"category={self.category_id}"
        value = f"fixed {self.fixed_price}" if self.fixed_price is not None else f"-{self.discount_percent}%"
        return f"{self.customer_id} {target} {value}"
