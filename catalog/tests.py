from decimal import Decimal

from django.test import TestCase

from catalog.models import Category, Product
from catalog.services import get_product, get_products


class ProductSnapshotTests(TestCase):
    def setUp(self):
        self.category = Category.objects.create(name="Soap")
        self.product = Product.objects.create(
            code="bar",
            name="Bar soap",
            category=self.category,
            retail_price=Decimal("9.90"),
            stock_quantity=4,
        )

    def test_snapshot_reflects_current_row(self):
        snap = get_product(self.product.id)
        self.assertEqual(snap.retail_price, Decimal("9.90"))
        self.assertIsNone(snap.wholesale_price)
        self.assertEqual(snap.category_id, self.category.id)

        Product.objects.filter(pk=self.product.pk).update(stock_quantity=1)
        self.assertEqual(get_product(self.product.id).stock_quantity, 1)

    def test_snapshots_are_read_only(self):
        snap = get_product(self.product.id)
        with self.assertRaises(AttributeError):
            snap.stock_quantity = 100

    def test_unknown_ids_are_absent(self):
        self.assertIsNone(get_product(999999))
        found = get_products([self.product.id, 999999])
        self.assertEqual(list(found), [self.product.id])
        self.assertEqual(get_products([]), {})
