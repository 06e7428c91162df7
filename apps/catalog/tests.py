from decimal import Decimal

from django.db import IntegrityError, transaction
from django.db.models import F
from django.test import TestCase

from apps.catalog.models import Product


class ProductConstraintTests(TestCase):
    def setUp(self):
        self.product = Product.objects.create(name="Widget", price=Decimal("10.00"), stock=2)

    def test_stock_cannot_go_negative(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Product.objects.filter(pk=self.product.pk).update(stock=F("stock") - 3)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 2)

    def test_price_keeps_cents(self):
        self.product.refresh_from_db()
        self.assertEqual(self.product.price, Decimal("10.00"))
        self.assertEqual(str(self.product), "Widget")
