import concurrent.futures
import unittest
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import connection
from django.test import TestCase, TransactionTestCase

from apps.catalog.models import Product
from apps.inventory.models import StockMovement
from apps.inventory.services import StockLedger
from apps.orders.services import OrderService
from apps.utils.exceptions import Conflict, InvalidArgument, NotFound

User = get_user_model()

MISSING = "00000000-0000-0000-0000-0000000000ff"


class StockLedgerTests(TestCase):
    def setUp(self):
        self.product = Product.objects.create(name="Prod1", price=Decimal("100.00"), stock=5)

    def _stock(self):
        self.product.refresh_from_db()
        return self.product.stock

    def test_reserve_decrements_and_logs(self):
        movement = StockLedger.reserve(self.product.id, 3, reference="ORDER-1")

        self.assertEqual(self._stock(), 2)
        self.assertEqual(movement.movement_type, StockMovement.MovementType.RESERVATION)
        self.assertEqual(movement.quantity_change, -3)
        self.assertEqual(movement.balance_after, 2)
        self.assertEqual(movement.reference, "ORDER-1")

    def test_reserve_exact_remaining_stock(self):
        StockLedger.reserve(self.product.id, 5, reference="ORDER-1")
        self.assertEqual(self._stock(), 0)

    def test_reserve_more_than_available_conflicts(self):
        with self.assertRaises(Conflict):
            StockLedger.reserve(self.product.id, 6, reference="ORDER-1")
        self.assertEqual(self._stock(), 5)
        self.assertFalse(StockMovement.objects.exists())

    def test_reserve_unknown_product(self):
        with self.assertRaises(NotFound):
            StockLedger.reserve(MISSING, 1, reference="ORDER-1")

    def test_quantity_must_be_positive_int(self):
        for qty in (0, -2, 1.0, True):
            with self.subTest(qty=qty):
                with self.assertRaises(InvalidArgument):
                    StockLedger.reserve(self.product.id, qty, reference="ORDER-1")
                with self.assertRaises(InvalidArgument):
                    StockLedger.release(self.product.id, qty, reference="ORDER-1")
        self.assertEqual(self._stock(), 5)

    def test_release_is_unconditional_increment(self):
        movement = StockLedger.release(self.product.id, 4, reference="CANCEL-1")
        self.assertEqual(self._stock(), 9)
        self.assertEqual(movement.movement_type, StockMovement.MovementType.RELEASE)
        self.assertEqual(movement.balance_after, 9)

    def test_release_unknown_product(self):
        with self.assertRaises(NotFound):
            StockLedger.release(MISSING, 1, reference="CANCEL-1")

    def test_reserve_items_is_all_or_nothing(self):
        scarce = Product.objects.create(name="Scarce", price=Decimal("1.00"), stock=1)

        with self.assertRaises(Conflict):
            StockLedger.reserve_items(
                [
                    {"product_id": self.product.id, "quantity": 2},
                    {"product_id": scarce.id, "quantity": 3},
                ],
                reference="ORDER-2",
            )

        self.assertEqual(self._stock(), 5)
        scarce.refresh_from_db()
        self.assertEqual(scarce.stock, 1)
        self.assertFalse(StockMovement.objects.filter(reference="ORDER-2").exists())

    def test_release_items_restores_each_line(self):
        other = Product.objects.create(name="Other", price=Decimal("1.00"), stock=0)
        movements = StockLedger.release_items(
            [
                {"product_id": self.product.id, "quantity": 1},
                {"product_id": other.id, "quantity": 2},
            ],
            reference="CANCEL-2",
        )
        self.assertEqual(len(movements), 2)
        other.refresh_from_db()
        self.assertEqual(other.stock, 2)
        self.assertEqual(self._stock(), 6)


@unittest.skipUnless(connection.vendor == "postgresql", "row-level races need a server database")
class ConcurrencyTests(TransactionTestCase):
    # Use TransactionTestCase to allow real DB transactions for concurrency testing

    def setUp(self):
        self.product = Product.objects.create(name="Prod1", price=Decimal("10.00"), stock=10)
        self.user1 = User.objects.create_user(username="buyer1", password="testpass123")
        self.user2 = User.objects.create_user(username="buyer2", password="testpass123")

    def test_concurrent_ordering(self):
        """Two buyers each want 6 of the last 10 units: exactly one order is placed"""
        def place_order(user_id):
            try:
                user = User.objects.get(id=user_id)
                OrderService.create_order(user, [{"product_id": self.product.id, "quantity": 6}])
                return "SUCCESS"
            except Conflict:
                return "CONFLICT"
            finally:
                connection.close()

        with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
            futures = [
                executor.submit(place_order, self.user1.id),
                executor.submit(place_order, self.user2.id),
            ]
            results = [f.result() for f in futures]

        self.assertEqual(results.count("SUCCESS"), 1)
        self.assertEqual(results.count("CONFLICT"), 1)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 4)
