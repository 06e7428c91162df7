# apps/orders/tests.py
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.test import TestCase
from django.urls import reverse

from rest_framework.test import APITestCase, APIClient
from rest_framework import status

from apps.catalog.models import Product
from apps.inventory.models import StockMovement
from apps.orders.filters import OrderFilter
from apps.orders.models import Order, OrderItem, OrderTimeline, ShippingAddress
from apps.orders.pricing import MAX_AMOUNT, PricingEngine, PricingPolicy
from apps.orders.services import OrderService, ShippingAddressService
from apps.payments.models import PaymentStatus
from apps.utils.exceptions import (
    AlreadyExists, Conflict, Forbidden, InsufficientStock, InvalidArgument,
    InvalidState, InvalidTransition, NotFound, Unauthenticated,
)

User = get_user_model()

ADDRESS = {
    "full_name": "Asha Rao",
    "phone": "+15550001111",
    "address": "12 Market Street",
    "city": "Springfield",
    "postal_code": "12345",
    "country": "US",
}


def make_product(name="Widget", price="10.00", stock=10, is_active=True):
    return Product.objects.create(name=name, price=Decimal(price), stock=stock, is_active=is_active)


def stock_of(product):
    return Product.objects.values_list("stock", flat=True).get(pk=product.pk)


class PricingEngineTests(TestCase):
    def setUp(self):
        self.p1 = make_product("Widget", "10.00", stock=10)
        self.p2 = make_product("Gadget", "20.00", stock=5)
        self.policy = PricingPolicy(tax_rate=Decimal("0.15"))

    def test_single_line_totals(self):
        quote = PricingEngine.compute_totals([{"product_id": self.p1.id, "quantity": 2}], self.policy)

        self.assertEqual(quote.subtotal, Decimal("20.00"))
        self.assertEqual(quote.tax, Decimal("3.00"))
        self.assertEqual(quote.shipping_fee, Decimal("0.00"))
        self.assertEqual(quote.discount, Decimal("0.00"))
        self.assertEqual(quote.total, Decimal("23.00"))
        self.assertEqual(quote.lines[0].subtotal, Decimal("20.00"))

    def test_multi_line_sum_matches_subtotal(self):
        quote = PricingEngine.compute_totals(
            [
                {"product_id": self.p1.id, "quantity": 2},
                {"product_id": str(self.p2.id), "quantity": 1},
            ],
            self.policy,
        )
        self.assertEqual(sum(line.subtotal for line in quote.lines), quote.subtotal)
        self.assertEqual(quote.subtotal, Decimal("40.00"))
        self.assertEqual(quote.total, quote.subtotal + quote.tax + quote.shipping_fee - quote.discount)

    def test_policy_fee_and_discount(self):
        policy = PricingPolicy(tax_rate=Decimal("0.10"), shipping_fee=Decimal("5.00"), discount=Decimal("2.50"))
        quote = PricingEngine.compute_totals([{"product_id": self.p1.id, "quantity": 3}], policy)

        self.assertEqual(quote.subtotal, Decimal("30.00"))
        self.assertEqual(quote.tax, Decimal("3.00"))
        self.assertEqual(quote.total, Decimal("35.50"))

    def test_tax_rounds_half_up_to_cents(self):
        cheap = make_product("Sticker", "0.10", stock=50)
        quote = PricingEngine.compute_totals([{"product_id": cheap.id, "quantity": 1}], self.policy)

        # 0.10 * 0.15 = 0.015
        self.assertEqual(quote.tax, Decimal("0.02"))
        self.assertEqual(quote.total, Decimal("0.12"))

    def test_no_float_drift_across_many_lines(self):
        dime = make_product("Dime", "0.10", stock=100)
        items = [{"product_id": dime.id, "quantity": 1} for _ in range(30)]
        quote = PricingEngine.compute_totals(items, PricingPolicy(tax_rate=Decimal("0")))
        self.assertEqual(quote.subtotal, Decimal("3.00"))

    def test_empty_items_rejected(self):
        with self.assertRaises(InvalidArgument):
            PricingEngine.compute_totals([], self.policy)

    def test_non_positive_and_non_integer_quantities_rejected(self):
        for qty in (0, -1, 1.5, float("inf"), True, "2", None):
            with self.subTest(qty=qty):
                with self.assertRaises(InvalidArgument):
                    PricingEngine.compute_totals([{"product_id": self.p1.id, "quantity": qty}], self.policy)

    def test_malformed_product_id_rejected(self):
        with self.assertRaises(InvalidArgument):
            PricingEngine.compute_totals([{"product_id": "not-a-uuid", "quantity": 1}], self.policy)

    def test_missing_product_names_id(self):
        ghost = "00000000-0000-0000-0000-000000000001"
        with self.assertRaises(NotFound) as ctx:
            PricingEngine.compute_totals([{"product_id": ghost, "quantity": 1}], self.policy)
        self.assertIn(ghost, ctx.exception.message)

    def test_inactive_product_rejected(self):
        retired = make_product("Retired", "5.00", stock=3, is_active=False)
        with self.assertRaises(InvalidState) as ctx:
            PricingEngine.compute_totals([{"product_id": retired.id, "quantity": 1}], self.policy)
        self.assertIn("Retired", ctx.exception.message)

    def test_insufficient_stock_reports_available(self):
        with self.assertRaises(InsufficientStock) as ctx:
            PricingEngine.compute_totals([{"product_id": self.p2.id, "quantity": 6}], self.policy)
        self.assertEqual(ctx.exception.available, 5)
        self.assertIn("Gadget", ctx.exception.message)

    def test_repeated_product_lines_share_stock(self):
        with self.assertRaises(InsufficientStock):
            PricingEngine.compute_totals(
                [
                    {"product_id": self.p1.id, "quantity": 6},
                    {"product_id": self.p1.id, "quantity": 6},
                ],
                self.policy,
            )

    def test_discount_larger_than_order_rejected(self):
        policy = PricingPolicy(tax_rate=Decimal("0"), discount=Decimal("100.00"))
        with self.assertRaises(InvalidArgument):
            PricingEngine.compute_totals([{"product_id": self.p1.id, "quantity": 1}], policy)

    def test_policy_refuses_floats_and_negatives(self):
        with self.assertRaises(InvalidArgument):
            PricingPolicy(tax_rate=0.15)
        with self.assertRaises(InvalidArgument):
            PricingPolicy(shipping_fee=Decimal("-1"))

    def test_policy_from_settings(self):
        with self.settings(ORDER_TAX_RATE=Decimal("0.20"), ORDER_SHIPPING_FEE=Decimal("4.00")):
            policy = PricingPolicy.from_settings()
        self.assertEqual(policy.tax_rate, Decimal("0.20"))
        self.assertEqual(policy.shipping_fee, Decimal("4.00"))

    def test_pricing_does_not_touch_stock(self):
        PricingEngine.compute_totals([{"product_id": self.p1.id, "quantity": 4}], self.policy)
        self.assertEqual(stock_of(self.p1), 10)

    def test_order_value_above_column_capacity_rejected(self):
        pricey = make_product("Yacht", "99999999.99", stock=1000)
        with self.assertRaises(InvalidArgument) as ctx:
            PricingEngine.compute_totals([{"product_id": pricey.id, "quantity": 1000}], self.policy)
        self.assertIn(str(MAX_AMOUNT), ctx.exception.message)
        self.assertEqual(stock_of(pricey), 1000)


class CreateOrderServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="buyer", password="testpass123")
        self.other = User.objects.create_user(username="rival", password="testpass123")
        self.p1 = make_product("Widget", "10.00", stock=10)
        self.p2 = make_product("Gadget", "20.00", stock=5)
        self.policy = PricingPolicy(tax_rate=Decimal("0.15"))

    def test_order_of_two_units_reserves_stock_and_prices_order(self):
        order = OrderService.create_order(
            self.user, [{"product_id": self.p1.id, "quantity": 2}], policy=self.policy
        )

        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertEqual(order.subtotal, Decimal("20.00"))
        self.assertEqual(order.tax, Decimal("3.00"))
        self.assertEqual(order.total, Decimal("23.00"))
        self.assertEqual(stock_of(self.p1), 8)

        item = order.items.get()
        self.assertEqual(item.product_name, "Widget")
        self.assertEqual(item.unit_price, Decimal("10.00"))
        self.assertEqual(item.quantity, 2)
        self.assertEqual(item.subtotal, Decimal("20.00"))

        movement = StockMovement.objects.get(product=self.p1)
        self.assertEqual(movement.quantity_change, -2)
        self.assertEqual(movement.balance_after, 8)
        self.assertEqual(movement.reference, str(order.id))

        self.assertTrue(OrderTimeline.objects.filter(order=order, status=Order.Status.PENDING).exists())

    def test_item_subtotals_sum_to_order_subtotal(self):
        order = OrderService.create_order(
            self.user,
            [
                {"product_id": self.p1.id, "quantity": 3},
                {"product_id": self.p2.id, "quantity": 2},
            ],
            policy=self.policy,
        )
        items_total = sum(i.subtotal for i in order.items.all())
        self.assertEqual(items_total, order.subtotal)
        self.assertEqual(order.total, order.subtotal + order.tax + order.shipping_fee - order.discount)
        self.assertEqual(stock_of(self.p1), 7)
        self.assertEqual(stock_of(self.p2), 3)

    def test_creates_address_and_pending_payment_in_same_unit(self):
        order = OrderService.create_order(
            self.user,
            [{"product_id": self.p1.id, "quantity": 1}],
            shipping_address=ADDRESS,
            payment={"provider": "RAZORPAY"},
            policy=self.policy,
        )
        self.assertEqual(order.shipping_address.city, "Springfield")
        self.assertEqual(order.payment.status, PaymentStatus.PENDING)
        self.assertEqual(order.payment.amount, order.total)
        self.assertEqual(order.payment.provider, "RAZORPAY")

    def test_requires_caller_identity(self):
        for caller in (None, AnonymousUser()):
            with self.subTest(caller=caller):
                with self.assertRaises(Unauthenticated):
                    OrderService.create_order(caller, [{"product_id": self.p1.id, "quantity": 1}])
        self.assertEqual(stock_of(self.p1), 10)

    def test_bad_quantity_fails_before_any_stock_mutation(self):
        for qty in (0, -3):
            with self.subTest(qty=qty):
                with self.assertRaises(InvalidArgument):
                    OrderService.create_order(
                        self.user,
                        [
                            {"product_id": self.p1.id, "quantity": 1},
                            {"product_id": self.p2.id, "quantity": qty},
                        ],
                    )
        self.assertEqual(stock_of(self.p1), 10)
        self.assertEqual(stock_of(self.p2), 5)
        self.assertFalse(Order.objects.exists())
        self.assertFalse(StockMovement.objects.exists())

    def test_incomplete_address_fails_before_any_write(self):
        address = dict(ADDRESS, city="")
        with self.assertRaises(InvalidArgument) as ctx:
            OrderService.create_order(
                self.user, [{"product_id": self.p1.id, "quantity": 1}], shipping_address=address
            )
        self.assertIn("city", ctx.exception.message)
        self.assertEqual(stock_of(self.p1), 10)
        self.assertFalse(Order.objects.exists())

    def test_snapshot_survives_catalog_price_change(self):
        order = OrderService.create_order(
            self.user, [{"product_id": self.p1.id, "quantity": 1}], policy=self.policy
        )
        Product.objects.filter(pk=self.p1.pk).update(price=Decimal("99.00"), name="Widget v2")

        order.refresh_from_db()
        item = OrderItem.objects.get(order=order)
        self.assertEqual(item.unit_price, Decimal("10.00"))
        self.assertEqual(item.product_name, "Widget")
        self.assertEqual(order.subtotal, Decimal("10.00"))

    def test_losing_a_stock_race_raises_conflict(self):
        """Two buyers price 6 of 10 units; the one that reserves second gets Conflict."""
        real_compute = PricingEngine.compute_totals
        calls = []

        def rival_commits_after_pricing(items, policy=None):
            quote = real_compute(items, policy)
            if not calls:
                calls.append(1)
                OrderService.create_order(self.other, [{"product_id": self.p1.id, "quantity": 6}])
            return quote

        with mock.patch(
            "apps.orders.services.PricingEngine.compute_totals",
            side_effect=rival_commits_after_pricing,
        ):
            with self.assertRaises(Conflict) as ctx:
                OrderService.create_order(self.user, [{"product_id": self.p1.id, "quantity": 6}])

        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(stock_of(self.p1), 4)
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(Order.objects.get().user, self.other)

    def test_conflict_on_one_line_rolls_back_every_line(self):
        real_compute = PricingEngine.compute_totals

        def stock_drains_after_pricing(items, policy=None):
            quote = real_compute(items, policy)
            Product.objects.filter(pk=self.p2.pk).update(stock=1)
            return quote

        with mock.patch(
            "apps.orders.services.PricingEngine.compute_totals",
            side_effect=stock_drains_after_pricing,
        ):
            with self.assertRaises(Conflict):
                OrderService.create_order(
                    self.user,
                    [
                        {"product_id": self.p1.id, "quantity": 2},
                        {"product_id": self.p2.id, "quantity": 3},
                    ],
                )

        self.assertEqual(stock_of(self.p1), 10)
        self.assertEqual(stock_of(self.p2), 1)
        self.assertFalse(Order.objects.exists())
        self.assertFalse(OrderItem.objects.exists())
        self.assertFalse(StockMovement.objects.exists())

    def test_failure_after_reservation_rolls_back_stock(self):
        with mock.patch(
            "apps.orders.services.OrderItem.objects.bulk_create",
            side_effect=RuntimeError("disk full"),
        ):
            with self.assertRaises(RuntimeError):
                OrderService.create_order(self.user, [{"product_id": self.p1.id, "quantity": 2}])

        self.assertEqual(stock_of(self.p1), 10)
        self.assertFalse(Order.objects.exists())


class CancelOrderServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="buyer", password="testpass123")
        self.other = User.objects.create_user(username="other", password="testpass123")
        self.admin = User.objects.create_user(username="admin", password="testpass123", is_staff=True)
        self.p1 = make_product("Widget", "10.00", stock=10)
        self.order = OrderService.create_order(self.user, [{"product_id": self.p1.id, "quantity": 2}])

    def test_cancel_pending_order_restores_stock(self):
        self.assertEqual(stock_of(self.p1), 8)

        order = OrderService.cancel_order(self.user, self.order.id)

        self.assertEqual(order.status, Order.Status.CANCELED)
        self.assertEqual(stock_of(self.p1), 10)
        self.assertTrue(
            StockMovement.objects.filter(
                product=self.p1, movement_type=StockMovement.MovementType.RELEASE, quantity_change=2
            ).exists()
        )

    def test_cancel_keeps_monetary_fields(self):
        before = (self.order.subtotal, self.order.tax, self.order.total)
        order = OrderService.cancel_order(self.user, self.order.id)
        self.assertEqual((order.subtotal, order.tax, order.total), before)

    def test_cannot_cancel_after_pending(self):
        Order.objects.filter(pk=self.order.pk).update(status=Order.Status.SHIPPED)

        with self.assertRaises(InvalidTransition) as ctx:
            OrderService.cancel_order(self.user, self.order.id)

        self.assertIn("cannot be canceled", ctx.exception.message)
        self.assertEqual(stock_of(self.p1), 8)
        self.assertEqual(Order.objects.get(pk=self.order.pk).status, Order.Status.SHIPPED)

    def test_second_cancel_is_rejected_and_releases_nothing(self):
        OrderService.cancel_order(self.user, self.order.id)
        with self.assertRaises(InvalidTransition):
            OrderService.cancel_order(self.user, self.order.id)
        self.assertEqual(stock_of(self.p1), 10)

    def test_reopened_order_cancel_does_not_release_twice(self):
        OrderService.cancel_order(self.user, self.order.id)
        self.assertEqual(stock_of(self.p1), 10)

        OrderService.set_status(self.admin, self.order.id, "PENDING")
        with self.assertLogs("apps.orders.services", level="WARNING"):
            order = OrderService.cancel_order(self.user, self.order.id)

        self.assertEqual(order.status, Order.Status.CANCELED)
        self.assertTrue(order.stock_released)
        self.assertEqual(stock_of(self.p1), 10)
        self.assertEqual(
            StockMovement.objects.filter(
                product=self.p1, movement_type=StockMovement.MovementType.RELEASE
            ).count(),
            1,
        )

    def test_only_owner_may_cancel(self):
        for caller in (self.other, self.admin):
            with self.subTest(caller=caller.username):
                with self.assertRaises(Forbidden):
                    OrderService.cancel_order(caller, self.order.id)
        self.assertEqual(Order.objects.get(pk=self.order.pk).status, Order.Status.PENDING)

    def test_unknown_order(self):
        with self.assertRaises(NotFound):
            OrderService.cancel_order(self.user, "00000000-0000-0000-0000-000000000009")
        with self.assertRaises(NotFound):
            OrderService.cancel_order(self.user, "garbage")

    def test_anonymous_cancel(self):
        with self.assertRaises(Unauthenticated):
            OrderService.cancel_order(None, self.order.id)


class SetOrderStatusServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="buyer", password="testpass123")
        self.admin = User.objects.create_user(username="admin", password="testpass123", is_staff=True)
        self.p1 = make_product("Widget", "10.00", stock=10)
        self.order = OrderService.create_order(self.user, [{"product_id": self.p1.id, "quantity": 2}])

    def test_admin_can_move_between_any_statuses(self):
        order = OrderService.set_status(self.admin, self.order.id, "DELIVERED")
        self.assertEqual(order.status, Order.Status.DELIVERED)

        order = OrderService.set_status(self.admin, self.order.id, "PROCESSING")
        self.assertEqual(order.status, Order.Status.PROCESSING)
        self.assertEqual(OrderTimeline.objects.filter(order=self.order).count(), 3)

    def test_non_admin_forbidden(self):
        with self.assertRaises(Forbidden):
            OrderService.set_status(self.user, self.order.id, "SHIPPED")

    def test_invalid_status(self):
        with self.assertRaises(InvalidArgument) as ctx:
            OrderService.set_status(self.admin, self.order.id, "PAID")
        self.assertEqual(ctx.exception.message, "Invalid order status")

    def test_admin_cancel_does_not_restore_stock(self):
        with self.assertLogs("apps.orders.services", level="WARNING"):
            order = OrderService.set_status(self.admin, self.order.id, "CANCELED")
        self.assertEqual(order.status, Order.Status.CANCELED)
        self.assertEqual(stock_of(self.p1), 8)

    def test_owner_cannot_self_cancel_after_admin_cancel(self):
        OrderService.set_status(self.admin, self.order.id, "CANCELED")
        with self.assertRaises(InvalidTransition):
            OrderService.cancel_order(self.user, self.order.id)
        self.assertEqual(stock_of(self.p1), 8)


class OrderReadServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="buyer", password="testpass123")
        self.other = User.objects.create_user(username="other", password="testpass123")
        self.admin = User.objects.create_user(username="admin", password="testpass123", is_staff=True)
        self.p1 = make_product("Widget", "10.00", stock=10)
        self.mine = OrderService.create_order(self.user, [{"product_id": self.p1.id, "quantity": 1}])
        self.theirs = OrderService.create_order(self.other, [{"product_id": self.p1.id, "quantity": 1}])

    def test_list_for_user_only_returns_own_orders(self):
        ids = set(OrderService.list_for_user(self.user).values_list("id", flat=True))
        self.assertEqual(ids, {self.mine.id})

    def test_list_all_requires_admin(self):
        with self.assertRaises(Forbidden):
            OrderService.list_all(self.user)
        self.assertEqual(OrderService.list_all(self.admin).count(), 2)

    def test_list_all_narrowed_by_status_filter(self):
        OrderService.set_status(self.admin, self.theirs.id, "SHIPPED")

        filterset = OrderFilter({"status": "SHIPPED"}, queryset=OrderService.list_all(self.admin))
        self.assertTrue(filterset.is_valid())
        self.assertEqual([o.id for o in filterset.qs], [self.theirs.id])

        self.assertFalse(OrderFilter({"status": "LOST"}, queryset=OrderService.list_all(self.admin)).is_valid())

    def test_get_order_owner_or_admin(self):
        self.assertEqual(OrderService.get_order(self.user, self.mine.id).id, self.mine.id)
        self.assertEqual(OrderService.get_order(self.admin, self.mine.id).id, self.mine.id)
        with self.assertRaises(Forbidden):
            OrderService.get_order(self.other, self.mine.id)


class ShippingAddressServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="buyer", password="testpass123")
        self.other = User.objects.create_user(username="other", password="testpass123")
        self.admin = User.objects.create_user(username="admin", password="testpass123", is_staff=True)
        self.p1 = make_product("Widget", "10.00", stock=10)
        self.order = OrderService.create_order(self.user, [{"product_id": self.p1.id, "quantity": 1}])

    def test_create_once(self):
        address = ShippingAddressService.create(self.user, self.order.id, ADDRESS)
        self.assertEqual(address.order_id, self.order.id)

        with self.assertRaises(AlreadyExists):
            ShippingAddressService.create(self.user, self.order.id, dict(ADDRESS, city="Shelbyville"))
        self.assertEqual(ShippingAddress.objects.get(order=self.order).city, "Springfield")

    def test_missing_field_named(self):
        data = dict(ADDRESS)
        data.pop("postal_code")
        with self.assertRaises(InvalidArgument) as ctx:
            ShippingAddressService.create(self.user, self.order.id, data)
        self.assertEqual(ctx.exception.message, "Missing field: postal_code")

    def test_non_owner_sees_not_found(self):
        with self.assertRaises(NotFound):
            ShippingAddressService.create(self.other, self.order.id, ADDRESS)
        with self.assertRaises(NotFound):
            ShippingAddressService.create(self.admin, self.order.id, ADDRESS)

    def test_update_by_admin_and_get(self):
        ShippingAddressService.create(self.user, self.order.id, ADDRESS)
        updated = ShippingAddressService.update(self.admin, self.order.id, dict(ADDRESS, city="Capital City"))
        self.assertEqual(updated.city, "Capital City")
        self.assertEqual(ShippingAddressService.get(self.user, self.order.id).city, "Capital City")

    def test_update_without_address(self):
        with self.assertRaises(NotFound):
            ShippingAddressService.update(self.user, self.order.id, ADDRESS)

    def test_delete_then_recreate(self):
        ShippingAddressService.create(self.user, self.order.id, ADDRESS)
        ShippingAddressService.delete(self.user, self.order.id)
        with self.assertRaises(NotFound):
            ShippingAddressService.get(self.user, self.order.id)
        ShippingAddressService.create(self.user, self.order.id, ADDRESS)

    def test_create_rejected_when_order_came_with_address(self):
        order = OrderService.create_order(
            self.user, [{"product_id": self.p1.id, "quantity": 1}], shipping_address=ADDRESS
        )
        with self.assertRaises(AlreadyExists):
            ShippingAddressService.create(self.user, order.id, ADDRESS)


class OrderAPITests(APITestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(username="buyer", password="testpass123")
        self.admin = User.objects.create_user(username="admin", password="testpass123", is_staff=True)
        self.p1 = make_product("Widget", "10.00", stock=10)
        self.client.force_authenticate(self.user)

    def _create(self, qty=2, **extra):
        payload = {"items": [{"product_id": str(self.p1.id), "quantity": qty}], **extra}
        return self.client.post(reverse("orders-list"), payload, format="json")

    def test_create_order(self):
        resp = self._create(payment={"provider": "RAZORPAY"}, shipping_address=ADDRESS)

        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data["status"], "PENDING")
        self.assertEqual(resp.data["subtotal"], "20.00")
        self.assertEqual(resp.data["tax"], "3.00")
        self.assertEqual(resp.data["total"], "23.00")
        self.assertEqual(len(resp.data["items"]), 1)
        self.assertEqual(resp.data["payment"]["status"], "PENDING")
        self.assertEqual(resp.data["shipping_address"]["country"], "US")
        self.assertEqual(stock_of(self.p1), 8)

    def test_payment_method_used_as_provider(self):
        resp = self._create(payment={"method": "COD"})
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data["payment"]["provider"], "COD")

    def test_oversized_order_is_invalid_argument(self):
        Product.objects.filter(pk=self.p1.pk).update(price=Decimal("99999999.99"), stock=1000)
        resp = self._create(qty=1000)
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["code"], "invalid_argument")
        self.assertEqual(stock_of(self.p1), 1000)

    def test_zero_quantity_is_invalid_argument(self):
        resp = self._create(qty=0)
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["code"], "invalid_argument")
        self.assertEqual(stock_of(self.p1), 10)

    def test_insufficient_stock(self):
        resp = self._create(qty=11)
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["code"], "insufficient_stock")

    def test_conflict_invites_retry(self):
        with mock.patch(
            "apps.orders.services.StockLedger.reserve_items",
            side_effect=Conflict("Stock changed. Please retry."),
        ):
            resp = self._create()
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data["code"], "conflict")
        self.assertTrue(resp.data["retry"])

    def test_anonymous_rejected(self):
        self.client.force_authenticate(None)
        resp = self._create()
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_cancel_endpoint(self):
        order_id = self._create().data["id"]
        resp = self.client.patch(reverse("orders-cancel", kwargs={"pk": order_id}), format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["status"], "CANCELED")
        self.assertEqual(stock_of(self.p1), 10)

        resp = self.client.patch(reverse("orders-cancel", kwargs={"pk": order_id}), format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["code"], "invalid_transition")

    def test_status_endpoint_admin_only(self):
        order_id = self._create().data["id"]
        url = reverse("orders-set-status", kwargs={"pk": order_id})

        resp = self.client.patch(url, {"status": "SHIPPED"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.admin)
        resp = self.client.patch(url, {"status": "BOGUS"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

        resp = self.client.patch(url, {"status": "SHIPPED"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["status"], "SHIPPED")

    def test_list_and_retrieve(self):
        order_id = self._create().data["id"]

        resp = self.client.get(reverse("orders-list"))
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual([o["id"] for o in resp.data], [order_id])

        resp = self.client.get(reverse("orders-detail", kwargs={"pk": order_id}))
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["total"], "23.00")

    def test_all_orders_filter_for_admin(self):
        self._create()
        url = reverse("orders-all-orders")

        self.assertEqual(self.client.get(url).status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.admin)
        resp = self.client.get(url, {"status": "PENDING"})
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(len(resp.data), 1)

        resp = self.client.get(url, {"status": "SHIPPED"})
        self.assertEqual(resp.data, [])

        resp = self.client.get(url, {"status": "NOPE"})
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

    def test_address_endpoints(self):
        order_id = self._create().data["id"]
        url = reverse("orders-address", kwargs={"pk": order_id})

        resp = self.client.post(url, ADDRESS, format="json")
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)

        resp = self.client.post(url, ADDRESS, format="json")
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data["code"], "already_exists")

        resp = self.client.patch(url, dict(ADDRESS, city="Ogdenville"), format="json")
        self.assertEqual(resp.data["city"], "Ogdenville")

        resp = self.client.delete(url)
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(self.client.get(url).status_code, status.HTTP_404_NOT_FOUND)
