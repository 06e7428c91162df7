import hashlib
import hmac
import json
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from apps.catalog.models import Product
from apps.orders.models import Order
from apps.orders.services import OrderService
from apps.payments.models import Payment, PaymentStatus
from apps.payments.services import PaymentService
from apps.utils.exceptions import (
    AlreadyExists, Forbidden, InvalidArgument, InvalidState, InvalidTransition, NotFound,
)

User = get_user_model()

WEBHOOK_SECRET = "test_secret"


class PaymentTestMixin:
    def setUp(self):
        self.user = User.objects.create_user(username="buyer", password="testpass123")
        self.other = User.objects.create_user(username="other", password="testpass123")
        self.admin = User.objects.create_user(username="admin", password="testpass123", is_staff=True)
        self.product = Product.objects.create(name="Widget", price=Decimal("10.00"), stock=10)
        self.order = OrderService.create_order(self.user, [{"product_id": self.product.id, "quantity": 2}])


class CreatePaymentTests(PaymentTestMixin, TestCase):
    def test_amount_is_order_total(self):
        payment = PaymentService.create_payment(self.user, self.order.id, provider="RAZORPAY")

        self.assertEqual(payment.status, PaymentStatus.PENDING)
        self.assertEqual(payment.amount, self.order.total)
        self.assertEqual(payment.provider, "RAZORPAY")
        self.assertIsNone(payment.transaction_id)

    def test_provider_defaults_to_unknown(self):
        payment = PaymentService.create_payment(self.user, self.order.id)
        self.assertEqual(payment.provider, "UNKNOWN")

    def test_second_payment_rejected_first_untouched(self):
        first = PaymentService.create_payment(self.user, self.order.id, provider="RAZORPAY", transaction_id="pay_1")

        with self.assertRaises(AlreadyExists):
            PaymentService.create_payment(self.user, self.order.id, provider="CARD", transaction_id="pay_2")

        stored = Payment.objects.get(order=self.order)
        self.assertEqual(stored.pk, first.pk)
        self.assertEqual(stored.provider, "RAZORPAY")
        self.assertEqual(stored.transaction_id, "pay_1")

    def test_order_placed_with_payment_blocks_second_create(self):
        order = OrderService.create_order(
            self.user, [{"product_id": self.product.id, "quantity": 1}], payment={"provider": "CARD"}
        )
        with self.assertRaises(AlreadyExists):
            PaymentService.create_payment(self.user, order.id)

    def test_canceled_order_cannot_be_paid(self):
        OrderService.cancel_order(self.user, self.order.id)
        with self.assertRaises(InvalidState):
            PaymentService.create_payment(self.user, self.order.id)
        self.assertFalse(Payment.objects.exists())

    def test_owner_or_admin_only(self):
        with self.assertRaises(Forbidden):
            PaymentService.create_payment(self.other, self.order.id)
        payment = PaymentService.create_payment(self.admin, self.order.id)
        self.assertEqual(payment.order_id, self.order.id)

    def test_unknown_order(self):
        with self.assertRaises(NotFound):
            PaymentService.create_payment(self.user, "00000000-0000-0000-0000-00000000abcd")


class PaymentStatusTests(PaymentTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.payment = PaymentService.create_payment(self.user, self.order.id, transaction_id="pay_123")

    def test_gateway_marks_paid(self):
        payment = PaymentService.update_status(self.order.id, "PAID", transaction_id="pay_456")
        self.assertEqual(payment.status, PaymentStatus.PAID)
        self.assertEqual(payment.transaction_id, "pay_456")

    def test_transaction_id_kept_when_not_supplied(self):
        payment = PaymentService.update_status(self.order.id, "FAILED")
        self.assertEqual(payment.status, PaymentStatus.FAILED)
        self.assertEqual(payment.transaction_id, "pay_123")

    def test_invalid_status(self):
        with self.assertRaises(InvalidArgument):
            PaymentService.update_status(self.order.id, "SETTLED")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.PENDING)

    def test_no_payment_for_order(self):
        order = OrderService.create_order(self.user, [{"product_id": self.product.id, "quantity": 1}])
        with self.assertRaises(NotFound):
            PaymentService.update_status(order.id, "PAID")


class RefundTests(PaymentTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.payment = PaymentService.create_payment(self.user, self.order.id)

    def test_admin_refunds_paid_payment(self):
        PaymentService.update_status(self.order.id, "PAID")

        payment = PaymentService.refund(self.admin, self.order.id)

        self.assertEqual(payment.status, PaymentStatus.REFUNDED)
        self.assertEqual(Order.objects.get(pk=self.order.pk).status, Order.Status.PENDING)

    def test_refund_fires_once(self):
        PaymentService.update_status(self.order.id, "PAID")
        PaymentService.refund(self.admin, self.order.id)
        with self.assertRaises(InvalidTransition):
            PaymentService.refund(self.admin, self.order.id)

    def test_only_paid_can_be_refunded(self):
        with self.assertRaises(InvalidTransition):
            PaymentService.refund(self.admin, self.order.id)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.PENDING)

    def test_non_admin_forbidden(self):
        PaymentService.update_status(self.order.id, "PAID")
        with self.assertRaises(Forbidden):
            PaymentService.refund(self.user, self.order.id)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.PAID)


class PaymentAPITests(PaymentTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(self.user)
        self.payment_url = reverse("order-payment", kwargs={"order_id": self.order.id})

    def test_create_and_read(self):
        resp = self.client.post(self.payment_url, {"method": "razorpay"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data["amount"], "23.00")
        self.assertEqual(resp.data["provider"], "razorpay")

        resp = self.client.post(self.payment_url, {"provider": "CARD"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data["code"], "already_exists")

        resp = self.client.get(self.payment_url)
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["status"], "PENDING")

    def test_refund_endpoint(self):
        PaymentService.create_payment(self.user, self.order.id)
        PaymentService.update_status(self.order.id, "PAID")
        url = reverse("payment-refund", kwargs={"order_id": self.order.id})

        self.assertEqual(self.client.patch(url).status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.admin)
        resp = self.client.patch(url)
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["status"], "REFUNDED")


class PaymentWebhookTests(PaymentTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.url = reverse("payment-status-webhook", kwargs={"order_id": self.order.id})
        PaymentService.create_payment(self.user, self.order.id)

    def _get_signature(self, payload):
        return hmac.new(
            bytes(WEBHOOK_SECRET, 'utf-8'),
            bytes(payload, 'utf-8'),
            hashlib.sha256
        ).hexdigest()

    def _send(self, payload_data, signature=None):
        payload_str = json.dumps(payload_data)
        headers = {}
        if signature is not False:
            headers["HTTP_X_RAZORPAY_SIGNATURE"] = signature or self._get_signature(payload_str)
        return self.client.patch(self.url, data=payload_str, content_type='application/json', **headers)

    @override_settings(RAZORPAY_WEBHOOK_SECRET=WEBHOOK_SECRET)
    def test_webhook_success(self):
        """Verify valid signature leads to processed payment"""
        resp = self._send({"status": "PAID", "transaction_id": "pay_123"})

        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        payment = Payment.objects.get(order=self.order)
        self.assertEqual(payment.status, PaymentStatus.PAID)
        self.assertEqual(payment.transaction_id, "pay_123")

    @override_settings(RAZORPAY_WEBHOOK_SECRET=WEBHOOK_SECRET)
    def test_webhook_invalid_signature(self):
        """Verify invalid signature returns 403"""
        resp = self._send({"status": "PAID"}, signature="fake_signature")
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(Payment.objects.get(order=self.order).status, PaymentStatus.PENDING)

    @override_settings(RAZORPAY_WEBHOOK_SECRET=WEBHOOK_SECRET)
    def test_webhook_missing_signature(self):
        resp = self._send({"status": "PAID"}, signature=False)
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

    @override_settings(RAZORPAY_WEBHOOK_SECRET=WEBHOOK_SECRET)
    def test_webhook_non_utf8_body_refused(self):
        body = b'{"status": "PAID", "note": "\xff"}'
        signature = hmac.new(bytes(WEBHOOK_SECRET, 'utf-8'), body, hashlib.sha256).hexdigest()

        resp = self.client.patch(
            self.url, data=body, content_type='application/json', HTTP_X_RAZORPAY_SIGNATURE=signature
        )

        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(Payment.objects.get(order=self.order).status, PaymentStatus.PENDING)

    @override_settings(RAZORPAY_WEBHOOK_SECRET=WEBHOOK_SECRET)
    def test_webhook_non_ascii_signature_refused(self):
        resp = self._send({"status": "PAID"}, signature="\u00e9abc")
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(Payment.objects.get(order=self.order).status, PaymentStatus.PENDING)

    @override_settings(RAZORPAY_WEBHOOK_SECRET=WEBHOOK_SECRET)
    def test_verify_signature_rejects_non_ascii(self):
        self.assertFalse(PaymentService.verify_webhook_signature('{"status": "PAID"}', "\u00e9abc"))

    @override_settings(RAZORPAY_WEBHOOK_SECRET=None)
    def test_webhook_refused_without_configured_secret(self):
        resp = self._send({"status": "PAID"})
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

    @override_settings(RAZORPAY_WEBHOOK_SECRET=WEBHOOK_SECRET)
    def test_webhook_unknown_status(self):
        resp = self._send({"status": "SETTLED"})
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["code"], "invalid_argument")

    @override_settings(RAZORPAY_WEBHOOK_SECRET=WEBHOOK_SECRET)
    def test_webhook_can_move_status_freely(self):
        """Gateway updates are not transition-checked"""
        self._send({"status": "PAID"})
        resp = self._send({"status": "FAILED"})
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(Payment.objects.get(order=self.order).status, PaymentStatus.FAILED)
