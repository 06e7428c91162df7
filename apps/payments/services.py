import razorpay
import logging
from django.conf import settings
from django.db import transaction, IntegrityError
from django.utils import timezone
from razorpay.errors import SignatureVerificationError

from apps.accounts.permissions import require_admin, require_owner_or_admin, require_user
from apps.orders.models import Order
from apps.orders.services import get_order_or_404
from apps.utils.exceptions import (
    AlreadyExists, InvalidArgument, InvalidState, InvalidTransition, NotFound,
)
from .models import Payment, PaymentStatus

logger = logging.getLogger(__name__)


class PaymentService:
    """
    Service to handle Payment Lifecycle.
    PENDING -> PAID | FAILED | REFUNDED, one payment per order.
    """

    @staticmethod
    def get_provider_client():
        return razorpay.Client(auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET))

    @staticmethod
    def verify_webhook_signature(body: str, signature: str) -> bool:
        """
        Strict Signature Verification.
        Without a configured secret every callback is refused.
        """
        secret = getattr(settings, "RAZORPAY_WEBHOOK_SECRET", None)
        if not secret or not signature:
            return False
        try:
            client = PaymentService.get_provider_client()
            client.utility.verify_webhook_signature(body, signature, secret)
            return True
        except (SignatureVerificationError, TypeError):
            # TypeError: hmac.compare_digest refuses non-ASCII signature strings
            return False

    @staticmethod
    def _get_payment(order_id, for_update=False) -> Payment:
        order = get_order_or_404(order_id)
        qs = Payment.objects.select_for_update() if for_update else Payment.objects.all()
        try:
            return qs.select_related("order").get(order=order)
        except Payment.DoesNotExist:
            raise NotFound("Payment not found.")

    @staticmethod
    def create_payment(user, order_id, provider=None, transaction_id=None) -> Payment:
        """
        Attach the one and only payment to an order, amount snapshotted from order.total.
        """
        require_user(user)

        with transaction.atomic():
            order = get_order_or_404(order_id, for_update=True)
            require_owner_or_admin(user, order)

            if order.status == Order.Status.CANCELED:
                raise InvalidState("Cannot create payment for canceled order.")

            if Payment.objects.filter(order=order).exists():
                raise AlreadyExists("Payment already exists for this order.")

            try:
                with transaction.atomic():
                    payment = Payment.objects.create(
                        order=order,
                        amount=order.total,
                        provider=(provider or "").strip() or "UNKNOWN",
                        transaction_id=transaction_id or None,
                        status=PaymentStatus.PENDING,
                    )
            except IntegrityError:
                # Lost the race against a concurrent create on the unique order column
                raise AlreadyExists("Payment already exists for this order.")

        logger.info(
            f"Payment {payment.pk} created for order {order.pk} ({payment.provider}, {payment.amount})",
            extra={"order_id": order.pk, "user_id": user.pk},
        )
        return payment

    @staticmethod
    def get_for_order(user, order_id) -> Payment:
        require_user(user)
        order = get_order_or_404(order_id)
        require_owner_or_admin(user, order)
        try:
            return Payment.objects.get(order=order)
        except Payment.DoesNotExist:
            raise NotFound("Payment not found.")

    @staticmethod
    def update_status(order_id, status, transaction_id=None) -> Payment:
        """
        Gateway callback shape: no caller identity here. The HTTP layer
        only reaches this after verify_webhook_signature() succeeds.
        """
        if status not in PaymentStatus.values:
            raise InvalidArgument("Invalid payment status")

        with transaction.atomic():
            payment = PaymentService._get_payment(order_id, for_update=True)
            previous = payment.status

            payment.status = status
            payment.transaction_id = transaction_id or payment.transaction_id
            payment.save(update_fields=["status", "transaction_id", "updated_at"])

        logger.info(
            f"Payment for order {payment.order_id}: {previous} -> {status}",
            extra={"order_id": payment.order_id, "payment_status": status},
        )
        return payment

    @staticmethod
    def refund(user, order_id) -> Payment:
        """
        Admin-only. PAID -> REFUNDED, at most once. The order itself is untouched.
        """
        require_admin(user)

        with transaction.atomic():
            payment = PaymentService._get_payment(order_id, for_update=True)

            if payment.status != PaymentStatus.PAID:
                raise InvalidTransition("Only paid payments can be refunded.")

            refunded = (
                Payment.objects
                .filter(pk=payment.pk, status=PaymentStatus.PAID)
                .update(status=PaymentStatus.REFUNDED, updated_at=timezone.now())
            )
            if not refunded:
                raise InvalidTransition("Only paid payments can be refunded.")

        payment.refresh_from_db()
        logger.info(
            f"Payment for order {payment.order_id} refunded by administrator {user.pk}",
            extra={"order_id": payment.order_id, "user_id": user.pk},
        )
        return payment
