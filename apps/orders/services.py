import uuid
import logging
from django.db import transaction, IntegrityError
from django.utils import timezone

from apps.accounts.permissions import (
    is_admin, is_owner, require_admin, require_owner_or_admin, require_user,
)
from apps.inventory.services import StockLedger
from apps.payments.models import Payment, PaymentStatus
from apps.utils.exceptions import (
    AlreadyExists, Forbidden, InvalidArgument, InvalidTransition, NotFound,
)
from .models import Order, OrderItem, OrderTimeline, ShippingAddress
from .pricing import PricingEngine, PricingPolicy, Quote

logger = logging.getLogger(__name__)


def _parse_order_id(order_id) -> uuid.UUID:
    if isinstance(order_id, uuid.UUID):
        return order_id
    try:
        return uuid.UUID(str(order_id))
    except (TypeError, ValueError, AttributeError):
        raise NotFound("Order not found.")


def get_order_or_404(order_id, for_update=False) -> Order:
    qs = Order.objects.select_for_update() if for_update else Order.objects.all()
    try:
        return qs.get(pk=_parse_order_id(order_id))
    except Order.DoesNotExist:
        raise NotFound("Order not found.")


class OrderService:

    @staticmethod
    def load(order_id) -> Order:
        """
        Full aggregate (order + items + payment + address) in one consistent read.
        """
        try:
            return (
                Order.objects
                .select_related("payment", "shipping_address")
                .prefetch_related("items")
                .get(pk=_parse_order_id(order_id))
            )
        except Order.DoesNotExist:
            raise NotFound("Order not found.")

    @staticmethod
    def create_order(user, items, shipping_address=None, payment=None, policy: PricingPolicy = None) -> Order:
        """
        Secure Order Creation:
        1. Price items server-side and validate inputs (no writes yet)
        2. Reserve stock with conditional decrements (Atomic)
        3. Persist Order, item snapshots, optional address and payment (same Atomic unit)
        """
        require_user(user)

        # Step 1: Pre-Transaction Validation
        quote = PricingEngine.compute_totals(items, policy or PricingPolicy.from_settings())
        address_data = ShippingAddressService.clean(shipping_address) if shipping_address is not None else None
        payment_data = _clean_payment_intent(payment) if payment is not None else None

        # Step 2 + 3: one atomic unit, any failure rolls back every decrement
        with transaction.atomic():
            order_id = uuid.uuid4()
            StockLedger.reserve_items(quote.inventory_payload(), reference=str(order_id))

            order = OrderService._build_aggregate(order_id, user, quote, address_data, payment_data)

        logger.info(
            f"Order {order.id} created for user {user.pk}: {len(quote.lines)} line(s), total {quote.total}",
            extra={"order_id": order.id, "user_id": user.pk},
        )
        return OrderService.load(order.id)

    @staticmethod
    def _build_aggregate(order_id, user, quote: Quote, address_data=None, payment_data=None) -> Order:
        order = Order.objects.create(
            id=order_id,
            user=user,
            subtotal=quote.subtotal,
            tax=quote.tax,
            discount=quote.discount,
            shipping_fee=quote.shipping_fee,
            total=quote.total,
            status=Order.Status.PENDING,
        )

        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                product=line.product,
                product_name=line.product.name,
                product_image=line.product.image_url or "",
                unit_price=line.unit_price,
                quantity=line.quantity,
                subtotal=line.subtotal,
            ) for line in quote.lines
        ])

        if address_data is not None:
            ShippingAddress.objects.create(order=order, **address_data)

        if payment_data is not None:
            Payment.objects.create(
                order=order,
                amount=quote.total,
                provider=payment_data["provider"],
                transaction_id=payment_data["transaction_id"],
                status=PaymentStatus.PENDING,
            )

        OrderTimeline.objects.create(
            order=order,
            status=Order.Status.PENDING,
            note="Order placed.",
            created_by=user,
        )
        return order

    @staticmethod
    def cancel_order(user, order_id) -> Order:
        """
        Self-service cancellation: owner only, PENDING only.
        Restores every reserved unit to stock in the same atomic unit.
        """
        require_user(user)

        with transaction.atomic():
            order = get_order_or_404(order_id, for_update=True)

            if not is_owner(user, order):
                raise Forbidden("You can only cancel your own orders.")

            if not order.can_cancel:
                raise InvalidTransition("Order cannot be canceled at this stage.")

            # Guarded flip: a concurrent cancel that already won leaves 0 rows here
            flipped = (
                Order.objects
                .filter(pk=order.pk, status=Order.Status.PENDING)
                .update(status=Order.Status.CANCELED, updated_at=timezone.now())
            )
            if not flipped:
                raise InvalidTransition("Order cannot be canceled at this stage.")

            # Reserved units go back at most once per order, even if an
            # administrator reopened it after an earlier cancellation
            released = (
                Order.objects
                .filter(pk=order.pk, stock_released=False)
                .update(stock_released=True)
            )
            if released:
                StockLedger.release_items(
                    [{"product_id": i.product_id, "quantity": i.quantity} for i in order.items.all()],
                    reference=f"CANCEL-{order.pk}",
                )
                note = "Canceled by customer, stock restored."
            else:
                note = "Canceled by customer, stock was already restored."

            OrderTimeline.objects.create(
                order=order,
                status=Order.Status.CANCELED,
                note=note,
                created_by=user,
            )

        if not released:
            logger.warning(
                f"Order {order.pk} canceled again; stock had already been released",
                extra={"order_id": order.pk, "user_id": user.pk},
            )
        logger.info(f"Order {order.pk} canceled by owner", extra={"order_id": order.pk, "user_id": user.pk})
        return OrderService.load(order.pk)

    @staticmethod
    def set_status(user, order_id, status) -> Order:
        """
        Administrative override. Any declared status may be set from any other.

        Unlike cancel_order this runs NO stock side effects, including when
        the target is CANCELED.
        """
        require_admin(user)

        if status not in Order.Status.values:
            raise InvalidArgument("Invalid order status")

        with transaction.atomic():
            order = get_order_or_404(order_id, for_update=True)
            previous = order.status

            order.status = status
            order.save(update_fields=["status", "updated_at"])

            OrderTimeline.objects.create(
                order=order,
                status=status,
                note=f"Status set by administrator ({previous} -> {status}).",
                created_by=user,
            )

        if status == Order.Status.CANCELED and previous != Order.Status.CANCELED:
            logger.warning(
                f"Order {order.pk} moved to CANCELED by administrator; reserved stock was not restored.",
                extra={"order_id": order.pk, "user_id": user.pk},
            )
        else:
            logger.info(f"Order {order.pk} status {previous} -> {status} by administrator {user.pk}")

        return OrderService.load(order.pk)

    @staticmethod
    def get_order(user, order_id) -> Order:
        require_user(user)
        order = OrderService.load(order_id)
        require_owner_or_admin(user, order)
        return order

    @staticmethod
    def list_for_user(user):
        require_user(user)
        return (
            Order.objects
            .filter(user=user)
            .select_related("payment", "shipping_address")
            .prefetch_related("items")
        )

    @staticmethod
    def list_all(user):
        """
        Every order, for administrators. Callers narrow it with OrderFilter.
        """
        require_admin(user)
        return (
            Order.objects
            .select_related("user", "payment", "shipping_address")
            .prefetch_related("items")
        )


def _clean_payment_intent(data) -> dict:
    if not isinstance(data, dict):
        raise InvalidArgument("Payment details must be an object.")
    provider = (data.get("provider") or data.get("method") or "").strip() or "UNKNOWN"
    return {
        "provider": provider,
        "transaction_id": data.get("transaction_id") or None,
    }


class ShippingAddressService:
    """
    One delivery address per order. Non-owners see NotFound, not Forbidden,
    so order ids cannot be probed.
    """

    @staticmethod
    def clean(data) -> dict:
        if not isinstance(data, dict):
            raise InvalidArgument("Shipping address must be an object.")
        cleaned = {}
        for f in ShippingAddress.REQUIRED_FIELDS:
            value = data.get(f)
            if value is None or not str(value).strip():
                raise InvalidArgument(f"Missing field: {f}")
            cleaned[f] = str(value).strip()
        return cleaned

    @staticmethod
    def _order_visible_to(user, order_id, allow_admin: bool) -> Order:
        order = get_order_or_404(order_id, for_update=True)
        if is_owner(user, order) or (allow_admin and is_admin(user)):
            return order
        raise NotFound("Order not found.")

    @staticmethod
    def create(user, order_id, data) -> ShippingAddress:
        require_user(user)
        cleaned = ShippingAddressService.clean(data)

        with transaction.atomic():
            order = ShippingAddressService._order_visible_to(user, order_id, allow_admin=False)

            if ShippingAddress.objects.filter(order=order).exists():
                raise AlreadyExists("Shipping address already exists for this order.")
            try:
                with transaction.atomic():
                    address = ShippingAddress.objects.create(order=order, **cleaned)
            except IntegrityError:
                raise AlreadyExists("Shipping address already exists for this order.")

        logger.info(f"Shipping address added to order {order.pk}", extra={"order_id": order.pk})
        return address

    @staticmethod
    def update(user, order_id, data) -> ShippingAddress:
        require_user(user)
        cleaned = ShippingAddressService.clean(data)

        with transaction.atomic():
            order = ShippingAddressService._order_visible_to(user, order_id, allow_admin=True)
            address = ShippingAddressService._address_of(order)
            for key, value in cleaned.items():
                setattr(address, key, value)
            address.save(update_fields=[*cleaned.keys(), "updated_at"])
        return address

    @staticmethod
    def get(user, order_id) -> ShippingAddress:
        require_user(user)
        order = get_order_or_404(order_id)
        if not (is_owner(user, order) or is_admin(user)):
            raise NotFound("Order not found.")
        return ShippingAddressService._address_of(order)

    @staticmethod
    def delete(user, order_id) -> None:
        require_user(user)
        with transaction.atomic():
            order = ShippingAddressService._order_visible_to(user, order_id, allow_admin=False)
            ShippingAddressService._address_of(order).delete()
        logger.info(f"Shipping address removed from order {order.pk}", extra={"order_id": order.pk})

    @staticmethod
    def _address_of(order) -> ShippingAddress:
        try:
            return ShippingAddress.objects.get(order=order)
        except ShippingAddress.DoesNotExist:
            raise NotFound("Shipping address not found for this order.")
