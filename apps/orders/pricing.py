"""
Server-side pricing for orders.

Prices always come from the catalog row, never from the client. Money is
`decimal.Decimal` end to end; tax is the only derived value that needs
rounding and it is quantized to cents before the total is summed, so
`total == subtotal + tax + shipping_fee - discount` holds exactly.
"""
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import List

from django.conf import settings

from apps.catalog.models import Product
from apps.utils.exceptions import InvalidArgument, InvalidState, InsufficientStock, NotFound

CENTS = Decimal("0.01")
# Largest amount the DecimalField(max_digits=12, decimal_places=2) money columns hold
MAX_AMOUNT = Decimal("9999999999.99")


def to_money(value) -> Decimal:
    """
    Coerce a policy value to Decimal. Floats are refused outright.
    """
    if isinstance(value, (float, bool)):
        raise InvalidArgument(f"Money values must be exact decimals, got {value!r}.")
    try:
        amount = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except ArithmeticError:
        raise InvalidArgument(f"Not a decimal amount: {value!r}.")
    if not amount.is_finite():
        raise InvalidArgument(f"Not a finite amount: {value!r}.")
    return amount


@dataclass(frozen=True)
class PricingPolicy:
    tax_rate: Decimal = Decimal("0.15")
    shipping_fee: Decimal = Decimal("0.00")
    discount: Decimal = Decimal("0.00")

    def __post_init__(self):
        for name in ("tax_rate", "shipping_fee", "discount"):
            value = to_money(getattr(self, name))
            if value < 0:
                raise InvalidArgument(f"Pricing policy {name} cannot be negative.")
            object.__setattr__(self, name, value)

    @classmethod
    def from_settings(cls) -> "PricingPolicy":
        return cls(
            tax_rate=getattr(settings, "ORDER_TAX_RATE", Decimal("0.15")),
            shipping_fee=getattr(settings, "ORDER_SHIPPING_FEE", Decimal("0.00")),
            discount=getattr(settings, "ORDER_DISCOUNT", Decimal("0.00")),
        )


@dataclass(frozen=True)
class LineSnapshot:
    product: Product
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


@dataclass(frozen=True)
class Quote:
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    shipping_fee: Decimal
    total: Decimal
    lines: List[LineSnapshot] = field(default_factory=list)

    def inventory_payload(self):
        return [{"product_id": line.product.pk, "quantity": line.quantity} for line in self.lines]


def parse_quantity(value) -> int:
    # bool is an int subclass; floats/strings/Decimals are not accepted here
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f"Invalid quantity: {value!r}. Quantity must be a positive integer.")
    if value <= 0:
        raise InvalidArgument(f"Invalid quantity: {value}. Quantity must be a positive integer.")
    return value


def parse_product_id(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise InvalidArgument(f"Invalid product id: {value!r}.")


class PricingEngine:

    @staticmethod
    def compute_totals(items, policy: PricingPolicy = None) -> Quote:
        """
        Price `items` ([{"product_id", "quantity"}, ...]) against a single
        batched read of the catalog. Pure: nothing is written or reserved.
        """
        policy = policy or PricingPolicy.from_settings()

        if not isinstance(items, (list, tuple)) or not items:
            raise InvalidArgument("Order must contain at least one item.")

        requested = []
        for item in items:
            if not isinstance(item, dict):
                raise InvalidArgument(f"Invalid order item: {item!r}.")
            requested.append((parse_product_id(item.get("product_id")), parse_quantity(item.get("quantity"))))

        products = Product.objects.in_bulk([pid for pid, _ in requested])

        # Same product on several lines draws from one stock counter
        demand = OrderedDict()
        lines = []
        subtotal = Decimal("0.00")

        for pid, qty in requested:
            product = products.get(pid)
            if product is None:
                raise NotFound(f"Product not found: {pid}")
            if not product.is_active:
                raise InvalidState(f"Product inactive: {product.name} ({pid})")

            demand[pid] = demand.get(pid, 0) + qty

            unit_price = product.price
            line_total = unit_price * qty
            subtotal += line_total
            lines.append(LineSnapshot(
                product=product,
                quantity=qty,
                unit_price=unit_price,
                subtotal=line_total,
            ))

        for pid, qty in demand.items():
            product = products[pid]
            if qty > product.stock:
                raise InsufficientStock(product.name, available=product.stock, requested=qty)

        tax = (subtotal * policy.tax_rate).quantize(CENTS, rounding=ROUND_HALF_UP)
        shipping_fee = policy.shipping_fee.quantize(CENTS, rounding=ROUND_HALF_UP)
        discount = policy.discount.quantize(CENTS, rounding=ROUND_HALF_UP)

        total = subtotal + tax + shipping_fee - discount
        if total < 0:
            raise InvalidArgument("Discount cannot exceed the order value.")
        if max(subtotal, tax, total) > MAX_AMOUNT:
            raise InvalidArgument(f"Order value exceeds the maximum supported amount of {MAX_AMOUNT}.")

        return Quote(
            subtotal=subtotal,
            tax=tax,
            discount=discount,
            shipping_fee=shipping_fee,
            total=total,
            lines=lines,
        )
