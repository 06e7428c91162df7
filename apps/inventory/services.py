import logging
from typing import List, Dict
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.catalog.models import Product
from apps.utils.exceptions import Conflict, InvalidArgument, NotFound

from .models import StockMovement

logger = logging.getLogger(__name__)


class StockLedger:
    """
    Core Logic for Inventory Management.
    ALL product stock changes must pass through here.

    reserve() is a conditional decrement evaluated by the database in a
    single UPDATE, so two requests racing for the last units can never
    drive stock below zero. release() is the compensating increment used
    by order cancellation only.
    """

    @staticmethod
    def _check_quantity(quantity):
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidArgument(f"Quantity must be a positive integer, got {quantity!r}.")

    @staticmethod
    def _sorted(items: List[Dict]) -> List[Dict]:
        # Deterministic row order keeps concurrent multi-line orders from deadlocking
        return sorted(items, key=lambda x: str(x["product_id"]))

    @staticmethod
    def _log(product_id, delta: int, movement_type: str, reference: str) -> StockMovement:
        balance = Product.objects.values_list("stock", flat=True).get(pk=product_id)
        return StockMovement.objects.create(
            product_id=product_id,
            quantity_change=delta,
            movement_type=movement_type,
            reference=str(reference),
            balance_after=balance,
        )

    @staticmethod
    @transaction.atomic
    def reserve(product_id, quantity: int, reference: str) -> StockMovement:
        """
        Decrement stock by `quantity` only if at least that much is left.
        Raises Conflict when another writer got there first.
        """
        StockLedger._check_quantity(quantity)

        updated = (
            Product.objects
            .filter(pk=product_id, stock__gte=quantity)
            .update(stock=F("stock") - quantity, updated_at=timezone.now())
        )
        if not updated:
            if not Product.objects.filter(pk=product_id).exists():
                raise NotFound(f"Product not found: {product_id}")
            logger.warning(
                f"Stock reservation lost race for product {product_id} (qty {quantity}, ref {reference})",
                extra={"product_id": product_id, "order_id": reference},
            )
            raise Conflict(
                f"Stock for product {product_id} changed while placing the order. Please retry."
            )

        return StockLedger._log(
            product_id, -quantity, StockMovement.MovementType.RESERVATION, reference
        )

    @staticmethod
    @transaction.atomic
    def release(product_id, quantity: int, reference: str) -> StockMovement:
        """
        Unconditional increment. Only the cancellation path calls this, and
        cancellation itself fires at most once per order.
        """
        StockLedger._check_quantity(quantity)

        updated = (
            Product.objects
            .filter(pk=product_id)
            .update(stock=F("stock") + quantity, updated_at=timezone.now())
        )
        if not updated:
            raise NotFound(f"Product not found: {product_id}")

        return StockLedger._log(
            product_id, quantity, StockMovement.MovementType.RELEASE, reference
        )

    @staticmethod
    @transaction.atomic
    def reserve_items(items: List[Dict], reference: str) -> List[StockMovement]:
        """
        All-or-nothing reservation for a whole order.
        items: [{"product_id": ..., "quantity": int}, ...]
        """
        return [
            StockLedger.reserve(item["product_id"], item["quantity"], reference)
            for item in StockLedger._sorted(items)
        ]

    @staticmethod
    @transaction.atomic
    def release_items(items: List[Dict], reference: str) -> List[StockMovement]:
        return [
            StockLedger.release(item["product_id"], item["quantity"], reference)
            for item in StockLedger._sorted(items)
        ]
