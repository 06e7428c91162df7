from django.db import models
from apps.catalog.models import Product
from apps.utils.models import TimestampedModel


class StockMovement(TimestampedModel):
    """
    Immutable ledger of every stock change made by StockLedger.
    """
    class MovementType(models.TextChoices):
        RESERVATION = "RESERVE", "Reservation (Order)"
        RELEASE = "RELEASE", "Release (Cancellation)"

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='stock_movements'
    )

    quantity_change = models.IntegerField(help_text="Delta value (+/-)")
    movement_type = models.CharField(max_length=20, choices=MovementType.choices)

    # Traceability
    reference = models.CharField(max_length=100, db_index=True, help_text="Order ID")
    balance_after = models.IntegerField(help_text="Snapshot of stock after the change")

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.movement_type} {self.quantity_change:+d} | {self.product_id} | {self.reference}"
