from django.db import models
from apps.orders.models import Order
from apps.utils.models import TimestampedModel


class PaymentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    PAID = "PAID", "Paid"
    FAILED = "FAILED", "Failed"
    REFUNDED = "REFUNDED", "Refunded"


class Payment(TimestampedModel):
    """
    The single payment attached to an order.
    Status is driven by the gateway callback; refunds by an administrator.
    """
    order = models.OneToOneField(Order, on_delete=models.CASCADE, related_name="payment")

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    provider = models.CharField(max_length=50, default="UNKNOWN")

    # The actual transaction ID from provider (e.g., 'pay_2983...')
    transaction_id = models.CharField(max_length=100, blank=True, null=True)

    status = models.CharField(max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)

    class Meta:
        db_table = "payments"
        indexes = [
            models.Index(fields=['transaction_id', 'status'], name='payment_txn_status_idx'),
        ]

    def __str__(self):
        return f"{self.order_id} | {self.amount} | {self.status}"
