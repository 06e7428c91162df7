from django.db import models

from apps.utils.models import TimestampedModel
from .order import Order

__all__ = ["ShippingAddress"]


class ShippingAddress(TimestampedModel):
    """
    Delivery address for exactly one order.
    """
    REQUIRED_FIELDS = ("full_name", "phone", "address", "city", "postal_code", "country")

    order = models.OneToOneField(Order, on_delete=models.CASCADE, related_name='shipping_address')

    full_name = models.CharField(max_length=255)
    phone = models.CharField(max_length=32)
    address = models.TextField()
    city = models.CharField(max_length=100)
    postal_code = models.CharField(max_length=20)
    country = models.CharField(max_length=100)

    class Meta:
        db_table = "shipping_addresses"

    def __str__(self):
        return f"{self.full_name}, {self.city} ({self.order_id})"
