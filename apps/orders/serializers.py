from rest_framework import serializers
from apps.payments.serializers import PaymentSerializer
from .models import Order, OrderItem, ShippingAddress


class OrderLineInputSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    # Positivity is a domain rule, enforced by the pricing engine
    quantity = serializers.IntegerField()


class ShippingAddressSerializer(serializers.ModelSerializer):
    class Meta:
        model = ShippingAddress
        fields = ['id', 'full_name', 'phone', 'address', 'city', 'postal_code', 'country', 'created_at', 'updated_at']
        read_only_fields = ['id', 'created_at', 'updated_at']


class PaymentIntentInputSerializer(serializers.Serializer):
    provider = serializers.CharField(required=False, allow_blank=True)
    method = serializers.CharField(required=False, allow_blank=True)
    transaction_id = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class CreateOrderSerializer(serializers.Serializer):
    items = OrderLineInputSerializer(many=True, allow_empty=True)
    shipping_address = serializers.DictField(required=False)
    payment = PaymentIntentInputSerializer(required=False)


class OrderStatusSerializer(serializers.Serializer):
    status = serializers.CharField()


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = ['id', 'product_id', 'product_name', 'product_image', 'quantity', 'unit_price', 'subtotal']


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    payment = serializers.SerializerMethodField()
    shipping_address = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'user_id', 'status', 'status_display',
            'subtotal', 'tax', 'discount', 'shipping_fee', 'total',
            'items', 'payment', 'shipping_address', 'created_at', 'updated_at',
        ]

    def get_payment(self, obj):
        payment = getattr(obj, 'payment', None)
        return PaymentSerializer(payment).data if payment else None

    def get_shipping_address(self, obj):
        address = getattr(obj, 'shipping_address', None)
        return ShippingAddressSerializer(address).data if address else None
