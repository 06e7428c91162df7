from rest_framework import serializers
from .models import Payment


class CreatePaymentSerializer(serializers.Serializer):
    provider = serializers.CharField(required=False, allow_blank=True)
    method = serializers.CharField(required=False, allow_blank=True)
    transaction_id = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class PaymentStatusUpdateSerializer(serializers.Serializer):
    # Membership in PaymentStatus is checked by the service
    status = serializers.CharField()
    transaction_id = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class PaymentSerializer(serializers.ModelSerializer):
    status_display = serializers.CharField(source='get_status_display', read_only=True)

    class Meta:
        model = Payment
        fields = ['id', 'order_id', 'amount', 'provider', 'transaction_id', 'status', 'status_display', 'created_at', 'updated_at']
