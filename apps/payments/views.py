import logging
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, AllowAny
from rest_framework import status

from .serializers import CreatePaymentSerializer, PaymentSerializer, PaymentStatusUpdateSerializer
from .services import PaymentService

logger = logging.getLogger(__name__)


class OrderPaymentView(APIView):
    """
    POST: attach the payment to an order (owner or admin, once).
    GET:  read it back (owner or admin).
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, order_id):
        payment = PaymentService.get_for_order(request.user, order_id)
        return Response(PaymentSerializer(payment).data)

    def post(self, request, order_id):
        serializer = CreatePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        payment = PaymentService.create_payment(
            request.user,
            order_id,
            provider=data.get('provider') or data.get('method'),
            transaction_id=data.get('transaction_id'),
        )
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)


class PaymentRefundView(APIView):
    permission_classes = [IsAuthenticated]

    def patch(self, request, order_id):
        payment = PaymentService.refund(request.user, order_id)
        return Response(PaymentSerializer(payment).data)


class PaymentStatusWebhookView(APIView):
    """
    Gateway callback. No user session: the caller proves itself with an
    HMAC-SHA256 signature of the raw body.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def patch(self, request, order_id):
        # Must use raw request body for verification
        signature = request.headers.get('X-Razorpay-Signature')
        try:
            body = request.body.decode('utf-8')
        except UnicodeDecodeError:
            body = None

        if body is None or not PaymentService.verify_webhook_signature(body, signature):
            logger.warning(f"Payment webhook for order {order_id} rejected: missing or invalid signature")
            return Response({"error": "Invalid signature", "code": "forbidden"}, status=status.HTTP_403_FORBIDDEN)

        serializer = PaymentStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        payment = PaymentService.update_status(
            order_id,
            serializer.validated_data['status'],
            transaction_id=serializer.validated_data.get('transaction_id'),
        )
        return Response(PaymentSerializer(payment).data)
