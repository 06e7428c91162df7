from django.urls import path
from .views import OrderPaymentView, PaymentRefundView, PaymentStatusWebhookView

urlpatterns = [
    path('orders/<uuid:order_id>/payment/', OrderPaymentView.as_view(), name='order-payment'),
    path('orders/<uuid:order_id>/payment/status/', PaymentStatusWebhookView.as_view(), name='payment-status-webhook'),
    path('orders/<uuid:order_id>/payment/refund/', PaymentRefundView.as_view(), name='payment-refund'),
]
