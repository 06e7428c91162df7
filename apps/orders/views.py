from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from apps.utils.exceptions import InvalidArgument
from .filters import OrderFilter
from .serializers import (
    CreateOrderSerializer, OrderSerializer, OrderStatusSerializer, ShippingAddressSerializer,
)
from .services import OrderService, ShippingAddressService


class OrderViewSet(viewsets.ViewSet):
    """
    HTTP wrapper over OrderService. Business rules live in the service;
    errors surface through apps.utils.exceptions.custom_exception_handler.
    """
    permission_classes = [IsAuthenticated]

    def list(self, request):
        orders = OrderService.list_for_user(request.user)
        return Response(OrderSerializer(orders, many=True).data)

    def create(self, request):
        """
        Checkout Endpoint.
        Expects: {"items": [{"product_id": "...", "quantity": 2}],
                  "shipping_address": {...}, "payment": {"provider": "..."}}
        """
        serializer = CreateOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = OrderService.create_order(
            user=request.user,
            items=[dict(item) for item in data['items']],
            shipping_address=data.get('shipping_address'),
            payment=dict(data['payment']) if 'payment' in data else None,
        )
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        order = OrderService.get_order(request.user, pk)
        return Response(OrderSerializer(order).data)

    @action(detail=False, methods=['get'], url_path='all')
    def all_orders(self, request):
        filterset = OrderFilter(request.query_params, queryset=OrderService.list_all(request.user))
        if not filterset.is_valid():
            raise InvalidArgument("Invalid order filter", code="invalid_filter")
        return Response(OrderSerializer(filterset.qs, many=True).data)

    @action(detail=True, methods=['patch'])
    def cancel(self, request, pk=None):
        order = OrderService.cancel_order(request.user, pk)
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=['patch'], url_path='status')
    def set_status(self, request, pk=None):
        serializer = OrderStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = OrderService.set_status(request.user, pk, serializer.validated_data['status'])
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=['get', 'post', 'patch', 'delete'])
    def address(self, request, pk=None):
        if request.method == 'GET':
            address = ShippingAddressService.get(request.user, pk)
            return Response(ShippingAddressSerializer(address).data)

        if request.method == 'DELETE':
            ShippingAddressService.delete(request.user, pk)
            return Response({"status": "deleted"}, status=status.HTTP_200_OK)

        if request.method == 'POST':
            address = ShippingAddressService.create(request.user, pk, request.data)
            return Response(ShippingAddressSerializer(address).data, status=status.HTTP_201_CREATED)

        address = ShippingAddressService.update(request.user, pk, request.data)
        return Response(ShippingAddressSerializer(address).data)
