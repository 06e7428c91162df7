from django.contrib import admin
from .models import Order, OrderItem, OrderTimeline, ShippingAddress


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ('product', 'product_name', 'unit_price', 'quantity', 'subtotal')

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class OrderTimelineInline(admin.TabularInline):
    model = OrderTimeline
    extra = 0
    readonly_fields = ('timestamp', 'status', 'note', 'created_by')

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class ShippingAddressInline(admin.StackedInline):
    model = ShippingAddress
    extra = 0
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Read-mostly view of the order aggregate.
    Status edits made here are not recorded in the timeline.
    """
    list_display = ('id', 'user', 'status', 'total', 'created_at')
    list_filter = ('status', 'created_at')
    search_fields = ('id', 'user__username', 'user__email')

    inlines = [OrderItemInline, ShippingAddressInline, OrderTimelineInline]

    # Money is fixed at placement
    readonly_fields = (
        'id',
        'user',
        'subtotal',
        'tax',
        'discount',
        'shipping_fee',
        'total',
        'stock_released',
        'created_at',
        'updated_at',
    )

    fieldsets = (
        ('Order Details', {
            'fields': ('id', 'user', 'status')
        }),
        ('Financials', {
            'fields': ('subtotal', 'tax', 'shipping_fee', 'discount', 'total')
        }),
        ('System Data', {
            'fields': ('stock_released', 'created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    def has_add_permission(self, request):
        return False


@admin.register(OrderItem)
class OrderItemAdmin(admin.ModelAdmin):
    list_display = ('order', 'product_name', 'quantity', 'unit_price', 'subtotal')
    search_fields = ('order__id', 'product_name')
