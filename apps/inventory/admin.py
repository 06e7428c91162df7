from django.contrib import admin
from .models import StockMovement


@admin.register(StockMovement)
class StockMovementAdmin(admin.ModelAdmin):
    list_display = ('product', 'movement_type', 'quantity_change', 'balance_after', 'reference', 'created_at')
    list_filter = ('movement_type', 'created_at')
    search_fields = ('reference', 'product__name')
    readonly_fields = ('product', 'movement_type', 'quantity_change', 'balance_after', 'reference', 'created_at')

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
