from django.contrib import admin
from .models import Payment


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('order', 'amount', 'provider', 'transaction_id', 'status', 'created_at')
    list_filter = ('status', 'provider', 'created_at')
    search_fields = ('transaction_id', 'order__id')
    readonly_fields = ('order', 'amount', 'created_at', 'updated_at')
