# apps/catalog/admin.py
from django.contrib import admin
from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("name", "price", "stock", "is_active", "updated_at")
    list_filter = ("is_active",)
    search_fields = ("name",)
    # Stock moves only through the ledger
    readonly_fields = ("stock", "created_at", "updated_at")
