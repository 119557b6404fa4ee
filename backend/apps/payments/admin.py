from __future__ import annotations

from django.contrib import admin

from .models import Payment


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("reference", "amount", "payment_method", "status", "retry_count", "destination_id", "created_at")
    search_fields = ("reference", "transaction_id")
    list_filter = ("status", "payment_method")
    readonly_fields = tuple(
        field.name for field in Payment._meta.concrete_fields if field.name not in Payment.AUDIT_FIELDS
    ) + ("updated_at",)

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
