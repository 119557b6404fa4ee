from __future__ import annotations

from django.contrib import admin

from .models import Notification, NotificationDelivery


class NotificationDeliveryInline(admin.TabularInline):
    model = NotificationDelivery
    extra = 0
    readonly_fields = ("channel", "enabled", "delivered", "delivered_at", "attempts", "last_attempt", "error_message")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("title", "recipient", "type", "priority", "status", "is_read", "scheduled_for", "created_at")
    search_fields = ("title", "recipient__email")
    list_filter = ("status", "type", "priority", "is_deleted")
    inlines = [NotificationDeliveryInline]

    def get_queryset(self, request):
        return Notification.all_objects.select_related("recipient")
