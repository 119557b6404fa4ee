from __future__ import annotations

import logging
from typing import Iterable, Optional

from django.contrib import admin, messages
from django.db.models import QuerySet

from .models import CoreIdentity, SysAuditLog

logger = logging.getLogger(__name__)


@admin.register(CoreIdentity)
class CoreIdentityAdmin(admin.ModelAdmin):
    list_display = ("email", "phone", "first_name", "last_name", "role", "wilaya", "is_active")
    search_fields = ("email", "phone", "first_name", "last_name")
    list_filter = ("is_active", "role", "wilaya")
    actions = ["deactivate_identities"]

    def audit_log_preview(self, obj: CoreIdentity) -> str:
        return "Audit logs disponibles via django-auditlog."

    audit_log_preview.short_description = "Audit logs"  # type: ignore[attr-defined]

    def get_readonly_fields(
        self, request, obj: Optional[CoreIdentity] = None
    ) -> Iterable[str]:
        return ["audit_log_preview", "created_at", "updated_at"]

    def deactivate_identities(self, request, queryset: QuerySet[CoreIdentity]) -> None:
        count = queryset.update(is_active=False)
        logger.warning("Désactivation de %s identité(s) depuis l'admin", count)
        self.message_user(
            request,
            f"{count} identité(s) désactivée(s).",
            level=messages.WARNING,
        )

    deactivate_identities.short_description = "Désactiver les identités sélectionnées"


@admin.register(SysAuditLog)
class SysAuditLogAdmin(admin.ModelAdmin):
    list_display = ("action", "entity_type", "entity_id", "actor_email", "active_role", "created_at")
    search_fields = ("action", "entity_type", "actor_email")
    list_filter = ("action", "entity_type", "active_role")
    readonly_fields = (
        "action",
        "entity_type",
        "entity_id",
        "actor_email",
        "active_role",
        "ip_address",
        "user_agent",
        "payload",
        "created_at",
    )
