from __future__ import annotations

from django.contrib import admin

from .models import Demande, DemandeDocument, DemandeStatusHistory


class DemandeDocumentInline(admin.TabularInline):
    model = DemandeDocument
    extra = 0
    readonly_fields = ("file", "original_name", "content_type", "size", "uploaded_by", "uploaded_at")


class DemandeStatusHistoryInline(admin.TabularInline):
    model = DemandeStatusHistory
    extra = 0
    can_delete = False
    readonly_fields = ("from_status", "to_status", "changed_by", "motif", "created_at")


@admin.register(Demande)
class DemandeAdmin(admin.ModelAdmin):
    list_display = ("reference", "user", "category", "montant", "approved_amount", "paid_amount", "status", "created_at")
    search_fields = ("reference", "user__email", "user__last_name", "description")
    list_filter = ("status", "category")
    inlines = [DemandeDocumentInline, DemandeStatusHistoryInline]
    # Le statut n'évolue que par le workflow.
    readonly_fields = (
        "reference",
        "status",
        "approved_amount",
        "paid_amount",
        "payment",
        "submitted_at",
        "reviewed_at",
        "reviewed_by",
        "created_at",
        "updated_at",
    )
