from __future__ import annotations

from django.contrib import admin

from .models import Allocation, BudgetPool, PoolTransfer


class AllocationInline(admin.TabularInline):
    model = Allocation
    extra = 0
    can_delete = False
    readonly_fields = ("demande", "amount", "status", "allocated_by", "notes", "created_at")


@admin.register(BudgetPool)
class BudgetPoolAdmin(admin.ModelAdmin):
    list_display = ("reference", "name", "department", "fiscal_year", "montant", "remaining", "status")
    search_fields = ("reference", "name", "department")
    list_filter = ("status", "fiscal_year", "department")
    inlines = [AllocationInline]
    readonly_fields = ("reference", "remaining", "version", "created_by", "created_at", "updated_at")


@admin.register(PoolTransfer)
class PoolTransferAdmin(admin.ModelAdmin):
    list_display = ("source", "destination", "amount", "transferred_by", "created_at")
    readonly_fields = ("source", "destination", "amount", "reason", "transferred_by", "created_at")

    def has_add_permission(self, request) -> bool:
        return False
