from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Dict

from auditlog.registry import auditlog
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from identity.models import CoreIdentity

DEFAULT_ALERT_THRESHOLDS: Dict[str, Any] = {
    "low_balance_warning": 20,
    "critical_balance_alert": 5,
    "expiration_warning": 30,
}


def default_alert_thresholds() -> Dict[str, Any]:
    return dict(DEFAULT_ALERT_THRESHOLDS)


def validate_allocation_rules(value: Any) -> None:
    """Valide la structure JSON des règles d'allocation."""
    if value in (None, {}):
        return
    if not isinstance(value, dict):
        raise ValidationError("allocation_rules doit être un objet JSON.")
    unknown = set(value) - {"max_amount_per_request", "allowed_categories", "eligibility_threshold"}
    if unknown:
        raise ValidationError(f"Règles inconnues: {', '.join(sorted(unknown))}")
    max_amount = value.get("max_amount_per_request")
    if max_amount is not None:
        try:
            if Decimal(str(max_amount)) <= 0:
                raise ValidationError("max_amount_per_request doit être positif.")
        except ArithmeticError as exc:
            raise ValidationError("max_amount_per_request doit être numérique.") from exc
    categories = value.get("allowed_categories")
    if categories is not None and not isinstance(categories, list):
        raise ValidationError("allowed_categories doit être une liste.")
    threshold = value.get("eligibility_threshold")
    if threshold is not None and not (isinstance(threshold, (int, float)) and 0 <= threshold <= 100):
        raise ValidationError("eligibility_threshold doit être compris entre 0 et 100.")


class BudgetPool(models.Model):
    """BUDGET_POOL - Enveloppe budgétaire d'aide sociale."""

    class Status(models.TextChoices):
        DRAFT = "draft", "Brouillon"
        ACTIVE = "active", "Active"
        FROZEN = "frozen", "Gelée"
        DEPLETED = "depleted", "Épuisée"
        EXPIRED = "expired", "Expirée"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    reference = models.CharField(max_length=32, unique=True, editable=False)
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    department = models.CharField(max_length=100, blank=True)
    fiscal_year = models.PositiveIntegerField()
    montant = models.DecimalField(
        max_digits=14, decimal_places=2, validators=[MinValueValidator(Decimal("0"))]
    )
    remaining = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.DRAFT)
    start_date = models.DateField(default=timezone.localdate)
    end_date = models.DateField(null=True, blank=True)
    allocation_rules = models.JSONField(default=dict, blank=True, validators=[validate_allocation_rules])
    alert_thresholds = models.JSONField(default=default_alert_thresholds, blank=True)
    managed_by = models.ForeignKey(
        CoreIdentity, on_delete=models.SET_NULL, null=True, blank=True, related_name="managed_pools"
    )
    created_by = models.ForeignKey(
        CoreIdentity, on_delete=models.SET_NULL, null=True, blank=True, related_name="created_pools"
    )
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "BUDGET_POOL"
        ordering = ("-fiscal_year", "name")
        constraints = [
            models.UniqueConstraint(
                fields=["name", "fiscal_year", "department"], name="budget_pool_unique_name_year_department"
            ),
            models.CheckConstraint(check=models.Q(montant__gte=0), name="budget_pool_montant_non_negative"),
            models.CheckConstraint(
                check=models.Q(remaining__gte=0) & models.Q(remaining__lte=models.F("montant")),
                name="budget_pool_remaining_within_montant",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.fiscal_year})"

    def save(self, *args, **kwargs):
        if self.remaining is None:
            self.remaining = self.montant
        super().save(*args, **kwargs)

    def clean(self) -> None:
        remaining = self.montant if self.remaining is None else self.remaining
        if remaining is not None and self.montant is not None:
            if remaining < 0 or remaining > self.montant:
                raise ValidationError({"remaining": "Le solde doit être compris entre 0 et le montant total."})
        if self.end_date and self.start_date and self.end_date < self.start_date:
            raise ValidationError({"end_date": "La date de fin précède la date de début."})

    @property
    def allocated_total(self) -> Decimal:
        return self.montant - (self.remaining or Decimal("0"))

    @property
    def utilization_rate(self) -> Decimal:
        if not self.montant:
            return Decimal("0")
        return (self.allocated_total / self.montant).quantize(Decimal("0.0001"))


class Allocation(models.Model):
    """Réservation d'une partie d'une enveloppe pour une demande."""

    class Status(models.TextChoices):
        RESERVED = "reserved", "Réservée"
        PAID = "paid", "Payée"
        CANCELLED = "cancelled", "Annulée"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    pool = models.ForeignKey(BudgetPool, on_delete=models.PROTECT, related_name="allocations")
    demande = models.ForeignKey("demandes.Demande", on_delete=models.PROTECT, related_name="allocations")
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.RESERVED)
    allocated_by = models.ForeignKey(
        CoreIdentity, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "BUDGET_ALLOCATION"
        ordering = ("-created_at",)
        constraints = [
            models.CheckConstraint(check=models.Q(amount__gt=0), name="allocation_amount_positive"),
        ]

    def __str__(self) -> str:
        return f"{self.pool_id} -> {self.demande_id}: {self.amount}"


class PoolTransfer(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    source = models.ForeignKey(BudgetPool, on_delete=models.PROTECT, related_name="outgoing_transfers")
    destination = models.ForeignKey(BudgetPool, on_delete=models.PROTECT, related_name="incoming_transfers")
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    reason = models.TextField(blank=True)
    transferred_by = models.ForeignKey(
        CoreIdentity, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "BUDGET_POOL_TRANSFER"
        ordering = ("-created_at",)
        constraints = [
            models.CheckConstraint(check=models.Q(amount__gt=0), name="pool_transfer_amount_positive"),
        ]

    def __str__(self) -> str:
        return f"{self.source_id} -> {self.destination_id}: {self.amount}"


auditlog.register(BudgetPool)
auditlog.register(Allocation)
auditlog.register(PoolTransfer)
