from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal

from auditlog.registry import auditlog
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models

from identity.models import CoreIdentity


class PartyType(models.TextChoices):
    USER = "User", "Bénéficiaire"
    BUDGET_POOL = "BudgetPool", "Enveloppe budgétaire"


@dataclass(frozen=True)
class PartyRef:
    """Référence typée vers l'émetteur ou le destinataire d'un paiement."""

    type: str
    id: uuid.UUID

    def __post_init__(self) -> None:
        if self.type not in PartyType.values:
            raise ValueError(f"Type de partie inconnu: {self.type}")

    def resolve(self):
        if self.type == PartyType.BUDGET_POOL:
            from apps.budget.models import BudgetPool

            return BudgetPool.objects.filter(pk=self.id).first()
        return CoreIdentity.objects.filter(pk=self.id).first()


def _default_max_retries() -> int:
    return int(getattr(settings, "PAYMENT_MAX_RETRIES", 3))


class CompletedPaymentError(ValidationError):
    pass


class Payment(models.Model):
    """PAYMENT - Versement d'une aide depuis une enveloppe vers un bénéficiaire."""

    class Status(models.TextChoices):
        PENDING = "pending", "En attente"
        SCHEDULED = "scheduled", "Planifié"
        PROCESSING = "processing", "En cours"
        COMPLETED = "completed", "Effectué"
        FAILED = "failed", "Échoué"
        CANCELLED = "cancelled", "Annulé"

    class Method(models.TextChoices):
        BANK_TRANSFER = "bank_transfer", "Virement bancaire"
        CHECK = "check", "Chèque"
        CASH = "cash", "Espèces"
        MOBILE_PAYMENT = "mobile_payment", "Paiement mobile"
        CARD = "card", "Carte"
        OTHER = "other", "Autre"

    # Champs modifiables après complétion (traçabilité uniquement).
    AUDIT_FIELDS = frozenset({"internal_notes", "updated_at"})

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    reference = models.CharField(max_length=32, unique=True, editable=False)
    payment_method = models.CharField(max_length=16, choices=Method.choices, default=Method.BANK_TRANSFER)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    source_type = models.CharField(max_length=16, choices=PartyType.choices)
    source_id = models.UUIDField()
    destination_type = models.CharField(max_length=16, choices=PartyType.choices)
    destination_id = models.UUIDField()
    demande = models.ForeignKey(
        "demandes.Demande", on_delete=models.PROTECT, null=True, blank=True, related_name="payments"
    )
    allocation = models.ForeignKey(
        "budget.Allocation", on_delete=models.PROTECT, null=True, blank=True, related_name="payments"
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    scheduled_date = models.DateTimeField(null=True, blank=True)
    retry_count = models.PositiveSmallIntegerField(default=0)
    max_retries = models.PositiveSmallIntegerField(default=_default_max_retries)
    retry_after = models.DateTimeField(null=True, blank=True)
    transaction_id = models.CharField(max_length=128, blank=True)
    failure_reason = models.TextField(blank=True)
    processing_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0"))
    bank_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0"))
    processed_by = models.ForeignKey(
        CoreIdentity, on_delete=models.SET_NULL, null=True, blank=True, related_name="processed_payments"
    )
    processed_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.TextField(blank=True)
    internal_notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "PAYMENT"
        ordering = ("-created_at",)
        constraints = [
            models.CheckConstraint(check=models.Q(amount__gt=0), name="payment_amount_positive"),
            models.CheckConstraint(
                check=~(
                    models.Q(source_type=models.F("destination_type"))
                    & models.Q(source_id=models.F("destination_id"))
                ),
                name="payment_source_differs_from_destination",
            ),
        ]
        indexes = [
            models.Index(fields=["status"], name="PAYMENT_status_idx"),
            models.Index(fields=["source_type", "source_id"], name="PAYMENT_source_idx"),
            models.Index(fields=["destination_type", "destination_id"], name="PAYMENT_destination_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.reference} {self.amount} ({self.status})"

    @property
    def source(self) -> PartyRef:
        return PartyRef(self.source_type, self.source_id)

    @source.setter
    def source(self, ref: PartyRef) -> None:
        self.source_type, self.source_id = ref.type, ref.id

    @property
    def destination(self) -> PartyRef:
        return PartyRef(self.destination_type, self.destination_id)

    @destination.setter
    def destination(self, ref: PartyRef) -> None:
        self.destination_type, self.destination_id = ref.type, ref.id

    @property
    def total_fees(self) -> Decimal:
        return (self.processing_fee or Decimal("0")) + (self.bank_fee or Decimal("0"))

    @property
    def net_amount(self) -> Decimal:
        return self.amount - self.total_fees

    def clean(self) -> None:
        if self.amount is not None and self.amount <= 0:
            raise ValidationError({"amount": "Le montant doit être strictement positif."})
        if self.source_type == self.destination_type and str(self.source_id) == str(self.destination_id):
            raise ValidationError("La source et la destination doivent être différentes.")

    def save(self, *args, **kwargs):
        if not self._state.adding:
            self._guard_completed(kwargs.get("update_fields"))
        super().save(*args, **kwargs)

    def _guard_completed(self, update_fields) -> None:
        stored = (
            type(self)._default_manager.filter(pk=self.pk)
            .values(*self._immutable_field_names())
            .first()
        )
        if not stored or stored["status"] != self.Status.COMPLETED:
            return
        candidates = self._immutable_field_names()
        if update_fields is not None:
            candidates = [name for name in candidates if name in set(update_fields)]
        changed = [
            name
            for name in candidates
            if stored.get(name) != getattr(self, self._meta.get_field(name).attname)
        ]
        if changed:
            raise CompletedPaymentError(
                f"Paiement effectué : champs non modifiables ({', '.join(sorted(changed))})."
            )

    def _immutable_field_names(self):
        return [
            field.name
            for field in self._meta.concrete_fields
            if not field.primary_key and field.name not in self.AUDIT_FIELDS
        ]


auditlog.register(Payment)
