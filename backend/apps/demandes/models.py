from __future__ import annotations

import uuid
from decimal import Decimal

from auditlog.registry import auditlog
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models

from identity.models import CoreIdentity


class Demande(models.Model):
    """DEMANDE - Demande d'aide sociale déposée par un citoyen."""

    class Status(models.TextChoices):
        DRAFT = "draft", "Brouillon"
        SUBMITTED = "submitted", "Soumise"
        UNDER_REVIEW = "under_review", "En cours d'examen"
        PENDING_DOCS = "pending_docs", "Pièces manquantes"
        APPROVED = "approved", "Approuvée"
        REJECTED = "rejected", "Rejetée"
        CANCELLED = "cancelled", "Annulée"
        EXPIRED = "expired", "Expirée"
        PARTIALLY_PAID = "partially_paid", "Partiellement payée"
        PAID = "paid", "Payée"

    class Category(models.TextChoices):
        FOOD = "food", "Alimentation"
        HEALTH = "health", "Santé"
        HOUSING = "housing", "Logement"
        EDUCATION = "education", "Éducation"
        EMERGENCY = "emergency", "Urgence"
        OTHER = "other", "Autre"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    reference = models.CharField(max_length=32, unique=True, editable=False)
    description = models.TextField()
    category = models.CharField(max_length=16, choices=Category.choices, default=Category.OTHER)
    montant = models.DecimalField(
        max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal("0.01"))]
    )
    approved_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0"))
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.DRAFT)
    user = models.ForeignKey(CoreIdentity, on_delete=models.PROTECT, related_name="demandes")
    assigned_to = models.ForeignKey(
        CoreIdentity,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="assigned_demandes",
    )
    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="settled_demandes",
    )
    motif = models.TextField(blank=True)
    documents_due_at = models.DateTimeField(null=True, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    reviewed_by = models.ForeignKey(
        CoreIdentity,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reviewed_demandes",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "DEMANDE"
        ordering = ("-created_at",)
        constraints = [
            models.CheckConstraint(check=models.Q(montant__gt=0), name="demande_montant_positive"),
            models.CheckConstraint(check=models.Q(paid_amount__gte=0), name="demande_paid_amount_non_negative"),
        ]
        indexes = [
            models.Index(fields=["status"], name="DEMANDE_status_idx"),
            models.Index(fields=["user", "status"], name="DEMANDE_user_status_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.reference} ({self.status})"

    def clean(self) -> None:
        if self.montant is not None and self.montant <= 0:
            raise ValidationError({"montant": "Le montant demandé doit être strictement positif."})
        if self.approved_amount is not None:
            if self.approved_amount <= 0:
                raise ValidationError({"approved_amount": "Le montant approuvé doit être positif."})
            if self.montant is not None and self.approved_amount > self.montant:
                raise ValidationError(
                    {"approved_amount": "Le montant approuvé dépasse le montant demandé."}
                )

    @property
    def is_terminal(self) -> bool:
        return self.status in {self.Status.PAID, self.Status.CANCELLED}

    @property
    def payable_amount(self) -> Decimal:
        return self.approved_amount if self.approved_amount is not None else self.montant


class DemandeDocument(models.Model):
    """Pièce justificative rattachée à une demande."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    demande = models.ForeignKey(Demande, on_delete=models.CASCADE, related_name="documents")
    file = models.CharField(max_length=255)
    original_name = models.CharField(max_length=255)
    content_type = models.CharField(max_length=128, blank=True)
    size = models.PositiveIntegerField(default=0)
    uploaded_by = models.ForeignKey(
        CoreIdentity, on_delete=models.SET_NULL, null=True, related_name="uploaded_documents"
    )
    uploaded_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "DEMANDE_DOCUMENT"
        ordering = ("uploaded_at",)

    def __str__(self) -> str:
        return self.original_name


class DemandeStatusHistory(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    demande = models.ForeignKey(Demande, on_delete=models.CASCADE, related_name="history")
    from_status = models.CharField(max_length=16, choices=Demande.Status.choices, blank=True)
    to_status = models.CharField(max_length=16, choices=Demande.Status.choices)
    changed_by = models.ForeignKey(
        CoreIdentity, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    motif = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "DEMANDE_STATUS_HISTORY"
        ordering = ("created_at",)

    def __str__(self) -> str:
        return f"{self.demande_id}: {self.from_status or '-'} -> {self.to_status}"


auditlog.register(Demande)
auditlog.register(DemandeDocument)
