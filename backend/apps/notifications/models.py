from __future__ import annotations

import uuid

from django.conf import settings
from django.core.validators import MaxValueValidator
from django.db import models
from django.utils import timezone

from identity.models import CoreIdentity


def _default_max_retries() -> int:
    return int(getattr(settings, "NOTIFICATION_MAX_RETRIES", 3))


class ActiveNotificationManager(models.Manager):
    def get_queryset(self):
        return super().get_queryset().filter(is_deleted=False)


class Notification(models.Model):
    """NOTIFICATION - Message adressé à une identité, livré sur un ou plusieurs canaux."""

    class Type(models.TextChoices):
        SYSTEM = "system", "Système"
        REQUEST_STATUS = "request_status", "Statut de demande"
        PAYMENT = "payment", "Paiement"
        ANNOUNCEMENT = "announcement", "Annonce"
        REMINDER = "reminder", "Rappel"
        ALERT = "alert", "Alerte"
        WELCOME = "welcome", "Bienvenue"
        APPROVAL_REQUIRED = "approval_required", "Approbation requise"
        DOCUMENT_REQUIRED = "document_required", "Document requis"
        DEADLINE_APPROACHING = "deadline_approaching", "Échéance proche"

    class Category(models.TextChoices):
        INFO = "info", "Information"
        SUCCESS = "success", "Succès"
        WARNING = "warning", "Avertissement"
        ERROR = "error", "Erreur"
        URGENT = "urgent", "Urgent"

    class Priority(models.TextChoices):
        LOW = "low", "Basse"
        NORMAL = "normal", "Normale"
        HIGH = "high", "Haute"
        CRITICAL = "critical", "Critique"

    class Status(models.TextChoices):
        PENDING = "pending", "En attente"
        SENT = "sent", "Envoyée"
        DELIVERED = "delivered", "Livrée"
        READ = "read", "Lue"
        CLICKED = "clicked", "Cliquée"
        FAILED = "failed", "Échec"
        CANCELLED = "cancelled", "Annulée"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=200)
    message = models.TextField(max_length=1000)
    type = models.CharField(max_length=32, choices=Type.choices, default=Type.SYSTEM)
    category = models.CharField(max_length=16, choices=Category.choices, default=Category.INFO)
    priority = models.CharField(max_length=16, choices=Priority.choices, default=Priority.NORMAL)
    recipient = models.ForeignKey(CoreIdentity, on_delete=models.CASCADE, related_name="notifications")
    related_demande = models.ForeignKey(
        "demandes.Demande", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    related_payment = models.ForeignKey(
        "payments.Payment", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    related_budget_pool = models.ForeignKey(
        "budget.BudgetPool", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    related_announcement = models.ForeignKey(
        "content.Announcement", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    action_required = models.BooleanField(default=False)
    action_url = models.CharField(max_length=500, blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    is_clicked = models.BooleanField(default=False)
    clicked_at = models.DateTimeField(null=True, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    retry_count = models.PositiveSmallIntegerField(default=0)
    max_retries = models.PositiveSmallIntegerField(
        default=_default_max_retries, validators=[MaxValueValidator(10)]
    )
    scheduled_for = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    retry_after = models.DateTimeField(null=True, blank=True)
    is_deleted = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ActiveNotificationManager()
    all_objects = models.Manager()

    class Meta:
        db_table = "NOTIFICATION"
        ordering = ("-created_at",)
        base_manager_name = "all_objects"
        indexes = [
            models.Index(fields=["recipient", "is_read"], name="NOTIF_recipient_read_idx"),
            models.Index(fields=["status", "retry_after"], name="NOTIF_status_retry_idx"),
            models.Index(fields=["scheduled_for", "status"], name="NOTIF_scheduled_status_idx"),
            models.Index(fields=["expires_at", "status"], name="NOTIF_expires_status_idx"),
        ]

    @property
    def is_scheduled(self) -> bool:
        return self.scheduled_for is not None and self.scheduled_for > timezone.now()

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and self.expires_at <= timezone.now()

    def __str__(self) -> str:
        return f"{self.title} -> {self.recipient_id} ({self.status})"


class NotificationDelivery(models.Model):
    class Channel(models.TextChoices):
        IN_APP = "in_app", "Dans l'application"
        EMAIL = "email", "E-mail"
        SMS = "sms", "SMS"
        PUSH = "push", "Push"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    notification = models.ForeignKey(Notification, on_delete=models.CASCADE, related_name="deliveries")
    channel = models.CharField(max_length=16, choices=Channel.choices)
    enabled = models.BooleanField(default=True)
    delivered = models.BooleanField(default=False)
    delivered_at = models.DateTimeField(null=True, blank=True)
    attempts = models.PositiveSmallIntegerField(default=0)
    last_attempt = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(blank=True)

    class Meta:
        db_table = "NOTIFICATION_DELIVERY"
        constraints = [
            models.UniqueConstraint(fields=["notification", "channel"], name="notification_delivery_unique_channel"),
        ]

    def __str__(self) -> str:
        return f"{self.notification_id}:{self.channel} ({'ok' if self.delivered else 'pending'})"
