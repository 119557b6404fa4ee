from __future__ import annotations

import uuid

from auditlog.registry import auditlog
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class CoreIdentity(models.Model):
    """CORE_IDENTITY - Identité unique d'un utilisateur de la plateforme."""

    class Role(models.TextChoices):
        ADMIN = "admin", "Administrateur"
        CASE_WORKER = "case_worker", "Travailleur social"
        FINANCE_MANAGER = "finance_manager", "Gestionnaire financier"
        USER = "user", "Citoyen"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True)
    phone = models.CharField(max_length=32, unique=True)
    first_name = models.CharField(max_length=150)
    last_name = models.CharField(max_length=150)
    role = models.CharField(max_length=32, choices=Role.choices, default=Role.USER)
    wilaya = models.CharField(max_length=64, blank=True)
    eligibility_score = models.PositiveSmallIntegerField(
        default=0, validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    email_notifications = models.BooleanField(default=True)
    sms_notifications = models.BooleanField(default=False)
    push_device_tokens = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "CORE_IDENTITY"
        ordering = ("last_name", "first_name")

    def __str__(self) -> str:
        return f"{self.last_name} {self.first_name} <{self.email}>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_staff_role(self) -> bool:
        return self.role != self.Role.USER


class SysAuditLog(models.Model):
    """SYS_AUDIT_LOG - Journalisation applicative centralisée."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    action = models.CharField(max_length=64)
    entity_type = models.CharField(max_length=128)
    entity_id = models.UUIDField()
    actor_email = models.EmailField(blank=True)
    active_role = models.CharField(max_length=64, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)
    payload = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "SYS_AUDIT_LOG"
        ordering = ("-created_at",)

    def __str__(self) -> str:
        return f"{self.action} {self.entity_type}:{self.entity_id}"

    @classmethod
    def record(cls, *, action: str, entity_type: str, entity_id, actor=None, payload=None):
        return cls.objects.create(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_email=getattr(actor, "email", "") or "",
            active_role=getattr(actor, "role", "") or "",
            payload=payload or {},
        )


auditlog.register(CoreIdentity)
auditlog.register(SysAuditLog)
