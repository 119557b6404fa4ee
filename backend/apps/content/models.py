from __future__ import annotations

import uuid

from auditlog.registry import auditlog
from django.core.exceptions import ValidationError
from django.db import models

from identity.models import CoreIdentity


class NotDeletedManager(models.Manager):
    def get_queryset(self):
        return super().get_queryset().filter(is_deleted=False)


class Content(models.Model):
    """CONTENT - Texte réglementaire hiérarchique (programme > chapitre > sous-chapitre > article)."""

    class Level(models.TextChoices):
        PROGRAMME = "programme", "Programme"
        CHAPITRE = "chapitre", "Chapitre"
        SOUS_CHAPITRE = "sous_chapitre", "Sous-chapitre"
        ARTICLE = "article", "Article"

    # Niveau parent attendu pour chaque niveau.
    PARENT_LEVEL = {
        Level.PROGRAMME: None,
        Level.CHAPITRE: Level.PROGRAMME,
        Level.SOUS_CHAPITRE: Level.CHAPITRE,
        Level.ARTICLE: Level.SOUS_CHAPITRE,
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    level = models.CharField(max_length=16, choices=Level.choices, default=Level.ARTICLE)
    name = models.CharField(max_length=100)
    title = models.CharField(max_length=255)
    text = models.TextField(blank=True)
    parent = models.ForeignKey(
        "self", on_delete=models.CASCADE, null=True, blank=True, related_name="children"
    )
    position = models.PositiveIntegerField(default=0)
    is_deleted = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = NotDeletedManager()
    all_objects = models.Manager()

    class Meta:
        db_table = "CONTENT"
        ordering = ("position", "name")
        base_manager_name = "all_objects"

    def __str__(self) -> str:
        return f"{self.level}:{self.name}"

    def clean(self) -> None:
        expected = self.PARENT_LEVEL.get(self.level)
        if expected is None and self.parent_id:
            raise ValidationError({"parent": "Un programme ne peut pas avoir de parent."})
        if expected is not None:
            if not self.parent_id:
                raise ValidationError({"parent": f"Un {self.get_level_display().lower()} doit avoir un parent."})
            if self.parent.level != expected:
                raise ValidationError({"parent": f"Le parent doit être de niveau '{expected}'."})


class Announcement(models.Model):
    """ANNOUNCEMENT - Annonce diffusée aux rôles ciblés."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=200)
    body = models.TextField(max_length=1000)
    target_roles = models.JSONField(default=list, blank=True)
    is_published = models.BooleanField(default=False)
    published_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        CoreIdentity, on_delete=models.SET_NULL, null=True, blank=True, related_name="announcements"
    )
    is_deleted = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = NotDeletedManager()
    all_objects = models.Manager()

    class Meta:
        db_table = "ANNOUNCEMENT"
        ordering = ("-created_at",)
        base_manager_name = "all_objects"

    def __str__(self) -> str:
        return self.title

    def clean(self) -> None:
        if not isinstance(self.target_roles, list):
            raise ValidationError({"target_roles": "target_roles doit être une liste."})
        unknown = set(self.target_roles) - set(CoreIdentity.Role.values)
        if unknown:
            raise ValidationError({"target_roles": f"Rôles inconnus: {', '.join(sorted(unknown))}"})


auditlog.register(Content)
auditlog.register(Announcement)
