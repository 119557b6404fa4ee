"""Contenus réglementaires et annonces."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from apps.content.models import Announcement, Content
from apps.notifications.models import Notification
from apps.notifications.services.dispatcher import notify
from core.exceptions import InvalidStateError, ValidationError, retry_on_dependency_failure
from core.rbac.checker import rbac
from identity.models import CoreIdentity, SysAuditLog

logger = logging.getLogger(__name__)

CONTENT_FIELDS = ("level", "name", "title", "text", "parent", "position")
ANNOUNCEMENT_FIELDS = ("title", "body", "target_roles")


def _full_clean(instance) -> None:
    try:
        instance.full_clean()
    except DjangoValidationError as exc:
        raise ValidationError("Données invalides.", details=exc.message_dict) from exc


def _audit(instance, entity_type: str, action: str, actor: Optional[CoreIdentity], **payload) -> None:
    SysAuditLog.record(action=action, entity_type=entity_type, entity_id=instance.pk, actor=actor, payload=payload)


def content_tree(parent: Optional[Content] = None) -> list:
    """Arborescence des contenus actifs à partir d'un parent (racines si None)."""
    nodes = Content.objects.filter(parent=parent).order_by("position", "name")
    return [
        {
            "id": str(node.pk),
            "level": node.level,
            "name": node.name,
            "title": node.title,
            "children": content_tree(node),
        }
        for node in nodes
    ]


@retry_on_dependency_failure
def create_content(actor: CoreIdentity, **fields: Any) -> Content:
    rbac.authorize(actor, action="create", resource="CONTENT")
    content = Content(**{key: value for key, value in fields.items() if key in CONTENT_FIELDS})
    _full_clean(content)
    with transaction.atomic():
        content.save()
        _audit(content, "CONTENT", "CONTENT_CREATED", actor, level=content.level, name=content.name)
    return content


@retry_on_dependency_failure
def update_content(content: Content, actor: CoreIdentity, **changes: Any) -> Content:
    rbac.authorize(actor, action="update", resource="CONTENT")
    unknown = set(changes) - set(CONTENT_FIELDS)
    if unknown:
        raise ValidationError("Champs non modifiables.", details={"fields": sorted(unknown)})
    for key, value in changes.items():
        setattr(content, key, value)
    _full_clean(content)
    with transaction.atomic():
        content.save()
        _audit(content, "CONTENT", "CONTENT_UPDATED", actor, fields=sorted(changes))
    return content


@retry_on_dependency_failure
def delete_content(content: Content, actor: CoreIdentity) -> None:
    """Suppression logique du contenu et de ses descendants."""
    rbac.authorize(actor, action="delete", resource="CONTENT")
    with transaction.atomic():
        pending = [content]
        while pending:
            node = pending.pop()
            pending.extend(Content.objects.filter(parent=node))
            Content.all_objects.filter(pk=node.pk).update(is_deleted=True, updated_at=timezone.now())
        _audit(content, "CONTENT", "CONTENT_DELETED", actor, name=content.name)
    content.is_deleted = True


@retry_on_dependency_failure
def create_announcement(actor: CoreIdentity, *, title: str, body: str, target_roles=None) -> Announcement:
    rbac.authorize(actor, action="create", resource="ANNOUNCEMENT")
    announcement = Announcement(title=title, body=body, target_roles=list(target_roles or []), created_by=actor)
    _full_clean(announcement)
    with transaction.atomic():
        announcement.save()
        _audit(announcement, "ANNOUNCEMENT", "ANNOUNCEMENT_CREATED", actor, target_roles=announcement.target_roles)
    return announcement


@retry_on_dependency_failure
def update_announcement(announcement: Announcement, actor: CoreIdentity, **changes: Any) -> Announcement:
    rbac.authorize(actor, action="create", resource="ANNOUNCEMENT")
    if announcement.is_published:
        raise InvalidStateError("Une annonce publiée n'est plus modifiable.")
    unknown = set(changes) - set(ANNOUNCEMENT_FIELDS)
    if unknown:
        raise ValidationError("Champs non modifiables.", details={"fields": sorted(unknown)})
    for key, value in changes.items():
        setattr(announcement, key, value)
    _full_clean(announcement)
    announcement.save()
    return announcement


def audience(announcement: Announcement):
    recipients = CoreIdentity.objects.filter(is_active=True)
    if announcement.target_roles:
        recipients = recipients.filter(role__in=announcement.target_roles)
    return recipients


@retry_on_dependency_failure
def publish(announcement: Announcement, actor: CoreIdentity) -> Dict[str, Any]:
    """Publie l'annonce et notifie chaque destinataire ciblé."""
    rbac.authorize(actor, action="publish", resource="ANNOUNCEMENT")
    with transaction.atomic():
        announcement = Announcement.objects.select_for_update().get(pk=announcement.pk)
        if announcement.is_published:
            raise InvalidStateError("Annonce déjà publiée.")
        announcement.is_published = True
        announcement.published_at = timezone.now()
        announcement.save(update_fields=["is_published", "published_at", "updated_at"])
        sent = 0
        for recipient in audience(announcement):
            notify(
                recipient,
                announcement.title,
                announcement.body,
                Notification.Type.ANNOUNCEMENT,
                related_announcement=announcement,
            )
            sent += 1
        _audit(announcement, "ANNOUNCEMENT", "ANNOUNCEMENT_PUBLISHED", actor, recipients=sent)
    logger.info("Annonce %s publiée (%s destinataires)", announcement.pk, sent)
    return {"announcement": announcement, "recipients": sent}


@retry_on_dependency_failure
def delete_announcement(announcement: Announcement, actor: CoreIdentity) -> None:
    rbac.authorize(actor, action="delete", resource="ANNOUNCEMENT")
    with transaction.atomic():
        Announcement.all_objects.filter(pk=announcement.pk).update(is_deleted=True, updated_at=timezone.now())
        _audit(announcement, "ANNOUNCEMENT", "ANNOUNCEMENT_DELETED", actor)
    announcement.is_deleted = True
