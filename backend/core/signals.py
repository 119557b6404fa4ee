from __future__ import annotations

import logging

from django.db.models.signals import post_save
from django.dispatch import receiver

from apps.notifications.models import Notification, NotificationDelivery
from apps.notifications.services.dispatcher import notify
from identity.models import CoreIdentity, SysAuditLog

logger = logging.getLogger(__name__)


@receiver(post_save, sender=CoreIdentity)
def welcome_new_identity(sender, instance: CoreIdentity, created: bool, **kwargs) -> None:
    """Message de bienvenue et trace d'audit à la création d'une identité."""
    if not created or kwargs.get("raw"):
        return
    SysAuditLog.record(
        action="IDENTITY_CREATED",
        entity_type="CORE_IDENTITY",
        entity_id=instance.pk,
        payload={"email": instance.email, "role": instance.role},
    )
    notify(
        instance,
        "Bienvenue",
        f"Bonjour {instance.full_name}, votre compte a été créé.",
        Notification.Type.WELCOME,
        channels=[NotificationDelivery.Channel.IN_APP],
    )
    logger.info("Identité créée: %s (%s)", instance.email, instance.role)
