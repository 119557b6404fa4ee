"""
Création et livraison des notifications.

``notify`` enregistre la notification et ses livraisons par canal dans la
transaction de l'appelant ; la livraison effective (``dispatch``) est
différée après commit, de sorte qu'un rollback n'émet jamais de message.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from django.db import transaction
from django.db.models import Count, F, Q
from django.utils import timezone

from apps.notifications.channels import get_channel
from apps.notifications.models import Notification, NotificationDelivery
from core.exceptions import AuthorizationError, ValidationError, retry_on_dependency_failure
from core.rbac.checker import rbac
from core.utils.backoff import next_retry_at
from identity.models import CoreIdentity

logger = logging.getLogger(__name__)

Channel = NotificationDelivery.Channel

# Statuts qu'une livraison peut encore faire évoluer.
_DISPATCHABLE_STATUSES = {
    Notification.Status.PENDING,
    Notification.Status.SENT,
    Notification.Status.FAILED,
}


def default_channels(recipient: CoreIdentity) -> List[str]:
    channels = [Channel.IN_APP]
    if recipient.email_notifications and recipient.email:
        channels.append(Channel.EMAIL)
    if recipient.sms_notifications and recipient.phone:
        channels.append(Channel.SMS)
    if recipient.push_device_tokens:
        channels.append(Channel.PUSH)
    return [str(channel) for channel in channels]


def notify(
    recipient: CoreIdentity,
    title: str,
    message: str,
    type: str = Notification.Type.SYSTEM,
    *,
    category: str = Notification.Category.INFO,
    priority: str = Notification.Priority.NORMAL,
    related_demande=None,
    related_payment=None,
    related_budget_pool=None,
    related_announcement=None,
    action_required: bool = False,
    action_url: str = "",
    channels: Optional[Iterable[str]] = None,
    scheduled_for: Optional[datetime] = None,
    expires_at: Optional[datetime] = None,
) -> Notification:
    """Crée une notification et planifie sa livraison après commit.

    Avec ``scheduled_for`` dans le futur, la livraison est laissée à
    ``process_scheduled`` ; passé ``expires_at``, elle n'est plus tentée.
    """
    selected = list(channels) if channels is not None else default_channels(recipient)
    unknown = set(selected) - set(Channel.values)
    if not selected or unknown:
        raise ValidationError(
            "Canaux de notification invalides.",
            details={"channels": sorted(map(str, selected))},
        )
    if not title or len(title) > 200:
        raise ValidationError("Le titre doit contenir entre 1 et 200 caractères.")
    if not message or len(message) > 1000:
        raise ValidationError("Le message doit contenir entre 1 et 1000 caractères.")
    now = timezone.now()
    if scheduled_for is not None and scheduled_for < now:
        raise ValidationError(
            "La date d'envoi planifiée ne peut pas être dans le passé.",
            details={"scheduled_for": scheduled_for.isoformat()},
        )
    if expires_at is not None and expires_at <= (scheduled_for or now):
        raise ValidationError(
            "La date d'expiration doit suivre la date d'envoi.",
            details={"expires_at": expires_at.isoformat()},
        )

    notification = Notification.objects.create(
        recipient=recipient,
        title=title,
        message=message,
        type=type,
        category=category,
        priority=priority,
        related_demande=related_demande,
        related_payment=related_payment,
        related_budget_pool=related_budget_pool,
        related_announcement=related_announcement,
        action_required=action_required,
        action_url=action_url,
        scheduled_for=scheduled_for,
        expires_at=expires_at,
    )
    NotificationDelivery.objects.bulk_create(
        [NotificationDelivery(notification=notification, channel=channel) for channel in dict.fromkeys(selected)]
    )
    if scheduled_for is not None and scheduled_for > now:
        logger.info("Notification %s planifiée pour %s", notification.pk, scheduled_for.isoformat())
        return notification
    notification_id = notification.pk
    transaction.on_commit(lambda: dispatch_by_id(notification_id), robust=True)
    return notification


def send_notification(actor: CoreIdentity, recipient: CoreIdentity, **kwargs) -> Notification:
    """Envoi manuel par un administrateur."""
    rbac.authorize(actor, action="create", resource="NOTIFICATION")
    with transaction.atomic():
        return notify(recipient, **kwargs)


def dispatch_by_id(notification_id, now: Optional[datetime] = None) -> Optional[Notification]:
    notification = Notification.all_objects.filter(pk=notification_id, is_deleted=False).first()
    if notification is None:
        return None
    return dispatch(notification, now=now)


@retry_on_dependency_failure
def dispatch(notification: Notification, now: Optional[datetime] = None) -> Notification:
    """Tente chaque canal actif non encore livré et consolide le statut global."""
    with transaction.atomic():
        notification = (
            Notification.all_objects.select_for_update().select_related("recipient").get(pk=notification.pk)
        )
        now = now or timezone.now()
        if notification.scheduled_for and notification.scheduled_for > now:
            return notification
        if notification.expires_at and notification.expires_at <= now:
            logger.info("Notification %s expirée, livraison abandonnée", notification.pk)
            return notification
        deliveries = list(notification.deliveries.filter(enabled=True))
        for delivery in deliveries:
            if delivery.delivered:
                continue
            _attempt(notification, delivery, now)

        delivered = [d for d in deliveries if d.delivered]
        if notification.status in _DISPATCHABLE_STATUSES:
            if deliveries and len(delivered) == len(deliveries):
                notification.status = Notification.Status.DELIVERED
            elif delivered:
                notification.status = Notification.Status.SENT
            else:
                notification.status = Notification.Status.FAILED
        if delivered and notification.sent_at is None:
            notification.sent_at = now
        if notification.status == Notification.Status.FAILED:
            notification.retry_after = next_retry_at(notification.retry_count, notification.max_retries, now)
            logger.warning(
                "Notification %s: aucun canal livré (tentative %s/%s)",
                notification.pk,
                notification.retry_count,
                notification.max_retries,
            )
        else:
            notification.retry_after = None
        notification.save(update_fields=["status", "sent_at", "retry_after", "updated_at"])
    return notification


def _attempt(notification: Notification, delivery: NotificationDelivery, now: datetime) -> None:
    delivery.attempts += 1
    delivery.last_attempt = now
    try:
        result = get_channel(delivery.channel).deliver(notification)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Canal %s en erreur pour la notification %s", delivery.channel, notification.pk)
        delivery.error_message = str(exc) or exc.__class__.__name__
    else:
        if result.success:
            delivery.delivered = True
            delivery.delivered_at = now
            delivery.error_message = ""
        else:
            delivery.error_message = result.error
    delivery.save(update_fields=["attempts", "last_attempt", "delivered", "delivered_at", "error_message"])


def _ensure_recipient(notification: Notification, actor: CoreIdentity) -> None:
    if notification.recipient_id != getattr(actor, "pk", None):
        raise AuthorizationError("Seul le destinataire peut modifier cette notification.")


def mark_as_read(notification: Notification, actor: CoreIdentity) -> Notification:
    _ensure_recipient(notification, actor)
    with transaction.atomic():
        notification = Notification.objects.select_for_update().get(pk=notification.pk)
        if notification.is_read:
            return notification
        notification.is_read = True
        notification.read_at = timezone.now()
        if notification.status != Notification.Status.CLICKED:
            notification.status = Notification.Status.READ
        notification.save(update_fields=["is_read", "read_at", "status", "updated_at"])
    return notification


def mark_as_clicked(notification: Notification, actor: CoreIdentity) -> Notification:
    _ensure_recipient(notification, actor)
    with transaction.atomic():
        notification = Notification.objects.select_for_update().get(pk=notification.pk)
        if notification.is_clicked:
            return notification
        now = timezone.now()
        notification.is_clicked = True
        notification.clicked_at = now
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = now
        notification.status = Notification.Status.CLICKED
        notification.save(
            update_fields=["is_clicked", "clicked_at", "is_read", "read_at", "status", "updated_at"]
        )
    return notification


def mark_all_as_read(actor: CoreIdentity) -> int:
    now = timezone.now()
    unread = Notification.objects.filter(recipient=actor, is_read=False)
    with transaction.atomic():
        count = unread.exclude(status=Notification.Status.CLICKED).update(
            is_read=True, read_at=now, status=Notification.Status.READ, updated_at=now
        )
        count += unread.update(is_read=True, read_at=now, updated_at=now)
    return count


def soft_delete(notification: Notification, actor: CoreIdentity) -> None:
    if notification.recipient_id != getattr(actor, "pk", None):
        rbac.authorize(actor, action="create", resource="NOTIFICATION")
    Notification.all_objects.filter(pk=notification.pk).update(is_deleted=True, updated_at=timezone.now())


def retry_failed(now: Optional[datetime] = None, actor: Optional[CoreIdentity] = None) -> int:
    """Relance les notifications en échec dont le délai de back-off est écoulé."""
    if actor is not None:
        rbac.authorize(actor, action="retry_failed", resource="NOTIFICATION")
    now = now or timezone.now()
    candidates = list(
        Notification.objects.filter(status=Notification.Status.FAILED, retry_count__lt=F("max_retries"))
        .filter(Q(retry_after__isnull=True) | Q(retry_after__lte=now))
        .filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))
        .values_list("pk", flat=True)
    )
    retried = 0
    for pk in candidates:
        with transaction.atomic():
            notification = Notification.objects.select_for_update().filter(pk=pk).first()
            if notification is None or notification.status != Notification.Status.FAILED:
                continue
            if notification.retry_count >= notification.max_retries:
                continue
            notification.retry_count += 1
            notification.save(update_fields=["retry_count", "updated_at"])
        dispatch(notification, now=now)
        retried += 1
    logger.info("Relance des notifications en échec: %s traitée(s)", retried)
    return retried


def process_scheduled(now: Optional[datetime] = None, actor: Optional[CoreIdentity] = None) -> int:
    """Livre les notifications planifiées dont l'heure d'envoi est atteinte."""
    if actor is not None:
        rbac.authorize(actor, action="process_scheduled", resource="NOTIFICATION")
    now = now or timezone.now()
    due = list(
        Notification.objects.filter(status=Notification.Status.PENDING, scheduled_for__lte=now)
        .filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))
        .order_by("scheduled_for")
        .values_list("pk", flat=True)
    )
    for pk in due:
        dispatch_by_id(pk, now=now)
    logger.info("Notifications planifiées: %s livrée(s)", len(due))
    return len(due)


def clean_expired(now: Optional[datetime] = None, actor: Optional[CoreIdentity] = None) -> int:
    """Supprime logiquement les notifications dont la date d'expiration est passée."""
    if actor is not None:
        rbac.authorize(actor, action="clean_expired", resource="NOTIFICATION")
    now = now or timezone.now()
    cleaned = Notification.objects.filter(expires_at__lte=now).update(is_deleted=True, updated_at=now)
    logger.info("Notifications expirées: %s supprimée(s)", cleaned)
    return cleaned


@retry_on_dependency_failure
def send_bulk(
    actor: CoreIdentity, target_roles: Iterable[str], title: str, message: str, **kwargs: Any
) -> List[Notification]:
    """Envoie la même notification à toutes les identités actives des rôles ciblés."""
    rbac.authorize(actor, action="bulk", resource="NOTIFICATION")
    roles = [str(role) for role in dict.fromkeys(target_roles or [])]
    if not roles or set(roles) - set(CoreIdentity.Role.values):
        raise ValidationError("Rôles cibles invalides.", details={"target_roles": roles})
    recipients = CoreIdentity.objects.filter(role__in=roles, is_active=True).order_by("pk")
    with transaction.atomic():
        notifications = [notify(recipient, title, message, **kwargs) for recipient in recipients]
    logger.info("Envoi groupé: %s notification(s) pour les rôles %s", len(notifications), ", ".join(roles))
    return notifications


def notification_stats(queryset) -> Dict[str, Any]:
    queryset = queryset.order_by()
    by_status = {row["status"]: row["count"] for row in queryset.values("status").annotate(count=Count("id"))}
    deliveries = (
        NotificationDelivery.objects.filter(notification__in=queryset.values("pk"), enabled=True)
        .values("channel")
        .annotate(
            total=Count("id"),
            delivered=Count("id", filter=Q(delivered=True)),
            failed=Count("id", filter=Q(delivered=False, attempts__gt=0)),
        )
    )
    by_channel = {row["channel"]: row for row in deliveries}
    empty = {"total": 0, "delivered": 0, "failed": 0}
    return {
        "count": sum(by_status.values()),
        "unread": queryset.filter(is_read=False).count(),
        "by_status": {status: by_status.get(status, 0) for status in Notification.Status.values},
        "by_channel": {
            channel: {key: by_channel.get(channel, empty)[key] for key in empty} for channel in Channel.values
        },
    }
