"""
Canaux de livraison des notifications.

Chaque canal expose ``deliver(notification) -> ChannelResult``. Le canal
associé à un nom est résolu via le setting ``NOTIFICATION_CHANNEL_BACKENDS``
(chemins pointés), ce qui permet de brancher un fournisseur SMS ou push réel
sans toucher au dispatcher.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from django.conf import settings
from django.core.mail import send_mail
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass(frozen=True)
class ChannelResult:
    success: bool
    error: str = ""


def render_template(template: str, variables: Mapping[str, Any]) -> str:
    """Substitue les marqueurs ``{{var}}``; les marqueurs inconnus restent tels quels."""

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key in variables:
            return str(variables[key])
        return match.group(0)

    return _PLACEHOLDER.sub(_replace, template or "")


class BaseChannel:
    name = "base"

    def deliver(self, notification) -> ChannelResult:  # pragma: no cover - interface
        raise NotImplementedError


class InAppChannel(BaseChannel):
    """La notification stockée en base est elle-même la livraison in-app."""

    name = "in_app"

    def deliver(self, notification) -> ChannelResult:
        return ChannelResult(success=True)


class EmailChannel(BaseChannel):
    name = "email"

    def send(self, to: str, template: str, variables: Dict[str, Any]) -> ChannelResult:
        if not to:
            return ChannelResult(success=False, error="Adresse e-mail manquante.")
        subject = render_template(variables.get("subject", ""), variables) or "Notification"
        body = render_template(template, variables)
        sent = send_mail(
            subject,
            body,
            getattr(settings, "DEFAULT_FROM_EMAIL", None),
            [to],
            fail_silently=False,
        )
        if not sent:
            return ChannelResult(success=False, error="Aucun message accepté par le backend e-mail.")
        return ChannelResult(success=True)

    def deliver(self, notification) -> ChannelResult:
        recipient = notification.recipient
        variables = {
            "subject": notification.title,
            "first_name": recipient.first_name,
            "last_name": recipient.last_name,
            "title": notification.title,
            "message": notification.message,
            "action_url": notification.action_url,
        }
        template = "Bonjour {{first_name}},\n\n{{message}}\n"
        if notification.action_url:
            template += "\n{{action_url}}\n"
        try:
            return self.send(recipient.email, template, variables)
        except OSError as exc:
            logger.warning("Envoi e-mail impossible pour %s: %s", recipient.email, exc)
            return ChannelResult(success=False, error=str(exc))


class LoggingChannel(BaseChannel):
    """Canal de développement : journalise le message au lieu de l'envoyer."""

    name = "logging"

    def deliver(self, notification) -> ChannelResult:
        logger.info(
            "Notification %s pour %s: %s",
            notification.pk,
            notification.recipient_id,
            notification.title,
        )
        return ChannelResult(success=True)


class FailingChannel(BaseChannel):
    """Canal toujours en échec (fournisseur non configuré)."""

    name = "failing"

    def deliver(self, notification) -> ChannelResult:
        return ChannelResult(success=False, error="Fournisseur indisponible.")


def get_channel(name: str) -> BaseChannel:
    backends = getattr(settings, "NOTIFICATION_CHANNEL_BACKENDS", {})
    dotted_path = backends.get(name)
    if not dotted_path:
        raise KeyError(f"Aucun backend configuré pour le canal '{name}'.")
    return import_string(dotted_path)()
