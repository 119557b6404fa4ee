from __future__ import annotations

import logging

from django.http import HttpRequest
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from apps.budget.services.allocation import pools_summary, visible_pools
from apps.demandes.services.workflow import dashboard_stats, visible_demandes
from apps.notifications.models import Notification
from apps.notifications.services.dispatcher import notification_stats
from apps.payments.services.processing import payment_statistics, visible_payments
from core.decorators import with_active_role
from core.rbac.checker import rbac

from .mixins import _get_identity_from_request
from .permissions import ActiveRolePermission

logger = logging.getLogger(__name__)


@api_view(["GET"])
@permission_classes([ActiveRolePermission])
@with_active_role()
def dashboard_data(request: HttpRequest) -> Response:
    """
    Tableau de bord selon le rôle actif.
    GET /api/dashboard/
    """
    identity = _get_identity_from_request(request)
    role = identity.role
    data = {
        "role": role,
        "demandes": dashboard_stats(visible_demandes(identity)),
        "unread_notifications": Notification.objects.filter(recipient=identity, is_read=False).count(),
    }
    if rbac.can(role=role, action="read", resource="BUDGET_POOL"):
        data["budget"] = pools_summary(visible_pools(identity))
    if rbac.can(role=role, action="read_all", resource="PAYMENT"):
        data["payments"] = payment_statistics(visible_payments(identity))
    logger.debug("Tableau de bord servi pour %s (%s)", identity.email, role)
    return Response(data)


@api_view(["GET"])
@permission_classes([ActiveRolePermission])
@with_active_role(resource="NOTIFICATION", action="stats")
def notifications_overview(request: HttpRequest) -> Response:
    """
    Statistiques de livraison de toutes les notifications (personnel).
    GET /api/dashboard/notifications/
    """
    return Response(notification_stats(Notification.objects.all()))
