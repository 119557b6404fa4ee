"""ViewSet pour les notifications de l'appelant."""
from __future__ import annotations

from django.db.models import Q
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.viewsets import ModelViewSet

from apps.notifications.models import Notification
from apps.notifications.services import dispatcher
from core.rbac.checker import rbac

from .mixins import IdentityMixin
from .permissions import ActiveRolePermission
from .serializers import NotificationBulkSerializer, NotificationCreateSerializer, NotificationSerializer


class NotificationViewSet(IdentityMixin, ModelViewSet):
    """
    GET /api/notifications/ : notifications du destinataire (toutes pour l'administrateur avec ?all=1)
    POST /api/notifications/ : envoi manuel (administrateur)
    POST /api/notifications/<id>/read/ | click/ ; POST /api/notifications/read-all/
    POST /api/notifications/retry-failed/ | process-scheduled/ | clean-expired/ (administrateur)
    POST /api/notifications/bulk/ : envoi groupé par rôles (administrateur, travailleur social)
    GET /api/notifications/stats/ : compteurs par statut et par canal
    DELETE /api/notifications/<id>/ : suppression logique
    """

    queryset = Notification.objects.none()
    serializer_class = NotificationSerializer
    permission_classes = (ActiveRolePermission,)
    http_method_names = ["get", "post", "delete", "head", "options"]

    def get_queryset(self):  # type: ignore[override]
        identity = self.identity
        queryset = Notification.objects.prefetch_related("deliveries")
        params = self.request.query_params
        if not (params.get("all") and rbac.can(role=identity.role, action="read_all", resource="NOTIFICATION")):
            queryset = queryset.filter(recipient=identity).filter(
                Q(scheduled_for__isnull=True) | Q(scheduled_for__lte=timezone.now())
            )
        if params.get("unread"):
            queryset = queryset.filter(is_read=False)
        if params.get("type"):
            queryset = queryset.filter(type=params["type"])
        return queryset

    def create(self, request, *args, **kwargs):  # type: ignore[override]
        serializer = NotificationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        recipient = data.pop("recipient")
        notification = dispatcher.send_notification(self.identity, recipient, **data)
        return Response(NotificationSerializer(notification).data, status=status.HTTP_201_CREATED)

    def destroy(self, request, *args, **kwargs):  # type: ignore[override]
        dispatcher.soft_delete(self.get_object(), self.identity)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["POST"], url_path="read")
    def read(self, request, pk=None, *args, **kwargs):
        notification = dispatcher.mark_as_read(self.get_object(), self.identity)
        return Response(NotificationSerializer(notification).data)

    @action(detail=True, methods=["POST"], url_path="click")
    def click(self, request, pk=None, *args, **kwargs):
        notification = dispatcher.mark_as_clicked(self.get_object(), self.identity)
        return Response(NotificationSerializer(notification).data)

    @action(detail=False, methods=["POST"], url_path="read-all")
    def read_all(self, request, *args, **kwargs):
        return Response({"updated": dispatcher.mark_all_as_read(self.identity)})

    @action(detail=False, methods=["POST"], url_path="retry-failed")
    def retry_failed(self, request, *args, **kwargs):
        return Response({"retried": dispatcher.retry_failed(actor=self.identity)})

    @action(detail=False, methods=["POST"], url_path="process-scheduled")
    def process_scheduled(self, request, *args, **kwargs):
        return Response({"processed": dispatcher.process_scheduled(actor=self.identity)})

    @action(detail=False, methods=["POST"], url_path="clean-expired")
    def clean_expired(self, request, *args, **kwargs):
        return Response({"cleaned": dispatcher.clean_expired(actor=self.identity)})

    @action(detail=False, methods=["POST"], url_path="bulk")
    def bulk(self, request, *args, **kwargs):
        serializer = NotificationBulkSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        target_roles = data.pop("target_roles")
        notifications = dispatcher.send_bulk(self.identity, target_roles, **data)
        return Response({"sent": len(notifications)}, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["GET"], url_path="stats")
    def stats(self, request, *args, **kwargs):
        return Response(dispatcher.notification_stats(self.get_queryset()))
