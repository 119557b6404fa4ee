"""ViewSets pour les contenus réglementaires et les annonces."""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.viewsets import ModelViewSet

from apps.content.models import Announcement, Content
from apps.content.services import publication
from core.rbac.checker import rbac

from .mixins import IdentityMixin
from .permissions import ActiveRolePermission
from .serializers import AnnouncementSerializer, ContentSerializer


class ContentViewSet(IdentityMixin, ModelViewSet):
    """Lecture pour tout rôle actif ; écriture réservée à l'administrateur."""

    queryset = Content.objects.select_related("parent")
    serializer_class = ContentSerializer
    permission_classes = (ActiveRolePermission,)

    def get_queryset(self):  # type: ignore[override]
        queryset = super().get_queryset()
        level = self.request.query_params.get("level")
        return queryset.filter(level=level) if level else queryset

    def perform_create(self, serializer):  # type: ignore[override]
        serializer.instance = publication.create_content(self.identity, **serializer.validated_data)

    def perform_update(self, serializer):  # type: ignore[override]
        serializer.instance = publication.update_content(
            serializer.instance, self.identity, **serializer.validated_data
        )

    def perform_destroy(self, instance):  # type: ignore[override]
        publication.delete_content(instance, self.identity)

    @action(detail=False, methods=["GET"], url_path="tree")
    def tree(self, request, *args, **kwargs):
        return Response(publication.content_tree())


class AnnouncementViewSet(IdentityMixin, ModelViewSet):
    """Les annonces publiées sont visibles des rôles ciblés ; les brouillons du seul personnel éditeur."""

    queryset = Announcement.objects.select_related("created_by")
    serializer_class = AnnouncementSerializer
    permission_classes = (ActiveRolePermission,)

    def get_queryset(self):  # type: ignore[override]
        queryset = super().get_queryset()
        identity = self.identity
        if rbac.can(role=identity.role, action="create", resource="ANNOUNCEMENT"):
            return queryset
        published = queryset.filter(is_published=True)
        visible = [
            announcement.pk
            for announcement in published
            if not announcement.target_roles or identity.role in announcement.target_roles
        ]
        return published.filter(pk__in=visible)

    def perform_create(self, serializer):  # type: ignore[override]
        serializer.instance = publication.create_announcement(self.identity, **serializer.validated_data)

    def perform_update(self, serializer):  # type: ignore[override]
        serializer.instance = publication.update_announcement(
            serializer.instance, self.identity, **serializer.validated_data
        )

    def perform_destroy(self, instance):  # type: ignore[override]
        publication.delete_announcement(instance, self.identity)

    @action(detail=True, methods=["POST"], url_path="publish")
    def publish(self, request, pk=None, *args, **kwargs):
        result = publication.publish(self.get_object(), self.identity)
        data = AnnouncementSerializer(result["announcement"]).data
        return Response({**data, "recipients": result["recipients"]}, status=status.HTTP_200_OK)
