from __future__ import annotations

from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from core.rbac.checker import rbac
from identity.models import CoreIdentity, SysAuditLog

from .mixins import IdentityMixin
from .permissions import ActiveRolePermission
from .serializers import CoreIdentitySerializer


class CoreIdentityViewSet(IdentityMixin, viewsets.ModelViewSet):
    """
    GET /api/identities/ : personnel uniquement (un citoyen ne voit que lui-même)
    POST/PUT/PATCH/DELETE : administrateur
    GET /api/identities/me/ : identité de l'appelant
    """

    queryset = CoreIdentity.objects.all()
    serializer_class = CoreIdentitySerializer
    permission_classes = (ActiveRolePermission,)

    def get_queryset(self):  # type: ignore[override]
        queryset = super().get_queryset()
        identity = self.identity
        if rbac.can(role=identity.role, action="read", resource="CORE_IDENTITY"):
            role = self.request.query_params.get("role")
            return queryset.filter(role=role) if role else queryset
        return queryset.filter(pk=identity.pk)

    def perform_create(self, serializer):  # type: ignore[override]
        rbac.authorize(self.identity, action="create", resource="CORE_IDENTITY")
        serializer.save()

    def perform_update(self, serializer):  # type: ignore[override]
        rbac.authorize(self.identity, action="update", resource="CORE_IDENTITY")
        instance = serializer.save()
        SysAuditLog.record(
            action="IDENTITY_UPDATED",
            entity_type="CORE_IDENTITY",
            entity_id=instance.pk,
            actor=self.identity,
            payload={"fields": sorted(serializer.validated_data)},
        )

    def perform_destroy(self, instance):  # type: ignore[override]
        rbac.authorize(self.identity, action="delete", resource="CORE_IDENTITY")
        SysAuditLog.record(
            action="IDENTITY_DELETED",
            entity_type="CORE_IDENTITY",
            entity_id=instance.pk,
            actor=self.identity,
            payload={"email": instance.email},
        )
        instance.delete()

    @action(detail=False, methods=["GET"], url_path="me")
    def me(self, request, *args, **kwargs):
        return Response(self.get_serializer(self.identity).data)
