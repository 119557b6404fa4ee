from __future__ import annotations

from typing import Iterable, Optional

from django.http import HttpRequest
from rest_framework.permissions import BasePermission

from core.rbac.checker import ROLE_ADMIN, STAFF_ROLES

from .mixins import _get_identity_from_request


class ActiveRolePermission(BasePermission):
    """Permission basée sur le rôle actif injecté par middleware.

    Le rôle actif doit être celui que détient l'identité authentifiée.
    Sans rôle explicite, le rôle de l'identité est utilisé.
    """

    message = "Rôle actif absent ou non détenu par cette identité."
    allowed_roles: Optional[Iterable[str]] = None

    def has_permission(self, request: HttpRequest, view) -> bool:  # type: ignore[override]
        if request.method == "OPTIONS":
            return True
        identity = _get_identity_from_request(request)
        if identity is None:
            return False
        role_active = getattr(request, "role_active", None)
        if not role_active:
            request.role_active = role_active = identity.role
        if role_active != identity.role:
            return False
        if self.allowed_roles is None:
            return True
        return role_active in set(self.allowed_roles)


class StaffPermission(ActiveRolePermission):
    allowed_roles = STAFF_ROLES


class AdminPermission(ActiveRolePermission):
    allowed_roles = (ROLE_ADMIN,)
