from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from core.exceptions import AuthorizationError
from identity.models import CoreIdentity

if TYPE_CHECKING:
    from django.http import HttpRequest


def _get_identity_from_request(request: "HttpRequest") -> Optional[CoreIdentity]:
    """Récupère l'identité active associée à l'utilisateur authentifié (par e-mail)."""
    cached = getattr(request, "_cached_identity", None)
    if cached is not None:
        return cached
    email = getattr(request.user, "email", None)
    if not email:
        return None
    identity = CoreIdentity.objects.filter(email__iexact=email, is_active=True).first()
    request._cached_identity = identity
    return identity


class IdentityMixin:
    """Expose l'identité de l'appelant aux vues (acteur des opérations métier)."""

    @property
    def identity(self) -> CoreIdentity:
        identity = _get_identity_from_request(self.request)
        if identity is None:
            raise AuthorizationError("Aucune identité active associée à ce compte.")
        return identity

    @property
    def role_active(self) -> Optional[str]:
        return getattr(self.request, "role_active", None)

    def get_serializer_context(self):  # type: ignore[override]
        context = super().get_serializer_context()
        context["role_active"] = self.role_active
        return context
