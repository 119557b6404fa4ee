from __future__ import annotations

from typing import Any, Dict, Optional

import jwt
from django.http import HttpRequest


def _decode_jwt_payload(token: str) -> Optional[Dict[str, Any]]:
    """Décoder un JWT sans vérification de signature (lecture-only)."""
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    return payload if isinstance(payload, dict) else None


def _extract_role_from_jwt(payload: Dict[str, Any]) -> Optional[str]:
    """Extraire le rôle actif depuis les claims émis par /api/token/."""
    role_active = payload.get("role_active")
    if isinstance(role_active, str) and role_active:
        return role_active
    role = payload.get("role")
    if isinstance(role, str) and role:
        return role
    return None


class ActiveRoleMiddleware:
    """Middleware pour injecter request.role_active.

    Ordre de résolution : en-tête X-Role-Active, session, claim du JWT.
    La vérification que l'identité détient bien ce rôle est faite par
    api.permissions.ActiveRolePermission.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request: HttpRequest):
        request.role_active = self._resolve_role(request)
        return self.get_response(request)

    @staticmethod
    def _resolve_role(request: HttpRequest) -> Optional[str]:
        header_role = request.headers.get("X-Role-Active")
        if header_role and header_role.strip():
            return header_role.strip()

        session = getattr(request, "session", None)
        if session is not None:
            session_role = session.get("role_active")
            if isinstance(session_role, str) and session_role.strip():
                return session_role.strip()

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header.replace("Bearer ", "", 1).strip()
            payload = _decode_jwt_payload(token)
            if payload:
                return _extract_role_from_jwt(payload)
        return None
