"""Tests pour core/middleware.py"""
from unittest.mock import MagicMock, Mock

import pytest
from django.contrib.auth.models import User
from django.http import JsonResponse
from django.test import RequestFactory
from rest_framework_simplejwt.tokens import RefreshToken

from core.middleware import ActiveRoleMiddleware, _decode_jwt_payload, _extract_role_from_jwt


def _access_token(**claims) -> str:
    user = User.objects.create_user(username="jwt@example.com", email="jwt@example.com")
    refresh = RefreshToken.for_user(user)
    for key, value in claims.items():
        refresh[key] = value
    return str(refresh.access_token)


@pytest.mark.django_db
class TestDecodeJWT:
    """Tests pour les fonctions utilitaires JWT"""

    def test_decode_jwt_payload_valid(self):
        """Test décodage d'un JWT émis par simplejwt"""
        token = _access_token(email="jwt@example.com", role_active="case_worker")

        payload = _decode_jwt_payload(token)
        assert payload is not None
        assert payload.get("email") == "jwt@example.com"
        assert payload.get("role_active") == "case_worker"

    def test_decode_jwt_payload_invalid(self):
        """Test avec token invalide"""
        assert _decode_jwt_payload("invalid.token.here") is None

    def test_extract_role_from_jwt_role_active(self):
        """Le claim role_active est prioritaire"""
        payload = {"role_active": "finance_manager", "role": "admin"}
        assert _extract_role_from_jwt(payload) == "finance_manager"

    def test_extract_role_from_jwt_role_fallback(self):
        """À défaut de role_active, on lit role"""
        payload = {"role": "admin", "email": "a@example.com"}
        assert _extract_role_from_jwt(payload) == "admin"

    def test_extract_role_from_jwt_ignores_non_string(self):
        payload = {"role_active": ["admin"], "role": ""}
        assert _extract_role_from_jwt(payload) is None

    def test_extract_role_from_jwt_no_role(self):
        """Test sans rôle dans le payload"""
        assert _extract_role_from_jwt({"email": "a@example.com"}) is None


@pytest.mark.django_db
class TestActiveRoleMiddleware:
    """Tests pour ActiveRoleMiddleware"""

    def test_middleware_x_role_active_header(self):
        """Test avec header X-Role-Active"""
        get_response = Mock(return_value=JsonResponse({}))
        middleware = ActiveRoleMiddleware(get_response)

        request = RequestFactory().get("/", HTTP_X_ROLE_ACTIVE=" case_worker ")
        middleware(request)

        assert request.role_active == "case_worker"
        get_response.assert_called_once()

    def test_middleware_session_role(self):
        """Test avec rôle dans la session"""
        get_response = Mock(return_value=JsonResponse({}))
        middleware = ActiveRoleMiddleware(get_response)

        request = RequestFactory().get("/")
        request.session = {"role_active": "admin"}
        middleware(request)

        assert request.role_active == "admin"

    def test_middleware_header_over_session(self):
        middleware = ActiveRoleMiddleware(Mock(return_value=JsonResponse({})))

        request = RequestFactory().get("/", HTTP_X_ROLE_ACTIVE="user")
        request.session = {"role_active": "admin"}
        middleware(request)

        assert request.role_active == "user"

    def test_middleware_jwt_payload(self):
        """Test avec rôle depuis le JWT"""
        token = _access_token(role_active="finance_manager")
        get_response = Mock(return_value=JsonResponse({}))
        middleware = ActiveRoleMiddleware(get_response)

        request = RequestFactory().get("/", HTTP_AUTHORIZATION=f"Bearer {token}")
        request.session = MagicMock()
        request.session.get = MagicMock(return_value=None)
        middleware(request)

        assert request.role_active == "finance_manager"
        get_response.assert_called_once()

    def test_middleware_no_role(self):
        """Sans en-tête, session ni JWT, le rôle actif est None"""
        get_response = Mock(return_value=JsonResponse({}))
        middleware = ActiveRoleMiddleware(get_response)

        request = RequestFactory().get("/", HTTP_AUTHORIZATION="Token abc123")
        middleware(request)

        assert request.role_active is None
        get_response.assert_called_once()

    def test_middleware_invalid_bearer(self):
        middleware = ActiveRoleMiddleware(Mock(return_value=JsonResponse({})))

        request = RequestFactory().get("/", HTTP_AUTHORIZATION="Bearer not-a-jwt")
        middleware(request)

        assert request.role_active is None
