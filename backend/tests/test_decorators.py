"""Tests pour core/decorators.py"""
import json

import pytest
from django.http import HttpRequest, JsonResponse
from django.test import RequestFactory

from core.decorators import with_active_role


def dummy_view(request: HttpRequest) -> JsonResponse:
    """Vue de test"""
    return JsonResponse({"success": True})


def _request(role=None):
    request = RequestFactory().get("/")
    if role is not None:
        request.role_active = role
    return request


class TestWithActiveRole:
    """Rôle actif et matrice RBAC sur les vues fonctions"""

    def test_no_active_role(self):
        response = with_active_role()(dummy_view)(_request())
        assert response.status_code == 403
        body = json.loads(response.content)
        assert body == {"message": "Rôle actif requis pour cette action.", "statusCode": 403}

    def test_any_role_without_rbac_check(self):
        response = with_active_role()(dummy_view)(_request("user"))
        assert response.status_code == 200
        assert json.loads(response.content) == {"success": True}

    @pytest.mark.parametrize("role", ["admin", "case_worker", "finance_manager"])
    def test_staff_allowed_for_notification_stats(self, role):
        view = with_active_role(resource="NOTIFICATION", action="stats")(dummy_view)
        assert view(_request(role)).status_code == 200

    def test_citizen_refused_for_notification_stats(self):
        view = with_active_role(resource="NOTIFICATION", action="stats")(dummy_view)
        response = view(_request("user"))
        assert response.status_code == 403
        body = json.loads(response.content)
        assert body["message"] == "Rôle actif non autorisé pour cette action."
        assert body["details"] == {"role": "user", "resource": "NOTIFICATION", "action": "stats"}

    def test_unknown_action_refused(self):
        view = with_active_role(resource="NOTIFICATION", action="purge")(dummy_view)
        assert view(_request("admin")).status_code == 403

    def test_preserves_function_metadata(self):
        assert with_active_role()(dummy_view).__name__ == "dummy_view"
