from __future__ import annotations

import itertools
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.contrib.auth.models import User
from django.db.models import QuerySet
from rest_framework.test import APIClient

from apps.budget.models import BudgetPool
from apps.budget.services import allocation
from apps.demandes.models import Demande
from apps.demandes.services import workflow
from identity.models import CoreIdentity

_phones = itertools.count(550100000)

PASSWORD = "secret123!"


def make_identity(email: str, role: str, **extra) -> CoreIdentity:
    """Crée une identité et le compte Django associé (username = e-mail)."""
    User.objects.create_user(username=email, email=email, password=PASSWORD)
    defaults = {
        "phone": f"+213{next(_phones)}",
        "first_name": email.split("@")[0].title(),
        "last_name": "Test",
    }
    defaults.update(extra)
    return CoreIdentity.objects.create(email=email, role=role, **defaults)


@pytest.fixture
def admin_identity(db) -> CoreIdentity:
    return make_identity("admin@example.com", CoreIdentity.Role.ADMIN)


@pytest.fixture
def case_worker(db) -> CoreIdentity:
    return make_identity("social@example.com", CoreIdentity.Role.CASE_WORKER)


@pytest.fixture
def finance_manager(db) -> CoreIdentity:
    return make_identity("finance@example.com", CoreIdentity.Role.FINANCE_MANAGER)


@pytest.fixture
def citizen(db) -> CoreIdentity:
    return make_identity("citoyen@example.com", CoreIdentity.Role.USER, eligibility_score=60)


@pytest.fixture
def other_citizen(db) -> CoreIdentity:
    return make_identity("voisin@example.com", CoreIdentity.Role.USER)


@pytest.fixture
def api_client_for():
    def _client(identity: CoreIdentity, role: str | None = None) -> APIClient:
        client = APIClient()
        client.force_authenticate(user=User.objects.get(username=identity.email))
        client.credentials(HTTP_X_ROLE_ACTIVE=role or identity.role)
        return client

    return _client


@pytest.fixture
def make_demande(citizen, case_worker):
    """Fabrique une demande du citoyen, optionnellement approuvée."""

    def _make(montant="20000", approve: bool = False, owner: CoreIdentity | None = None) -> Demande:
        owner = owner or citizen
        demande = workflow.create_demande(owner, "Aide au loyer", Decimal(montant), Demande.Category.HOUSING)
        if approve:
            workflow.submit(demande, owner)
            demande = workflow.review(demande, case_worker, "approve")
        return demande

    return _make


@pytest.fixture
def make_pool(finance_manager):
    def _make(montant="10000", name: str = "Fonds d'urgence", activate: bool = True, **extra) -> BudgetPool:
        pool = allocation.create_pool(
            finance_manager,
            name=name,
            fiscal_year=2026,
            montant=Decimal(montant),
            managed_by=finance_manager,
            **extra,
        )
        if activate:
            pool = allocation.change_status(pool, finance_manager, BudgetPool.Status.ACTIVE)
        return pool

    return _make


@pytest.fixture
def lock_order():
    """Noms des modèles verrouillés par select_for_update, dans l'ordre des appels."""
    order: list[str] = []
    original = QuerySet.select_for_update

    def record(queryset, *args, **kwargs):
        order.append(queryset.model.__name__)
        return original(queryset, *args, **kwargs)

    with patch.object(QuerySet, "select_for_update", autospec=True, side_effect=record):
        yield order
