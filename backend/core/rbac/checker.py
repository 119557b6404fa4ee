from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Set

from core.exceptions import AuthorizationError

ROLE_ADMIN = "admin"
ROLE_CASE_WORKER = "case_worker"
ROLE_FINANCE_MANAGER = "finance_manager"
ROLE_USER = "user"

STAFF_ROLES = frozenset({ROLE_ADMIN, ROLE_CASE_WORKER, ROLE_FINANCE_MANAGER})


@dataclass(frozen=True)
class ActionDecision:
    allowed: bool
    masked_fields: Set[str]


class RBACChecker:
    """Vérifie les permissions RBAC et applique le masquage de données."""

    def __init__(self, matrix: Optional[Dict[str, Dict[str, Any]]] = None):
        self._matrix = matrix or self._default_matrix()

    def can(self, *, role: str, action: str, resource: str) -> bool:
        allowed_roles = self._matrix.get(resource, {}).get(action, [])
        return role in set(allowed_roles)

    def decision(self, *, role: str, action: str, resource: str) -> ActionDecision:
        allowed = self.can(role=role, action=action, resource=resource)
        masked_fields = self._masked_fields(role=role, resource=resource)
        return ActionDecision(allowed=allowed, masked_fields=masked_fields)

    def authorize(self, actor: Any, *, action: str, resource: str) -> None:
        """Lève AuthorizationError si le rôle de l'acteur n'autorise pas l'action."""
        role = getattr(actor, "role", None)
        if not role or not getattr(actor, "is_active", True):
            raise AuthorizationError("Acteur inactif ou sans rôle.")
        if not self.can(role=role, action=action, resource=resource):
            raise AuthorizationError(
                f"Le rôle '{role}' ne peut pas effectuer '{action}' sur {resource}.",
                details={"role": role, "action": action, "resource": resource},
            )

    def _masked_fields(self, *, role: str, resource: str) -> Set[str]:
        masking_rules = self._matrix.get(resource, {}).get("masking", {})
        if not isinstance(masking_rules, dict):
            return set()
        field_roles = masking_rules.get("fields", {})
        if not isinstance(field_roles, dict):
            return set()
        masked: Set[str] = set()
        for field, roles in field_roles.items():
            roles_set = set(roles) if isinstance(roles, Iterable) else set()
            if role not in roles_set:
                masked.add(str(field))
        return masked

    @staticmethod
    def _default_matrix() -> Dict[str, Dict[str, Any]]:
        staff = [ROLE_ADMIN, ROLE_CASE_WORKER, ROLE_FINANCE_MANAGER]
        finance = [ROLE_ADMIN, ROLE_FINANCE_MANAGER]
        review = [ROLE_ADMIN, ROLE_CASE_WORKER]
        return {
            "CORE_IDENTITY": {
                "read": staff,
                "create": [ROLE_ADMIN],
                "update": [ROLE_ADMIN],
                "delete": [ROLE_ADMIN],
                "masking": {"fields": {"eligibility_score": staff}},
            },
            "DEMANDE": {
                "create": [ROLE_USER, ROLE_ADMIN],
                "submit": [ROLE_USER],
                "start_review": review,
                "review": review,
                "assign": review,
                "cancel": [ROLE_USER, ROLE_ADMIN],
                "upload_document": [ROLE_USER, ROLE_ADMIN, ROLE_CASE_WORKER],
                "read_all": staff,
                "expire": [ROLE_ADMIN],
            },
            "BUDGET_POOL": {
                "read": finance,
                "create": finance,
                "update": finance,
                "allocate": finance,
                "transfer": finance,
                "delete": [ROLE_ADMIN],
            },
            "PAYMENT": {
                "read_all": finance,
                "process": finance,
                "retry": finance,
                "cancel": finance,
                "schedule": finance,
                "masking": {"fields": {"internal_notes": finance}},
            },
            "NOTIFICATION": {
                "create": [ROLE_ADMIN],
                "retry_failed": [ROLE_ADMIN],
                "process_scheduled": [ROLE_ADMIN],
                "clean_expired": [ROLE_ADMIN],
                "bulk": review,
                "stats": staff,
                "read_all": [ROLE_ADMIN],
            },
            "ANNOUNCEMENT": {
                "create": review,
                "publish": review,
                "delete": review,
            },
            "CONTENT": {
                "create": [ROLE_ADMIN],
                "update": [ROLE_ADMIN],
                "delete": [ROLE_ADMIN],
            },
        }


rbac = RBACChecker()
