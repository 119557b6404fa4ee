from __future__ import annotations

from functools import wraps
from typing import Callable, Optional, TypeVar

from django.http import HttpRequest, JsonResponse

from core.rbac.checker import rbac

F = TypeVar("F", bound=Callable[..., object])


def _forbidden(message: str, **details) -> JsonResponse:
    payload = {"message": message, "statusCode": 403}
    if details:
        payload["details"] = details
    return JsonResponse(payload, status=403)


def with_active_role(resource: Optional[str] = None, action: Optional[str] = None) -> Callable[[F], F]:
    """
    Exige un rôle actif sur la requête et, si ``resource``/``action`` sont
    fournis, que la matrice RBAC autorise ce rôle pour l'action.
    """

    def decorator(view_func: F) -> F:
        @wraps(view_func)
        def wrapper(request: HttpRequest, *args, **kwargs):
            role_active = getattr(request, "role_active", None)
            if not role_active:
                return _forbidden("Rôle actif requis pour cette action.")
            if resource and action and not rbac.can(role=role_active, action=action, resource=resource):
                return _forbidden(
                    "Rôle actif non autorisé pour cette action.",
                    role=role_active,
                    resource=resource,
                    action=action,
                )
            return view_func(request, *args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
