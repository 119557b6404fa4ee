"""
Taxonomie des erreurs métier et rendu homogène côté API.

Toute erreur qui atteint la couche REST est rendue sous la forme :

    {"message": "...", "statusCode": 409, "details": {...}}

`details` n'est présent que lorsqu'il apporte une information utile.
"""

from __future__ import annotations

import logging
import time
from functools import wraps
from typing import Any, Callable, Dict, Optional, TypeVar

from django.conf import settings
from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, InterfaceError, OperationalError
from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class WorkflowError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Opération impossible."

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(WorkflowError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Données invalides."


class InvalidStateError(WorkflowError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Opération impossible dans l'état actuel."


class InvalidTransitionError(InvalidStateError):
    default_message = "Transition de statut non autorisée."


class RetryNotAllowedError(InvalidStateError):
    default_message = "Nouvelle tentative pas encore autorisée."


class RetryExhaustedError(InvalidStateError):
    default_message = "Nombre maximal de tentatives atteint."


class InsufficientFundsError(WorkflowError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Fonds insuffisants dans l'enveloppe budgétaire."


class PoolNotActiveError(WorkflowError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "L'enveloppe budgétaire n'est pas active."


class NotFoundError(WorkflowError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Ressource introuvable."


class AuthorizationError(WorkflowError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Action non autorisée pour ce rôle."


class DuplicateError(WorkflowError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Cette ressource existe déjà."


class DependencyError(WorkflowError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Service momentanément indisponible, réessayez plus tard."


def retry_on_dependency_failure(func: F) -> F:
    """Rejoue une opération sur erreur transitoire de la base, puis lève DependencyError."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        attempts = max(1, int(getattr(settings, "DEPENDENCY_RETRY_ATTEMPTS", 3)))
        delay = float(getattr(settings, "DEPENDENCY_RETRY_DELAY_SECONDS", 0.2))
        for attempt in range(1, attempts + 1):
            try:
                return func(*args, **kwargs)
            except (OperationalError, InterfaceError) as exc:
                if attempt == attempts:
                    logger.error(
                        "%s: échec datastore après %s tentatives (%s)",
                        func.__qualname__,
                        attempts,
                        exc,
                    )
                    raise DependencyError(details={"operation": func.__name__}) from exc
                logger.warning(
                    "%s: erreur datastore transitoire, tentative %s/%s (%s)",
                    func.__qualname__,
                    attempt,
                    attempts,
                    exc,
                )
                if delay:
                    time.sleep(delay * attempt)
        raise DependencyError(details={"operation": func.__name__})

    return wrapper  # type: ignore[return-value]


def _payload(message: str, status_code: int, details: Any = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"message": message, "statusCode": status_code}
    if details:
        payload["details"] = details
    return payload


def _django_validation_details(exc: DjangoValidationError) -> Any:
    if hasattr(exc, "error_dict"):
        return {field: [str(m) for m in messages] for field, messages in exc.message_dict.items()}
    return {"non_field_errors": exc.messages}


def api_exception_handler(exc: Exception, context: Dict[str, Any]) -> Optional[Response]:
    """EXCEPTION_HANDLER DRF : rend toutes les erreurs au format {message, statusCode, details}."""
    if isinstance(exc, WorkflowError):
        if exc.status_code >= 500:
            logger.error("Erreur de dépendance: %s %s", exc.message, exc.details)
        return Response(
            _payload(exc.message, exc.status_code, exc.details or None),
            status=exc.status_code,
        )

    if isinstance(exc, DjangoValidationError):
        return Response(
            _payload("Données invalides.", 400, _django_validation_details(exc)),
            status=400,
        )

    if isinstance(exc, IntegrityError):
        logger.warning("Conflit d'intégrité: %s", exc)
        return Response(_payload(DuplicateError.default_message, 409), status=409)

    if isinstance(exc, Http404):
        return Response(_payload(NotFoundError.default_message, 404), status=404)

    if isinstance(exc, DjangoPermissionDenied):
        return Response(_payload(AuthorizationError.default_message, 403), status=403)

    if isinstance(exc, drf_exceptions.APIException):
        detail = exc.detail
        if isinstance(detail, (dict, list)):
            message = "Données invalides." if isinstance(exc, drf_exceptions.ValidationError) else str(exc.default_detail)
            response = Response(_payload(message, exc.status_code, detail), status=exc.status_code)
        else:
            response = Response(_payload(str(detail), exc.status_code), status=exc.status_code)
        auth_header = getattr(exc, "auth_header", None)
        if auth_header:
            response["WWW-Authenticate"] = auth_header
        wait = getattr(exc, "wait", None)
        if wait:
            response["Retry-After"] = "%d" % wait
        return response

    view = context.get("view")
    logger.exception("Erreur inattendue dans %s", view.__class__.__name__ if view else "API")
    message = str(exc) if settings.DEBUG else "Erreur interne, réessayez plus tard."
    return Response(_payload(message, 500), status=500)
