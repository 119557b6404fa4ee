from __future__ import annotations

import logging

from django.contrib.auth import authenticate
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework_simplejwt.tokens import RefreshToken

from identity.models import CoreIdentity

logger = logging.getLogger(__name__)


def _error(message: str, http_status: int) -> Response:
    return Response({"message": message, "statusCode": http_status}, status=http_status)


@api_view(["POST"])
@permission_classes([AllowAny])
def obtain_token(request: Request) -> Response:
    """
    Endpoint de login : POST /api/token/
    Accepte {email, password} et retourne {access, refresh, role}.

    Le mot de passe est vérifié sur le compte Django portant l'e-mail
    de l'identité ; les jetons portent les claims email, role et role_active.
    """
    email = str(request.data.get("email", "")).strip().lower()
    password = request.data.get("password", "")

    if not email or not password:
        return _error("Email et mot de passe requis.", status.HTTP_400_BAD_REQUEST)

    identity = CoreIdentity.objects.filter(email__iexact=email, is_active=True).first()
    user = authenticate(request, username=email, password=password) if identity else None
    if identity is None or user is None:
        logger.warning("Échec d'authentification pour %s", email)
        return _error("Identifiants incorrects.", status.HTTP_401_UNAUTHORIZED)

    refresh = RefreshToken.for_user(user)
    refresh["email"] = identity.email
    refresh["role"] = identity.role
    refresh["role_active"] = identity.role

    access = refresh.access_token
    access["email"] = identity.email
    access["role"] = identity.role
    access["role_active"] = identity.role

    return Response(
        {
            "access": str(access),
            "refresh": str(refresh),
            "role": identity.role,
        },
        status=status.HTTP_200_OK,
    )
