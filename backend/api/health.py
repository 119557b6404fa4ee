from __future__ import annotations

import logging

from django import get_version
from django.db import DatabaseError, connection
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

logger = logging.getLogger(__name__)


@api_view(["GET"])
@permission_classes([AllowAny])
def health(request):
    db_status = "ok"
    try:
        connection.ensure_connection()
    except DatabaseError:
        logger.exception("Base de données injoignable")
        db_status = "error"
    healthy = db_status == "ok"
    return Response(
        {
            "status": "healthy" if healthy else "degraded",
            "db": db_status,
            "django": get_version(),
            "timestamp": timezone.now().isoformat(),
        },
        status=200 if healthy else 503,
    )
