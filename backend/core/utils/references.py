from __future__ import annotations

from typing import Optional, Type

from django.db import models
from django.utils import timezone


def next_reference(model: Type[models.Model], prefix: str, *, field: str = "reference", year: Optional[int] = None) -> str:
    """Référence lisible ``<PREFIX>-<année>-<séquence>`` (ex. DEM-2026-000042)."""
    year = year or timezone.now().year
    stem = f"{prefix}-{year}-"
    last = (
        model._default_manager.filter(**{f"{field}__startswith": stem})
        .order_by(f"-{field}")
        .values_list(field, flat=True)
        .first()
    )
    sequence = 1
    if last:
        try:
            sequence = int(str(last).rsplit("-", 1)[-1]) + 1
        except ValueError:
            sequence = model._default_manager.filter(**{f"{field}__startswith": stem}).count() + 1
    return f"{stem}{sequence:06d}"
