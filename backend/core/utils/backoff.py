from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from django.utils import timezone


def backoff_delay(retry_count: int) -> timedelta:
    """Délai exponentiel : 2^retry_count minutes."""
    return timedelta(minutes=2 ** max(0, int(retry_count)))


def next_retry_at(retry_count: int, max_retries: int, now: Optional[datetime] = None) -> Optional[datetime]:
    """Prochaine tentative autorisée, ou None quand les tentatives sont épuisées."""
    if retry_count >= max_retries:
        return None
    now = now or timezone.now()
    return now + backoff_delay(retry_count)
