from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from app.utils.time import ensure_aware, humanize_delta, utcnow

# Engines take a clock so tests can pin "now".
Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return utcnow()


def fixed_clock(at: datetime) -> Clock:
    """
    A clock that always returns `at` (UTC-aware).
    """
    pinned = ensure_aware(at)
    return lambda: pinned


def duration_minutes(started_at: datetime, ended_at: Optional[datetime]) -> Optional[int]:
    """
    Whole minutes between start and end, or None while still running.
    """
    if ended_at is None:
        return None
    seconds = (ensure_aware(ended_at) - ensure_aware(started_at)).total_seconds()
    return max(0, int(seconds // 60))


def duration_text(started_at: datetime, ended_at: Optional[datetime]) -> str:
    """
    Human-readable session length like '12m', or 'in progress'.
    """
    if ended_at is None:
        return "in progress"
    seconds = int((ensure_aware(ended_at) - ensure_aware(started_at)).total_seconds())
    return humanize_delta(seconds)
