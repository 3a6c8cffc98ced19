from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


UTC = timezone.utc


def utcnow() -> datetime:
    """
    Returns timezone-aware current UTC time.
    """
    return datetime.now(UTC)


def ensure_aware(dt: datetime, assume_utc: bool = True) -> datetime:
    """
    Ensure a datetime is timezone-aware. If naive and assume_utc is True,
    interpret as UTC; otherwise raise ValueError.
    """
    if dt.tzinfo is not None:
        return dt.astimezone(UTC)
    if assume_utc:
        return dt.replace(tzinfo=UTC)
    raise ValueError("Naive datetime provided and assume_utc=False")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (as stored in JSON columns) into an aware datetime.
    """
    if not value:
        return None
    return ensure_aware(datetime.fromisoformat(value))


def period_start(period: str, *, now: Optional[datetime] = None) -> datetime:
    """
    Start of a reporting window ending at `now`: week, month (30 days) or year (365 days).
    """
    days = {"week": 7, "month": 30, "year": 365}
    if period not in days:
        raise ValueError(f"Unknown period: {period}")
    return ensure_aware(now or utcnow()) - timedelta(days=days[period])


def humanize_delta(seconds: int) -> str:
    """
    Simple humanization for durations like '1h 25m' or '17m'.
    """
    if seconds < 0:
        seconds = 0
    minutes, _ = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    parts: list[str] = []
    if hours:
        parts.append(f"{hours}h")
    parts.append(f"{minutes}m")
    return " ".join(parts)
