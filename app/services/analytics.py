"""
Per-user wellness summary over a reporting period.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from statistics import fmean
from typing import Sequence

from app.domain.checkin import GENERAL_SLOT, CheckInRecord, CheckInState
from app.utils.time import ensure_aware, period_start

DEFAULT_LEVEL = 50.0
TREND_THRESHOLD = 5.0


@dataclass(slots=True)
class Summary:
    period: str
    start: datetime
    end: datetime
    total_checkins: int
    average_wellness_level: float
    category_breakdown: dict[str, int] = field(default_factory=dict)
    trend: str = "insufficient_data"
    insights: list[str] = field(default_factory=list)


def _level(checkin: CheckInRecord) -> float:
    return float(checkin.result.wellness_level) if checkin.result else DEFAULT_LEVEL


def calculate_trend(checkins: Sequence[CheckInRecord]) -> str:
    """
    improving | stable | declining | insufficient_data, comparing the average
    level of the older half of the window with the newer half.
    """
    if len(checkins) < 2:
        return "insufficient_data"
    ordered = sorted(checkins, key=lambda c: c.completed_at)
    mid = len(ordered) // 2
    difference = fmean(map(_level, ordered[mid:])) - fmean(map(_level, ordered[:mid]))
    if difference > TREND_THRESHOLD:
        return "improving"
    if difference < -TREND_THRESHOLD:
        return "declining"
    return "stable"


def _insights(checkins: Sequence[CheckInRecord], average: float, period: str) -> list[str]:
    if not checkins:
        return [f"No check-ins recorded in the past {period}. Regular check-ins help track your wellness journey."]

    n = len(checkins)
    insights = [f"You completed {n} check-in{'s' if n > 1 else ''} this {period}."]
    if average >= 70:
        insights.append("Your wellness levels have been consistently positive. Keep up the great work!")
    elif average <= 40:
        insights.append(
            "It seems like this has been a challenging period. "
            "Remember, small steps can lead to big improvements."
        )
    else:
        insights.append(
            "Your wellness levels show a balanced pattern. "
            "Continue monitoring and making adjustments as needed."
        )

    areas = {c.category_id for c in checkins if c.category_id}
    if len(areas) > 1:
        insights.append(
            f"You've been focusing on {len(areas)} different wellness areas, "
            "which shows great holistic awareness."
        )
    return insights


def summarize(checkins: Sequence[CheckInRecord], period: str, now: datetime) -> Summary:
    """
    Summarise the completed check-ins that fall inside `period` ending at `now`.
    Raises ValueError for an unknown period.
    """
    start = period_start(period, now=now)
    end = ensure_aware(now)
    in_window = [
        c for c in checkins
        if c.state is CheckInState.COMPLETED and c.completed_at and start <= c.completed_at <= end
    ]

    average = fmean(map(_level, in_window)) if in_window else DEFAULT_LEVEL
    breakdown = Counter(c.category_id or GENERAL_SLOT for c in in_window)

    return Summary(
        period=period,
        start=start,
        end=end,
        total_checkins=len(in_window),
        average_wellness_level=round(average, 1),
        category_breakdown=dict(breakdown),
        trend=calculate_trend(in_window),
        insights=_insights(in_window, average, period),
    )
