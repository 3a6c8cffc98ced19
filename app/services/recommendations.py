from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid5

from app.domain.checkin import RecommendationRecord, ScoreResult
from app.services.questions import template_key
from app.services.scoring import category_label

LOW_LEVEL = 50

TIPS = {
    "stress": ("Breathe 4-7-8", "Try the 4-7-8 breathing technique: inhale for 4, hold for 7, exhale for 8."),
    "mood": ("Note three good things", "Write down three things you're grateful for today."),
    "sleep": ("Protect your wind-down", "Avoid screens for 1 hour before bed and keep your bedroom cool and dark."),
    "general": ("Pause and breathe", "Take three deep breaths and focus on the present moment."),
    "category": ("Be kind to yourself", "Do something kind for yourself today. This feeling is temporary."),
}


def build(
    user_id: UUID,
    category_id: Optional[str],
    checkin_id: UUID,
    result: ScoreResult,
    created_at: datetime,
) -> list[RecommendationRecord]:
    """
    Turn a score into recommendations. Pure: ids are derived from the check-in id
    and position, so the same inputs always give the same records.
    """
    label = category_label(category_id)
    if result.wellness_level < LOW_LEVEL:
        tip_title, tip_text = TIPS[template_key(category_id)]
        drafts = [
            (
                f"Make time for {label}",
                f"Consider setting aside 10 minutes today for {label} focused activities.",
                "Block 10 minutes in your calendar today",
                "Small, regular investments are easier to sustain than big changes",
                8,
            ),
            (
                "Try the 5-4-3-2-1 grounding technique",
                "When you feel overwhelmed, name 5 things you see, 4 you can touch, "
                "3 you hear, 2 you smell and 1 you taste.",
                "Practice it once today, even while calm",
                "Grounding interrupts spirals of anxious thought",
                7,
            ),
            (tip_title, tip_text, None, None, 6),
        ]
    else:
        drafts = [
            (
                "Keep up the good work",
                f"Keep up the good work with {label}!",
                "Repeat one thing that worked for you this week",
                "Consistency turns good days into habits",
                7,
            ),
            (
                "Share what works",
                "Consider sharing your successful strategies with others.",
                "Tell a friend one thing that helped you",
                "Explaining a strategy to someone else reinforces it",
                6,
            ),
        ]

    return [
        RecommendationRecord(
            id=uuid5(checkin_id, f"recommendation-{i}"),
            user_id=user_id,
            checkin_id=checkin_id,
            category_id=category_id,
            title=title,
            text=text,
            action=action,
            why=why,
            importance=importance,
            created_at=created_at,
        )
        for i, (title, text, action, why, importance) in enumerate(drafts)
    ]
