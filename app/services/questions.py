from __future__ import annotations

import math
from typing import Mapping, Optional, Protocol, Sequence

from app.domain.checkin import Answer, AnswerValue, CheckInRecord, Question, QuestionKind

FOLLOW_UP_THRESHOLD = 50

FOLLOW_UP = Question(
    id="q0",
    text="I noticed things were challenging last time. How are you feeling now?",
    kind=QuestionKind.TEXT,
)

TEMPLATES: dict[str, tuple[Question, ...]] = {
    "general": (
        Question(
            id="q1",
            text="How would you rate your overall health today?",
            kind=QuestionKind.CHOICE,
            options=("Excellent", "Good", "Fair", "Poor"),
        ),
        Question(
            id="q2",
            text="Which areas of health are you most concerned about?",
            kind=QuestionKind.MULTI_CHOICE,
            options=("Physical", "Mental", "Emotional", "Social", "Spiritual"),
        ),
    ),
    "stress": (
        Question(
            id="q1",
            text="How would you rate your current stress level on a scale of 1-10?",
            kind=QuestionKind.SCALE, min=1, max=10, reverse=True,
        ),
        Question(id="q2", text="What specific situation or thought is contributing most to this feeling?"),
        Question(
            id="q3",
            text="What's one small step you could take right now to feel a bit better?",
            required=False,
        ),
    ),
    "mood": (
        Question(
            id="q1",
            text="How would you describe your overall mood today?",
            kind=QuestionKind.CHOICE,
            options=("Great", "Good", "Okay", "Low", "Very low"),
        ),
        Question(
            id="q2",
            text="What emotions have been most present for you recently?",
            kind=QuestionKind.MULTI_CHOICE,
            options=("Joy", "Calm", "Gratitude", "Anxiety", "Sadness", "Anger"),
        ),
        Question(id="q3", text="What activities usually help lift your spirits?", required=False),
    ),
    "sleep": (
        Question(
            id="q1",
            text="How would you rate the quality of your sleep last night?",
            kind=QuestionKind.SCALE, min=1, max=10,
        ),
        Question(
            id="q2",
            text="Did anything interrupt your sleep?",
            kind=QuestionKind.CHOICE,
            options=("No", "Once", "Several times"),
        ),
        Question(id="q3", text="How do you feel physically right now?", required=False),
    ),
    "category": (
        Question(id="q1", text="How are you doing in this area today?"),
        Question(
            id="q2",
            text="Rate your wellness in this area from 1-10",
            kind=QuestionKind.SCALE, min=1, max=10,
        ),
        Question(id="q3", text="What challenges are you facing?", required=False),
    ),
}

# substring of the category id -> template
CATEGORY_KEYWORDS = (
    ("stress", "stress"),
    ("anxiety", "stress"),
    ("mood", "mood"),
    ("mental", "mood"),
    ("sleep", "sleep"),
    ("rest", "sleep"),
)


def template_key(category_id: Optional[str]) -> str:
    if not category_id:
        return "general"
    lowered = category_id.lower()
    for keyword, key in CATEGORY_KEYWORDS:
        if keyword in lowered:
            return key
    return "category"


class QuestionGenerator(Protocol):
    """
    Decides the question sequence of a check-in and when it is complete.
    Implementations raise GeneratorError when they cannot answer.
    """

    async def first(self, category_id: Optional[str], prior_completed: Sequence[CheckInRecord]) -> Question: ...

    async def next(
        self, category_id: Optional[str], questions: Sequence[Question], answers: Mapping[str, Answer]
    ) -> Optional[Question]: ...

    async def missing(
        self, category_id: Optional[str], questions: Sequence[Question], answers: Mapping[str, Answer]
    ) -> list[str]: ...


class TemplateQuestionGenerator:
    """Fixed per-category question sets, issued one at a time."""

    def __init__(self, templates: Mapping[str, Sequence[Question]] = TEMPLATES):
        self.templates = templates

    def template_for(self, category_id: Optional[str]) -> Sequence[Question]:
        return self.templates[template_key(category_id)]

    async def first(self, category_id: Optional[str], prior_completed: Sequence[CheckInRecord]) -> Question:
        if prior_completed:
            last = prior_completed[0]
            if last.result and last.result.wellness_level < FOLLOW_UP_THRESHOLD:
                return FOLLOW_UP
        return self.template_for(category_id)[0]

    async def next(
        self, category_id: Optional[str], questions: Sequence[Question], answers: Mapping[str, Answer]
    ) -> Optional[Question]:
        issued = {q.id for q in questions}
        for q in self.template_for(category_id):
            if q.id not in issued:
                return q
        return None

    async def missing(
        self, category_id: Optional[str], questions: Sequence[Question], answers: Mapping[str, Answer]
    ) -> list[str]:
        missing = [q.id for q in questions if q.required and q.id not in answers]
        issued = {q.id for q in questions}
        missing.extend(
            q.id for q in self.template_for(category_id)
            if q.required and q.id not in issued
        )
        return missing


def validate_answer(question: Question, value: AnswerValue) -> Optional[str]:
    """
    Check `value` against the question kind. Returns an error message, or None if valid.
    """
    if question.kind is QuestionKind.MULTI_CHOICE:
        if not isinstance(value, list) or not value:
            return "Answer must be a non-empty list of options"
        if len(set(value)) != len(value):
            return "Options must not repeat"
        bad = [v for v in value if v not in question.options]
        if bad:
            return f"Invalid option(s): {', '.join(map(str, bad))}"
        return None

    if not isinstance(value, str):
        return "Answer must be a single value"

    if question.kind is QuestionKind.TEXT:
        if not value.strip():
            return "Answer must be non-empty text"
    elif question.kind is QuestionKind.SCALE:
        try:
            number = float(value)
        except ValueError:
            return "Answer must be a number"
        if not math.isfinite(number):
            return "Answer must be a number"
        if question.min is not None and number < question.min:
            return f"Answer must be at least {question.min:g}"
        if question.max is not None and number > question.max:
            return f"Answer must be at most {question.max:g}"
    elif question.kind is QuestionKind.CHOICE:
        if value not in question.options:
            return "Invalid option selected"
    return None
