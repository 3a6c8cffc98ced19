"""
Plain data types shared by the check-in engine, its repositories and the
pure scoring/recommendation functions. Nothing here touches I/O.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union
from uuid import UUID

from app.utils.time import parse_iso

GENERAL_SLOT = "general"

AnswerValue = Union[str, list[str]]


def slot_key(category_id: Optional[str]) -> str:
    """Key of the one-in-progress-per-slot constraint; a null category is the general slot."""
    return category_id if category_id else GENERAL_SLOT


class CheckInState(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self is not CheckInState.IN_PROGRESS


class QuestionKind(str, Enum):
    TEXT = "text"
    SCALE = "scale"
    CHOICE = "choice"
    MULTI_CHOICE = "multi_choice"


@dataclass(slots=True, frozen=True)
class Question:
    id: str
    text: str
    kind: QuestionKind = QuestionKind.TEXT
    options: tuple[str, ...] = ()
    min: Optional[float] = None
    max: Optional[float] = None
    required: bool = True
    # higher scale value means worse wellbeing (e.g. stress)
    reverse: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "kind": self.kind.value,
            "options": list(self.options),
            "min": self.min,
            "max": self.max,
            "required": self.required,
            "reverse": self.reverse,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Question":
        return cls(
            id=data["id"],
            text=data["text"],
            kind=QuestionKind(data.get("kind", "text")),
            options=tuple(data.get("options") or ()),
            min=data.get("min"),
            max=data.get("max"),
            required=data.get("required", True),
            reverse=data.get("reverse", False),
        )


@dataclass(slots=True, frozen=True)
class Answer:
    question_id: str
    value: AnswerValue
    answered_at: datetime
    explanation: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "question_id": self.question_id,
            "value": list(self.value) if isinstance(self.value, (list, tuple)) else self.value,
            "explanation": self.explanation,
            "answered_at": self.answered_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Answer":
        return cls(
            question_id=data["question_id"],
            value=data["value"],
            explanation=data.get("explanation"),
            answered_at=parse_iso(data["answered_at"]),
        )


@dataclass(slots=True, frozen=True)
class ScoreResult:
    wellness_level: int
    summary: str
    insight: str
    brief: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "wellness_level": self.wellness_level,
            "summary": self.summary,
            "insight": self.insight,
            "brief": self.brief,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScoreResult":
        return cls(
            wellness_level=int(data["wellness_level"]),
            summary=data["summary"],
            insight=data["insight"],
            brief=data["brief"],
        )


@dataclass(slots=True, frozen=True)
class CheckInRecord:
    id: UUID
    user_id: UUID
    category_id: Optional[str]
    state: CheckInState
    version: int
    created_at: datetime
    started_at: datetime
    updated_at: datetime
    questions: tuple[Question, ...] = ()
    # insertion order is answer order
    answers: dict[str, Answer] = field(default_factory=dict)
    completed_at: Optional[datetime] = None
    result: Optional[ScoreResult] = None

    @property
    def slot_key(self) -> str:
        return slot_key(self.category_id)

    def question(self, question_id: str) -> Optional[Question]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None

    def pending_questions(self) -> list[Question]:
        """Issued questions that have no answer yet, in issue order."""
        return [q for q in self.questions if q.id not in self.answers]


@dataclass(slots=True, frozen=True)
class RecommendationRecord:
    id: UUID
    user_id: UUID
    checkin_id: UUID
    title: str
    text: str
    importance: int
    created_at: datetime
    category_id: Optional[str] = None
    action: Optional[str] = None
    why: Optional[str] = None
