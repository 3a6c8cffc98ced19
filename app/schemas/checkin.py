from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr
from typing import Literal, Optional, Union
from uuid import UUID
from datetime import datetime
from app.domain.checkin import CheckInState, QuestionKind
from app.schemas.common import TimeStamped

class CheckinStart(BaseModel):
    category_id: str | None = Field(default=None, max_length=100)

class AnswerSubmit(BaseModel):
    question_id: str = Field(min_length=1, max_length=64)
    # scale answers may arrive as JSON numbers; booleans are rejected
    value: Union[StrictStr, StrictInt, StrictFloat, list[StrictStr]]
    explanation: str | None = Field(default=None, max_length=2000)
    version: int = Field(ge=1)

class QuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    text: str
    kind: QuestionKind
    options: list[str] = []
    min: float | None = None
    max: float | None = None
    required: bool = True

class AnswerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    question_id: str
    value: Union[str, list[str]]
    explanation: str | None = None
    answered_at: datetime

class ResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    wellness_level: int = Field(ge=0, le=100)
    summary: str
    insight: str
    brief: str

class CheckinOut(TimeStamped):
    checkin_id: UUID
    category_id: str | None = None
    state: CheckInState
    version: int
    started_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    duration_minutes: int | None = None
    questions: list[QuestionOut]
    answers: list[AnswerOut]
    result: ResultOut | None = None

class CheckinList(BaseModel):
    checkins: list[CheckinOut]

class CheckinStartOut(BaseModel):
    checkin: CheckinOut
    question: Optional[QuestionOut] = None
    resumed: bool

class AnswerOutcomeOut(BaseModel):
    checkin: CheckinOut
    next_question: Optional[QuestionOut] = None
    done: bool

class RecommendationOut(TimeStamped):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    category_id: str | None = None
    title: str
    text: str
    action: str | None = None
    why: str | None = None
    importance: int = Field(ge=0, le=10)

class RecommendationList(BaseModel):
    recommendations: list[RecommendationOut]

class CompleteOut(BaseModel):
    checkin: CheckinOut
    recommendations: list[RecommendationOut]

class SummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period: Literal["week", "month", "year"]
    start: datetime
    end: datetime
    total_checkins: int
    average_wellness_level: float
    category_breakdown: dict[str, int]
    trend: Literal["improving", "stable", "declining", "insufficient_data"]
    insights: list[str]
