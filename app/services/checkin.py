from __future__ import annotations

import logging
from typing import NoReturn, Optional, TypeVar
from uuid import UUID

from fastapi import HTTPException

from app.domain.checkin import CheckInRecord, CheckInState
from app.domain.errors import CheckInError, ErrorKind, Result
from app.schemas.checkin import (
    AnswerOut,
    AnswerOutcomeOut,
    CheckinList,
    CheckinOut,
    CheckinStartOut,
    CompleteOut,
    QuestionOut,
    RecommendationList,
    RecommendationOut,
    ResultOut,
    SummaryOut,
)
from app.schemas.common import CheckinErrorResponse
from app.services.checkin_engine import CheckInEngine
from app.services.clock import duration_minutes

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ErrorKind -> (HTTP status, error_code, client-facing title)
ERROR_MAP: dict[ErrorKind, tuple[int, str, str]] = {
    ErrorKind.NOT_FOUND: (404, "NOT_FOUND", "Check-in not found"),
    ErrorKind.INVALID_STATE_TRANSITION: (409, "INVALID_STATE_TRANSITION", "Check-in cannot change to that state"),
    ErrorKind.INCOMPLETE_ANSWERS: (400, "INCOMPLETE_ANSWERS", "Check-in has unanswered questions"),
    ErrorKind.CONFLICT: (409, "VERSION_CONFLICT", "Check-in was modified concurrently"),
    ErrorKind.UNKNOWN_QUESTION: (400, "UNKNOWN_QUESTION", "Question does not belong to this check-in"),
    ErrorKind.INVALID_ANSWER: (400, "INVALID_ANSWER", "Answer is not valid for this question"),
    ErrorKind.GENERATOR_FAILURE: (502, "GENERATOR_FAILURE", "Question service unavailable"),
    ErrorKind.TIMEOUT: (504, "STORAGE_TIMEOUT", "Storage did not respond in time"),
}


def raise_for(error: CheckInError) -> NoReturn:
    status, code, title = ERROR_MAP[error.kind]
    logger.info("Check-in request rejected: %s %s (%s)", status, code, error.message)
    body = CheckinErrorResponse(
        error=title,
        detail=error.message,
        error_code=code,
        missing_question_ids=list(error.missing_question_ids) or None,
    )
    raise HTTPException(status_code=status, detail=body.model_dump(exclude_none=True))


def _unwrap(result: Result[T]) -> T:
    if result.error is not None:
        raise_for(result.error)
    return result.value  # type: ignore[return-value]


def checkin_out(record: CheckInRecord) -> CheckinOut:
    """
    Response shape for a check-in; answers are listed in the order they were given.
    """
    return CheckinOut(
        checkin_id=record.id,
        category_id=record.category_id,
        state=record.state,
        version=record.version,
        created_at=record.created_at,
        started_at=record.started_at,
        updated_at=record.updated_at,
        completed_at=record.completed_at,
        duration_minutes=duration_minutes(record.started_at, record.completed_at),
        questions=[QuestionOut.model_validate(q) for q in record.questions],
        answers=[AnswerOut.model_validate(a) for a in record.answers.values()],
        result=ResultOut.model_validate(record.result) if record.result else None,
    )


def _question_out(question) -> Optional[QuestionOut]:
    return QuestionOut.model_validate(question) if question is not None else None


class CheckInService:
    """
    HTTP-facing wrapper around CheckInEngine: converts ids, maps engine
    errors to HTTPException and shapes outcomes into response schemas.
    """

    def __init__(self, engine: CheckInEngine):
        self.engine = engine

    async def start(self, user_id: str, category_id: Optional[str] = None) -> CheckinStartOut:
        outcome = _unwrap(await self.engine.start(UUID(user_id), category_id))
        return CheckinStartOut(
            checkin=checkin_out(outcome.checkin),
            question=_question_out(outcome.question),
            resumed=outcome.resumed,
        )

    async def answer(
        self,
        user_id: str,
        checkin_id: UUID,
        *,
        question_id: str,
        value,
        explanation: Optional[str],
        version: int,
    ) -> AnswerOutcomeOut:
        if isinstance(value, (int, float)):
            value = str(value)
        outcome = _unwrap(await self.engine.answer(
            UUID(user_id), checkin_id, question_id, value, explanation, expected_version=version,
        ))
        return AnswerOutcomeOut(
            checkin=checkin_out(outcome.checkin),
            next_question=_question_out(outcome.next_question),
            done=outcome.ready_to_complete,
        )

    async def complete(self, user_id: str, checkin_id: UUID) -> CompleteOut:
        outcome = _unwrap(await self.engine.complete(UUID(user_id), checkin_id))
        return CompleteOut(
            checkin=checkin_out(outcome.checkin),
            recommendations=[RecommendationOut.model_validate(r) for r in outcome.recommendations],
        )

    async def abort(self, user_id: str, checkin_id: UUID) -> dict:
        _unwrap(await self.engine.abort(UUID(user_id), checkin_id))
        return {}

    async def get(self, user_id: str, checkin_id: UUID) -> CheckinOut:
        return checkin_out(_unwrap(await self.engine.get(UUID(user_id), checkin_id)))

    async def list_checkins(self, user_id: str, state: Optional[CheckInState] = None, limit: int = 20) -> CheckinList:
        rows = _unwrap(await self.engine.list_for_user(UUID(user_id), state=state, limit=limit))
        return CheckinList(checkins=[checkin_out(r) for r in rows])

    async def recommendations(self, user_id: str, checkin_id: UUID) -> RecommendationList:
        recs = _unwrap(await self.engine.recommendations_for(UUID(user_id), checkin_id))
        return RecommendationList(recommendations=[RecommendationOut.model_validate(r) for r in recs])

    async def summary(self, user_id: str, period: str = "week") -> SummaryOut:
        return SummaryOut.model_validate(_unwrap(await self.engine.summary(UUID(user_id), period)))
