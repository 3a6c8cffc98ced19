"""
Check-in lifecycle: start, answer, complete, abort.

Every mutation is a compare-and-swap on the record's `version` made inside a
repository transaction, so concurrent callers can race freely: the loser gets
a Conflict (or, for complete/abort, the winner's outcome) and nothing is
half-written. Expected failures are returned as `Result` values; only
unexpected storage errors propagate.
"""
from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Optional, TypeVar
from uuid import UUID, uuid4

from app.core.config import settings
from app.domain.checkin import (
    Answer,
    AnswerValue,
    CheckInRecord,
    CheckInState,
    Question,
    RecommendationRecord,
)
from app.domain.errors import DuplicateInProgress, ErrorKind, GeneratorError, Result
from app.repositories.checkin_repo import CheckInRepository
from app.services import analytics, recommendations, scoring
from app.services.clock import Clock, duration_text, system_clock
from app.services.questions import QuestionGenerator, validate_answer
from app.utils.time import period_start

logger = logging.getLogger(__name__)

T = TypeVar("T")

PRIOR_CHECKINS = 3


@dataclass(slots=True, frozen=True)
class StartOutcome:
    checkin: CheckInRecord
    question: Optional[Question]
    resumed: bool


@dataclass(slots=True, frozen=True)
class AnswerOutcome:
    checkin: CheckInRecord
    next_question: Optional[Question]

    @property
    def ready_to_complete(self) -> bool:
        return self.next_question is None


@dataclass(slots=True, frozen=True)
class CompleteOutcome:
    checkin: CheckInRecord
    recommendations: list[RecommendationRecord]


def _storage_bounded(fn):
    """Turn a storage timeout anywhere in the operation into a TIMEOUT result."""
    @functools.wraps(fn)
    async def wrapper(self: "CheckInEngine", *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except asyncio.TimeoutError:
            logger.error("Storage timed out after %.1fs in %s", self.timeout, fn.__name__)
            return Result.failure(ErrorKind.TIMEOUT, "Storage did not respond in time")
    return wrapper


class CheckInEngine:
    def __init__(
        self,
        repo: CheckInRepository,
        generator: QuestionGenerator,
        clock: Clock = system_clock,
        timeout: Optional[float] = None,
    ):
        self.repo = repo
        self.generator = generator
        self.clock = clock
        self.timeout = timeout if timeout is not None else settings.STORAGE_TIMEOUT_SECONDS

    async def _io(self, aw: Awaitable[T]) -> T:
        return await asyncio.wait_for(aw, self.timeout)

    async def _owned(self, user_id: UUID, checkin_id: UUID) -> Optional[CheckInRecord]:
        record = await self._io(self.repo.get_by_id(checkin_id))
        # someone else's check-in looks exactly like a missing one
        if record is None or record.user_id != user_id:
            return None
        return record

    async def _create(self, record: CheckInRecord) -> CheckInRecord:
        async with self.repo.transaction():
            return await self.repo.create(record)

    async def _cas(self, checkin_id: UUID, expected_version: int, patch: dict[str, Any]) -> Optional[CheckInRecord]:
        async with self.repo.transaction():
            return await self.repo.cas_update(checkin_id, expected_version, patch)

    async def _commit_completion(
        self, record: CheckInRecord, patch: dict[str, Any], batch: list[RecommendationRecord]
    ) -> Optional[CheckInRecord]:
        async with self.repo.transaction():
            updated = await self.repo.cas_update(record.id, record.version, patch)
            if updated is None:
                return None
            await self.repo.insert_recommendations(batch)
            return updated

    @staticmethod
    def _resumed(record: CheckInRecord) -> StartOutcome:
        pending = record.pending_questions()
        return StartOutcome(checkin=record, question=pending[0] if pending else None, resumed=True)

    # -- lifecycle ---------------------------------------------------------

    @_storage_bounded
    async def start(self, user_id: UUID, category_id: Optional[str] = None) -> Result[StartOutcome]:
        """
        Resume the caller's in-progress check-in for the category, or create one
        with its first question issued.
        """
        category_id = category_id or None
        existing = await self._io(self.repo.get_in_progress_for(user_id, category_id))
        if existing is not None:
            logger.info("Resuming check-in %s for user %s", existing.id, user_id)
            return Result.success(self._resumed(existing))

        prior = await self._io(self.repo.list_completed_for(user_id, category_id, limit=PRIOR_CHECKINS))
        try:
            question = await self.generator.first(category_id, prior)
        except GeneratorError as e:
            logger.warning("Question generator failed on start for user %s: %s", user_id, e)
            return Result.failure(ErrorKind.GENERATOR_FAILURE, "Could not prepare the first question")

        now = self.clock()
        record = CheckInRecord(
            id=uuid4(),
            user_id=user_id,
            category_id=category_id,
            state=CheckInState.IN_PROGRESS,
            version=1,
            created_at=now,
            started_at=now,
            updated_at=now,
            questions=(question,),
        )
        try:
            created = await self._io(self._create(record))
        except DuplicateInProgress:
            # lost the find-or-create race; hand back the winner
            winner = await self._io(self.repo.get_in_progress_for(user_id, category_id))
            if winner is None:
                return Result.failure(ErrorKind.CONFLICT, "Check-in changed concurrently, retry")
            logger.info("Concurrent start for user %s resolved to check-in %s", user_id, winner.id)
            return Result.success(self._resumed(winner))

        logger.info("Started check-in %s for user %s (slot %s)", created.id, user_id, created.slot_key)
        return Result.success(StartOutcome(checkin=created, question=question, resumed=False))

    @_storage_bounded
    async def answer(
        self,
        user_id: UUID,
        checkin_id: UUID,
        question_id: str,
        value: AnswerValue,
        explanation: Optional[str] = None,
        *,
        expected_version: int,
    ) -> Result[AnswerOutcome]:
        """
        Record (or replace) the answer to an issued question and issue the next one.
        The answer and any newly issued question land in a single versioned write.
        """
        record = await self._owned(user_id, checkin_id)
        if record is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Check-in not found")
        if record.state.is_terminal:
            return Result.failure(ErrorKind.INVALID_STATE_TRANSITION, f"Check-in is {record.state.value}")
        question = record.question(question_id)
        if question is None:
            return Result.failure(ErrorKind.UNKNOWN_QUESTION, f"Question {question_id} was not issued")
        problem = validate_answer(question, value)
        if problem:
            return Result.failure(ErrorKind.INVALID_ANSWER, problem)
        if record.version != expected_version:
            return Result.failure(ErrorKind.CONFLICT, "Check-in was modified, reload and retry")

        now = self.clock()
        answers = dict(record.answers)
        answers[question_id] = Answer(
            question_id=question_id,
            value=list(value) if isinstance(value, list) else value,
            answered_at=now,
            explanation=explanation,
        )

        questions = record.questions
        pending = [q for q in questions if q.id not in answers]
        if pending:
            next_question: Optional[Question] = pending[0]
        else:
            try:
                next_question = await self.generator.next(record.category_id, questions, answers)
            except GeneratorError as e:
                logger.warning("Question generator failed for check-in %s: %s", record.id, e)
                return Result.failure(ErrorKind.GENERATOR_FAILURE, "Could not prepare the next question")
            if next_question is not None:
                if record.question(next_question.id) is not None:
                    logger.warning("Generator reissued question %s on check-in %s", next_question.id, record.id)
                    return Result.failure(ErrorKind.GENERATOR_FAILURE, "Could not prepare the next question")
                questions = questions + (next_question,)

        updated = await self._io(self._cas(
            record.id,
            expected_version,
            {"answers": answers, "questions": questions, "updated_at": now},
        ))
        if updated is None:
            logger.warning("Version conflict answering check-in %s at version %d", record.id, expected_version)
            return Result.failure(ErrorKind.CONFLICT, "Check-in was modified, reload and retry")

        logger.info("Check-in %s answered %s (version %d)", updated.id, question_id, updated.version)
        return Result.success(AnswerOutcome(checkin=updated, next_question=next_question))

    @_storage_bounded
    async def complete(self, user_id: UUID, checkin_id: UUID) -> Result[CompleteOutcome]:
        """
        Score the check-in and persist the result together with its
        recommendations. Completing twice returns the stored outcome.
        """
        record = await self._owned(user_id, checkin_id)
        if record is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Check-in not found")
        if record.state is CheckInState.COMPLETED:
            stored = await self._io(self.repo.list_recommendations(record.id))
            return Result.success(CompleteOutcome(checkin=record, recommendations=stored))
        if record.state is CheckInState.ABORTED:
            return Result.failure(ErrorKind.INVALID_STATE_TRANSITION, "Check-in was aborted")

        try:
            missing = await self.generator.missing(record.category_id, record.questions, record.answers)
        except GeneratorError as e:
            logger.warning("Question generator failed completing check-in %s: %s", record.id, e)
            return Result.failure(ErrorKind.GENERATOR_FAILURE, "Could not check remaining questions")
        if missing:
            return Result.failure(
                ErrorKind.INCOMPLETE_ANSWERS,
                f"{len(missing)} question(s) still need an answer",
                missing=tuple(missing),
            )

        result = scoring.score(record.category_id, record.questions, record.answers)
        now = self.clock()
        batch = recommendations.build(record.user_id, record.category_id, record.id, result, now)
        patch = {
            "state": CheckInState.COMPLETED,
            "result": result,
            "completed_at": now,
            "updated_at": now,
        }

        updated = await self._io(self._commit_completion(record, patch, batch))
        if updated is None:
            current = await self._io(self.repo.get_by_id(record.id))
            if current is not None and current.state is CheckInState.COMPLETED:
                stored = await self._io(self.repo.list_recommendations(record.id))
                return Result.success(CompleteOutcome(checkin=current, recommendations=stored))
            logger.warning("Version conflict completing check-in %s", record.id)
            return Result.failure(ErrorKind.CONFLICT, "Check-in was modified, reload and retry")

        logger.info(
            "Completed check-in %s for user %s in %s: level %d, %d recommendation(s)",
            updated.id, user_id, duration_text(updated.started_at, now), result.wellness_level, len(batch),
        )
        return Result.success(CompleteOutcome(checkin=updated, recommendations=batch))

    @_storage_bounded
    async def abort(self, user_id: UUID, checkin_id: UUID) -> Result[CheckInRecord]:
        record = await self._owned(user_id, checkin_id)
        if record is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Check-in not found")
        if record.state is CheckInState.ABORTED:
            return Result.success(record)
        if record.state is CheckInState.COMPLETED:
            return Result.failure(ErrorKind.INVALID_STATE_TRANSITION, "Check-in is already completed")

        now = self.clock()
        updated = await self._io(self._cas(
            record.id,
            record.version,
            {"state": CheckInState.ABORTED, "completed_at": now, "updated_at": now},
        ))
        if updated is None:
            current = await self._io(self.repo.get_by_id(record.id))
            if current is not None and current.state is CheckInState.ABORTED:
                return Result.success(current)
            if current is not None and current.state is CheckInState.COMPLETED:
                return Result.failure(ErrorKind.INVALID_STATE_TRANSITION, "Check-in is already completed")
            logger.warning("Version conflict aborting check-in %s", record.id)
            return Result.failure(ErrorKind.CONFLICT, "Check-in was modified, reload and retry")

        logger.info("Aborted check-in %s for user %s", updated.id, user_id)
        return Result.success(updated)

    # -- reads -------------------------------------------------------------

    @_storage_bounded
    async def get(self, user_id: UUID, checkin_id: UUID) -> Result[CheckInRecord]:
        record = await self._owned(user_id, checkin_id)
        if record is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Check-in not found")
        return Result.success(record)

    @_storage_bounded
    async def list_for_user(
        self, user_id: UUID, state: Optional[CheckInState] = None, limit: int = 20
    ) -> Result[list[CheckInRecord]]:
        rows = await self._io(self.repo.list_for_user(user_id, state=state, limit=limit))
        return Result.success(rows)

    @_storage_bounded
    async def recommendations_for(self, user_id: UUID, checkin_id: UUID) -> Result[list[RecommendationRecord]]:
        record = await self._owned(user_id, checkin_id)
        if record is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Check-in not found")
        return Result.success(await self._io(self.repo.list_recommendations(record.id)))

    @_storage_bounded
    async def summary(self, user_id: UUID, period: str = "week") -> Result[analytics.Summary]:
        now: datetime = self.clock()
        since = period_start(period, now=now)
        rows = await self._io(self.repo.list_completed_since(user_id, since))
        return Result.success(analytics.summarize(rows, period, now))
