from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import CheckIn, Recommendation
from app.domain.checkin import (
    Answer,
    CheckInRecord,
    CheckInState,
    Question,
    RecommendationRecord,
    ScoreResult,
    slot_key,
)
from app.domain.errors import DuplicateInProgress
from app.utils.time import ensure_aware

logger = logging.getLogger(__name__)

# Fields a CAS patch may touch; id, owner, category and version are not patchable.
PATCHABLE = {"state", "questions", "answers", "result", "completed_at", "updated_at"}


class CheckInRepository(ABC):
    """
    Storage contract for check-ins and their recommendations.

    `cas_update` is the only mutation path for an existing check-in: it applies
    `patch` and bumps the version only if the stored version still equals
    `expected_version`, returning None otherwise. Writes made inside
    `transaction()` commit together or not at all.
    """

    @abstractmethod
    def transaction(self): ...

    @abstractmethod
    async def get_by_id(self, checkin_id: UUID) -> Optional[CheckInRecord]: ...

    @abstractmethod
    async def get_in_progress_for(self, user_id: UUID, category_id: Optional[str]) -> Optional[CheckInRecord]: ...

    @abstractmethod
    async def create(self, record: CheckInRecord) -> CheckInRecord: ...

    @abstractmethod
    async def cas_update(self, checkin_id: UUID, expected_version: int, patch: dict[str, Any]) -> Optional[CheckInRecord]: ...

    @abstractmethod
    async def insert_recommendations(self, batch: Sequence[RecommendationRecord]) -> None: ...

    @abstractmethod
    async def list_recommendations(self, checkin_id: UUID) -> list[RecommendationRecord]: ...

    @abstractmethod
    async def list_completed_for(self, user_id: UUID, category_id: Optional[str], limit: int = 3) -> list[CheckInRecord]: ...

    @abstractmethod
    async def list_for_user(self, user_id: UUID, state: Optional[CheckInState] = None, limit: int = 20) -> list[CheckInRecord]: ...

    @abstractmethod
    async def list_completed_since(self, user_id: UUID, since: datetime) -> list[CheckInRecord]: ...


def check_patch(patch: dict[str, Any]) -> None:
    unknown = set(patch) - PATCHABLE
    if unknown:
        raise ValueError(f"Unpatchable check-in fields: {sorted(unknown)}")


def _to_record(row: CheckIn) -> CheckInRecord:
    answers = [Answer.from_dict(a) for a in (row.answers or [])]
    return CheckInRecord(
        id=row.id,
        user_id=row.user_id,
        category_id=row.category_id,
        state=CheckInState(row.state),
        version=row.version,
        created_at=ensure_aware(row.created_at),
        started_at=ensure_aware(row.started_at),
        updated_at=ensure_aware(row.updated_at),
        questions=tuple(Question.from_dict(q) for q in (row.questions or [])),
        answers={a.question_id: a for a in answers},
        completed_at=ensure_aware(row.completed_at) if row.completed_at else None,
        result=ScoreResult.from_dict(row.result) if row.result else None,
    )


def _to_columns(patch: dict[str, Any]) -> dict[str, Any]:
    """Domain values -> column values (JSON-friendly lists/dicts, enum strings)."""
    values: dict[str, Any] = {}
    for key, value in patch.items():
        if key == "state":
            values[key] = CheckInState(value).value
        elif key == "questions":
            values[key] = [q.to_dict() for q in value]
        elif key == "answers":
            values[key] = [a.to_dict() for a in value.values()]
        elif key == "result":
            values[key] = value.to_dict() if value is not None else None
        else:
            values[key] = value
    return values


def _recommendation_to_record(row: Recommendation) -> RecommendationRecord:
    return RecommendationRecord(
        id=row.id,
        user_id=row.user_id,
        checkin_id=row.checkin_id,
        category_id=row.category_id,
        title=row.title,
        text=row.text,
        action=row.action,
        why=row.why,
        importance=row.importance,
        created_at=ensure_aware(row.created_at),
    )


class SqlCheckInRepository(CheckInRepository):
    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        try:
            yield
            await self.db.commit()
        except BaseException:
            await self.db.rollback()
            raise

    async def get_by_id(self, checkin_id: UUID) -> Optional[CheckInRecord]:
        res = await self.db.execute(
            select(CheckIn).where(CheckIn.id == checkin_id).execution_options(populate_existing=True)
        )
        row = res.scalar_one_or_none()
        return _to_record(row) if row else None

    async def get_in_progress_for(self, user_id: UUID, category_id: Optional[str]) -> Optional[CheckInRecord]:
        res = await self.db.execute(
            select(CheckIn)
            .where(
                CheckIn.user_id == user_id,
                CheckIn.slot_key == slot_key(category_id),
                CheckIn.state == CheckInState.IN_PROGRESS.value,
            )
            .execution_options(populate_existing=True)
        )
        row = res.scalar_one_or_none()
        return _to_record(row) if row else None

    async def create(self, record: CheckInRecord) -> CheckInRecord:
        row = CheckIn(
            id=record.id,
            user_id=record.user_id,
            category_id=record.category_id,
            slot_key=record.slot_key,
            state=record.state.value,
            questions=[q.to_dict() for q in record.questions],
            answers=[a.to_dict() for a in record.answers.values()],
            version=record.version,
            result=record.result.to_dict() if record.result else None,
            created_at=record.created_at,
            started_at=record.started_at,
            updated_at=record.updated_at,
            completed_at=record.completed_at,
        )
        self.db.add(row)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            logger.info("In-progress slot %s already taken for user %s", record.slot_key, record.user_id)
            raise DuplicateInProgress(str(record.user_id)) from exc
        return record

    async def cas_update(self, checkin_id: UUID, expected_version: int, patch: dict[str, Any]) -> Optional[CheckInRecord]:
        check_patch(patch)
        stmt = (
            update(CheckIn)
            .where(CheckIn.id == checkin_id, CheckIn.version == expected_version)
            .values(**_to_columns(patch), version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        res = await self.db.execute(stmt)
        if res.rowcount != 1:
            return None
        return await self.get_by_id(checkin_id)

    async def insert_recommendations(self, batch: Sequence[RecommendationRecord]) -> None:
        self.db.add_all([
            Recommendation(
                id=r.id,
                user_id=r.user_id,
                category_id=r.category_id,
                checkin_id=r.checkin_id,
                title=r.title,
                text=r.text,
                action=r.action,
                why=r.why,
                importance=r.importance,
                created_at=r.created_at,
            )
            for r in batch
        ])
        await self.db.flush()

    async def list_recommendations(self, checkin_id: UUID) -> list[RecommendationRecord]:
        res = await self.db.execute(
            select(Recommendation)
            .where(Recommendation.checkin_id == checkin_id)
            .order_by(Recommendation.importance.desc(), Recommendation.title)
        )
        return [_recommendation_to_record(r) for r in res.scalars()]

    async def list_completed_for(self, user_id: UUID, category_id: Optional[str], limit: int = 3) -> list[CheckInRecord]:
        res = await self.db.execute(
            select(CheckIn)
            .where(
                CheckIn.user_id == user_id,
                CheckIn.slot_key == slot_key(category_id),
                CheckIn.state == CheckInState.COMPLETED.value,
            )
            .order_by(CheckIn.completed_at.desc())
            .limit(limit)
        )
        return [_to_record(r) for r in res.scalars()]

    async def list_for_user(self, user_id: UUID, state: Optional[CheckInState] = None, limit: int = 20) -> list[CheckInRecord]:
        stmt = select(CheckIn).where(CheckIn.user_id == user_id)
        if state:
            stmt = stmt.where(CheckIn.state == CheckInState(state).value)
        stmt = stmt.order_by(CheckIn.created_at.desc()).limit(limit)
        res = await self.db.execute(stmt)
        return [_to_record(r) for r in res.scalars()]

    async def list_completed_since(self, user_id: UUID, since: datetime) -> list[CheckInRecord]:
        res = await self.db.execute(
            select(CheckIn)
            .where(
                CheckIn.user_id == user_id,
                CheckIn.state == CheckInState.COMPLETED.value,
                CheckIn.completed_at >= since,
            )
            .order_by(CheckIn.completed_at.asc())
        )
        return [_to_record(r) for r in res.scalars()]
