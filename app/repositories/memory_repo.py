from __future__ import annotations

import asyncio
import dataclasses
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Sequence
from uuid import UUID

from app.domain.checkin import CheckInRecord, CheckInState, RecommendationRecord, slot_key
from app.domain.errors import DuplicateInProgress
from app.repositories.checkin_repo import CheckInRepository, check_patch


class InMemoryCheckInRepository(CheckInRepository):
    """
    Process-local repository with the same guarantees as the SQL one:
    a lock serialises every mutation, the in-progress slot is unique, and
    `transaction()` restores the pre-transaction snapshot on any failure.

    Used by the test-suite and for running the API without a database.
    """

    def __init__(self):
        self._checkins: dict[UUID, CheckInRecord] = {}
        self._recommendations: list[RecommendationRecord] = []
        self._lock = asyncio.Lock()
        self._tx_lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self._tx_lock:
            snapshot = (dict(self._checkins), list(self._recommendations))
            try:
                yield
            except BaseException:
                self._checkins, self._recommendations = snapshot
                raise

    async def get_by_id(self, checkin_id: UUID) -> Optional[CheckInRecord]:
        return _copy(self._checkins.get(checkin_id))

    async def get_in_progress_for(self, user_id: UUID, category_id: Optional[str]) -> Optional[CheckInRecord]:
        key = slot_key(category_id)
        for record in self._checkins.values():
            if record.user_id == user_id and record.slot_key == key and record.state is CheckInState.IN_PROGRESS:
                return _copy(record)
        return None

    async def create(self, record: CheckInRecord) -> CheckInRecord:
        async with self._lock:
            if record.state is CheckInState.IN_PROGRESS:
                for existing in self._checkins.values():
                    if (existing.user_id == record.user_id
                            and existing.slot_key == record.slot_key
                            and existing.state is CheckInState.IN_PROGRESS):
                        raise DuplicateInProgress(str(record.user_id))
            self._checkins[record.id] = _copy(record)
        return _copy(record)

    async def cas_update(self, checkin_id: UUID, expected_version: int, patch: dict[str, Any]) -> Optional[CheckInRecord]:
        check_patch(patch)
        async with self._lock:
            current = self._checkins.get(checkin_id)
            if current is None or current.version != expected_version:
                return None
            values = {k: dict(v) if isinstance(v, dict) else v for k, v in patch.items()}
            updated = dataclasses.replace(current, version=expected_version + 1, **values)
            self._checkins[checkin_id] = updated
        return _copy(updated)

    async def insert_recommendations(self, batch: Sequence[RecommendationRecord]) -> None:
        async with self._lock:
            self._recommendations.extend(batch)

    async def list_recommendations(self, checkin_id: UUID) -> list[RecommendationRecord]:
        recs = [r for r in self._recommendations if r.checkin_id == checkin_id]
        return sorted(recs, key=lambda r: (-r.importance, r.title))

    async def list_completed_for(self, user_id: UUID, category_id: Optional[str], limit: int = 3) -> list[CheckInRecord]:
        key = slot_key(category_id)
        done = [
            r for r in self._checkins.values()
            if r.user_id == user_id and r.slot_key == key and r.state is CheckInState.COMPLETED
        ]
        done.sort(key=lambda r: r.completed_at, reverse=True)
        return [_copy(r) for r in done[:limit]]

    async def list_for_user(self, user_id: UUID, state: Optional[CheckInState] = None, limit: int = 20) -> list[CheckInRecord]:
        rows = [
            r for r in self._checkins.values()
            if r.user_id == user_id and (state is None or r.state is CheckInState(state))
        ]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return [_copy(r) for r in rows[:limit]]

    async def list_completed_since(self, user_id: UUID, since: datetime) -> list[CheckInRecord]:
        rows = [
            r for r in self._checkins.values()
            if r.user_id == user_id and r.state is CheckInState.COMPLETED and r.completed_at >= since
        ]
        rows.sort(key=lambda r: r.completed_at)
        return [_copy(r) for r in rows]

    # test helpers
    def count(self) -> int:
        return len(self._checkins)

    def all_recommendations(self) -> list[RecommendationRecord]:
        return list(self._recommendations)


def _copy(record: Optional[CheckInRecord]) -> Optional[CheckInRecord]:
    if record is None:
        return None
    # answers is the only mutable field
    return dataclasses.replace(record, answers=dict(record.answers))
