"""
Pytest configuration and shared fixtures for all tests.
"""
import itertools
import os
import uuid
from typing import AsyncGenerator
from datetime import datetime, timedelta, timezone

# Settings are read at import time; point them at SQLite before the app loads.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_ENV"] = "dev"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["QUESTION_GENERATOR"] = "template"

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.db.init_db import init_db
from app.main import create_app
from app.repositories.checkin_repo import SqlCheckInRepository
from app.repositories.memory_repo import InMemoryCheckInRepository
from app.services.checkin import CheckInService
from app.services.checkin_engine import CheckInEngine
from app.services.questions import TemplateQuestionGenerator


@pytest.fixture
def test_user_id() -> uuid.UUID:
    """Generate a test user ID."""
    return uuid.UUID("123e4567-e89b-12d3-a456-426614174000")


@pytest.fixture
def another_user_id() -> uuid.UUID:
    """Generate another test user ID for multi-user tests."""
    return uuid.UUID("223e4567-e89b-12d3-a456-426614174001")


@pytest.fixture
def mock_auth_user(test_user_id):
    """Mock authenticated user."""
    return {"user_id": str(test_user_id), "role": "authenticated", "email": "test@example.com"}


@pytest.fixture
def utc_now():
    """A fixed 'now' for deterministic timestamps."""
    return datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(utc_now):
    """Clock that advances one minute per reading, starting at utc_now."""
    ticks = itertools.count()
    return lambda: utc_now + timedelta(minutes=next(ticks))


@pytest.fixture
def memory_repo() -> InMemoryCheckInRepository:
    return InMemoryCheckInRepository()


@pytest.fixture
def generator() -> TemplateQuestionGenerator:
    return TemplateQuestionGenerator()


@pytest.fixture
def checkin_engine(memory_repo, generator, clock) -> CheckInEngine:
    """Engine over the in-memory repository and the template questions."""
    return CheckInEngine(memory_repo, generator, clock=clock, timeout=2.0)


@pytest.fixture
async def sql_engine(tmp_path):
    """SQLite database file with the check-in tables created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'checkins.db'}",
        poolclass=NullPool,
        echo=False,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(sql_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a new database session for a test."""
    SessionLocal = async_sessionmaker(sql_engine, class_=AsyncSession, expire_on_commit=False)
    async with SessionLocal() as session:
        yield session


@pytest.fixture
def sql_repo(db_session) -> SqlCheckInRepository:
    return SqlCheckInRepository(db_session)


@pytest.fixture
async def client(checkin_engine, mock_auth_user) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with mocked authentication and an in-memory check-in service."""
    app = create_app()

    async def override_auth():
        return mock_auth_user

    def override_service():
        return CheckInService(checkin_engine)

    from app.api.deps import get_checkin_service
    from app.core.security import get_current_user

    app.dependency_overrides[get_current_user] = override_auth
    app.dependency_overrides[get_checkin_service] = override_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def _completion(content: str) -> dict:
    return {
        "id": "chatcmpl-test123",
        "object": "chat.completion",
        "created": 1234567890,
        "model": "gpt-4o-mini",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop"
            }
        ],
        "usage": {"prompt_tokens": 50, "completion_tokens": 20, "total_tokens": 70}
    }


@pytest.fixture
def mock_openai_response():
    """Mock OpenAI API response carrying a next question."""
    return _completion(
        '{"done": false, "question": {"text": "How rested do you feel?", "kind": "scale", "min": 1, "max": 10}}'
    )


@pytest.fixture
def mock_openai_done_response():
    """Mock OpenAI API response ending the check-in."""
    return _completion('{"done": true}')
