"""
Unit tests for app.services.questions module.
"""
import uuid
from datetime import datetime, timezone

import pytest

from app.domain.checkin import Answer, CheckInRecord, CheckInState, Question, QuestionKind, ScoreResult
from app.services.questions import (
    FOLLOW_UP,
    TEMPLATES,
    TemplateQuestionGenerator,
    template_key,
    validate_answer,
)

AT = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _completed(level: int) -> CheckInRecord:
    return CheckInRecord(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        category_id=None,
        state=CheckInState.COMPLETED,
        version=4,
        created_at=AT,
        started_at=AT,
        updated_at=AT,
        completed_at=AT,
        result=ScoreResult(wellness_level=level, summary="", insight="", brief=""),
    )


class TestTemplateKey:
    @pytest.mark.parametrize("category_id,expected", [
        (None, "general"),
        ("", "general"),
        ("Stress-Relief", "stress"),
        ("anxiety", "stress"),
        ("mental-health", "mood"),
        ("sleep", "sleep"),
        ("nutrition", "category"),
    ])
    def test_template_key(self, category_id, expected):
        assert template_key(category_id) == expected


class TestTemplateQuestionGenerator:
    """Test the template question sequence."""

    async def test_first_question(self):
        gen = TemplateQuestionGenerator()

        assert (await gen.first(None, [])).id == "q1"
        assert (await gen.first("sleep", [])).kind is QuestionKind.SCALE

    async def test_follow_up_after_low_score(self):
        gen = TemplateQuestionGenerator()

        assert await gen.first(None, [_completed(30), _completed(90)]) == FOLLOW_UP
        assert (await gen.first(None, [_completed(90), _completed(30)])).id == "q1"

    async def test_next_walks_the_template(self):
        gen = TemplateQuestionGenerator()
        questions = TEMPLATES["mood"]

        assert (await gen.next("mood", questions[:1], {})).id == "q2"
        assert (await gen.next("mood", questions[:2], {})).id == "q3"
        assert await gen.next("mood", questions, {}) is None

    async def test_follow_up_then_template(self):
        gen = TemplateQuestionGenerator()

        nxt = await gen.next(None, (FOLLOW_UP,), {})

        assert nxt.id == "q1"

    async def test_missing(self):
        gen = TemplateQuestionGenerator()
        questions = TEMPLATES["stress"]
        answers = {"q1": Answer(question_id="q1", value="3", answered_at=AT)}

        # q3 is optional
        assert await gen.missing("stress", questions, answers) == ["q2"]
        assert await gen.missing("stress", questions[:1], answers) == ["q2"]
        assert await gen.missing("stress", (), {}) == ["q1", "q2"]


class TestValidateAnswer:
    """Test answer validation per question kind."""

    def test_text(self):
        q = Question(id="q1", text="How?")

        assert validate_answer(q, "fine") is None
        assert validate_answer(q, "   ") is not None
        assert validate_answer(q, ["fine"]) is not None

    def test_scale(self):
        q = Question(id="q1", text="Rate", kind=QuestionKind.SCALE, min=1, max=10)

        assert validate_answer(q, "7") is None
        assert validate_answer(q, "7.5") is None
        assert validate_answer(q, "0") == "Answer must be at least 1"
        assert validate_answer(q, "11") == "Answer must be at most 10"
        assert validate_answer(q, "seven") == "Answer must be a number"
        assert validate_answer(q, "nan") == "Answer must be a number"

    def test_choice(self):
        q = TEMPLATES["general"][0]

        assert validate_answer(q, "Good") is None
        assert validate_answer(q, "good") == "Invalid option selected"

    def test_multi_choice(self):
        q = TEMPLATES["general"][1]

        assert validate_answer(q, ["Physical", "Mental"]) is None
        assert validate_answer(q, []) is not None
        assert validate_answer(q, "Physical") is not None
        assert validate_answer(q, ["Physical", "Physical"]) == "Options must not repeat"
        assert validate_answer(q, ["Financial"]) == "Invalid option(s): Financial"
