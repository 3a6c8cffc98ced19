"""
Unit tests for app.services.checkin_engine (in-memory repository).
"""
import asyncio
import uuid
from unittest.mock import AsyncMock, Mock

import pytest

from app.domain.checkin import CheckInState
from app.domain.errors import ErrorKind, GeneratorError
from app.services.checkin_engine import CheckInEngine
from app.services.questions import TemplateQuestionGenerator


async def _start(engine, user_id, category_id=None):
    res = await engine.start(user_id, category_id)
    assert res.ok, res.error
    return res.value.checkin


async def _answer_general(engine, user_id, checkin, overall="Good", areas=("Physical", "Mental")):
    first = await engine.answer(user_id, checkin.id, "q1", overall, expected_version=checkin.version)
    assert first.ok, first.error
    second = await engine.answer(
        user_id, checkin.id, "q2", list(areas), expected_version=first.value.checkin.version
    )
    assert second.ok, second.error
    return second.value


class TestStart:
    """Test start / resume."""

    async def test_start_creates_checkin_with_first_question(self, checkin_engine, memory_repo, test_user_id):
        """A new check-in has version 1 and exactly one issued question."""
        res = await checkin_engine.start(test_user_id)

        assert res.ok
        out = res.value
        assert out.resumed is False
        assert out.checkin.state is CheckInState.IN_PROGRESS
        assert out.checkin.version == 1
        assert out.checkin.answers == {}
        assert out.question.id == "q1"
        assert [q.id for q in out.checkin.questions] == ["q1"]
        assert memory_repo.count() == 1

    async def test_start_twice_same_category_resumes(self, checkin_engine, memory_repo, test_user_id):
        """Starting again in the same category returns the same check-in."""
        first = await checkin_engine.start(test_user_id, "cat-A")
        second = await checkin_engine.start(test_user_id, "cat-A")

        assert second.value.checkin.id == first.value.checkin.id
        assert second.value.resumed is True
        assert second.value.question.id == "q1"
        assert memory_repo.count() == 1

    async def test_concurrent_starts_share_one_checkin(self, checkin_engine, memory_repo, test_user_id):
        """Racing starts all land on a single stored check-in."""
        results = await asyncio.gather(*(checkin_engine.start(test_user_id) for _ in range(10)))

        ids = {r.value.checkin.id for r in results}
        assert len(ids) == 1
        assert memory_repo.count() == 1

    async def test_categories_have_separate_slots(self, checkin_engine, memory_repo, test_user_id):
        """The general slot and a category slot are independent."""
        general = await _start(checkin_engine, test_user_id)
        stress = await _start(checkin_engine, test_user_id, "stress-relief")

        assert general.id != stress.id
        assert stress.questions[0].kind.value == "scale"
        assert memory_repo.count() == 2

    async def test_empty_category_is_general(self, checkin_engine, test_user_id):
        """An empty category string is the general slot."""
        general = await _start(checkin_engine, test_user_id)
        again = await checkin_engine.start(test_user_id, "")

        assert again.value.checkin.id == general.id
        assert again.value.checkin.category_id is None

    async def test_users_do_not_share_slots(self, checkin_engine, test_user_id, another_user_id):
        mine = await _start(checkin_engine, test_user_id)
        theirs = await _start(checkin_engine, another_user_id)

        assert mine.id != theirs.id

    async def test_start_after_abort_creates_new_checkin(self, checkin_engine, test_user_id):
        """Aborted check-ins are never resumed."""
        first = await _start(checkin_engine, test_user_id)
        await checkin_engine.abort(test_user_id, first.id)

        res = await checkin_engine.start(test_user_id)

        assert res.value.resumed is False
        assert res.value.checkin.id != first.id

    async def test_resume_returns_first_unanswered_question(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)
        await checkin_engine.answer(test_user_id, checkin.id, "q1", "Fair", expected_version=1)

        res = await checkin_engine.start(test_user_id)

        assert res.value.resumed is True
        assert res.value.question.id == "q2"

    async def test_lost_create_race_returns_winner(self, checkin_engine, memory_repo, test_user_id, monkeypatch):
        """If the slot is taken between lookup and insert, the stored check-in is returned."""
        winner = await _start(checkin_engine, test_user_id)
        real_lookup = memory_repo.get_in_progress_for
        calls = []

        async def stale_first_lookup(user_id, category_id):
            calls.append(category_id)
            if len(calls) == 1:
                return None
            return await real_lookup(user_id, category_id)

        monkeypatch.setattr(memory_repo, "get_in_progress_for", stale_first_lookup)

        res = await checkin_engine.start(test_user_id)

        assert res.ok
        assert res.value.resumed is True
        assert res.value.checkin.id == winner.id
        assert len(calls) == 2
        assert memory_repo.count() == 1

    async def test_follow_up_after_low_prior_score(self, checkin_engine, test_user_id):
        """A hard previous check-in leads with the follow-up question."""
        checkin = await _start(checkin_engine, test_user_id)
        await _answer_general(checkin_engine, test_user_id, checkin, overall="Poor", areas=("Mental",))
        done = await checkin_engine.complete(test_user_id, checkin.id)
        assert done.value.checkin.result.wellness_level < 50

        res = await checkin_engine.start(test_user_id)

        assert res.value.question.id == "q0"

    async def test_no_follow_up_after_good_prior_score(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)
        await _answer_general(checkin_engine, test_user_id, checkin, overall="Excellent")
        await checkin_engine.complete(test_user_id, checkin.id)

        res = await checkin_engine.start(test_user_id)

        assert res.value.question.id == "q1"

    async def test_generator_failure(self, memory_repo, clock, test_user_id):
        """A failing generator yields GENERATOR_FAILURE and nothing is stored."""
        failing = Mock()
        failing.first = AsyncMock(side_effect=GeneratorError("model unavailable"))
        engine = CheckInEngine(memory_repo, failing, clock=clock)

        res = await engine.start(test_user_id)

        assert not res.ok
        assert res.error.kind is ErrorKind.GENERATOR_FAILURE
        assert memory_repo.count() == 0

    async def test_storage_timeout(self, memory_repo, generator, clock, test_user_id, monkeypatch):
        """A repository call slower than the timeout yields TIMEOUT."""
        async def slow_lookup(user_id, category_id):
            await asyncio.sleep(1)

        monkeypatch.setattr(memory_repo, "get_in_progress_for", slow_lookup)
        engine = CheckInEngine(memory_repo, generator, clock=clock, timeout=0.01)

        res = await engine.start(test_user_id)

        assert res.error.kind is ErrorKind.TIMEOUT


class TestAnswer:
    """Test answer submission."""

    async def test_answer_issues_next_question(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)

        res = await checkin_engine.answer(test_user_id, checkin.id, "q1", "Good", expected_version=1)

        assert res.ok
        assert res.value.next_question.id == "q2"
        assert res.value.ready_to_complete is False
        assert res.value.checkin.version == 2
        assert [q.id for q in res.value.checkin.questions] == ["q1", "q2"]
        assert res.value.checkin.answers["q1"].value == "Good"

    async def test_last_answer_is_ready_to_complete(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)

        out = await _answer_general(checkin_engine, test_user_id, checkin)

        assert out.next_question is None
        assert out.ready_to_complete is True
        assert out.checkin.state is CheckInState.IN_PROGRESS

    async def test_replacing_answer_keeps_position(self, checkin_engine, test_user_id):
        """A re-answered question stays where it was first answered."""
        checkin = await _start(checkin_engine, test_user_id)
        out = await _answer_general(checkin_engine, test_user_id, checkin)

        res = await checkin_engine.answer(
            test_user_id, checkin.id, "q1", "Fair", "changed my mind", expected_version=out.checkin.version
        )

        assert res.ok
        assert list(res.value.checkin.answers) == ["q1", "q2"]
        assert res.value.checkin.answers["q1"].value == "Fair"
        assert res.value.checkin.answers["q1"].explanation == "changed my mind"
        assert [q.id for q in res.value.checkin.questions] == ["q1", "q2"]
        assert res.value.checkin.version == 4

    async def test_unknown_question(self, checkin_engine, memory_repo, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)

        res = await checkin_engine.answer(test_user_id, checkin.id, "q2", ["Mental"], expected_version=1)

        assert res.error.kind is ErrorKind.UNKNOWN_QUESTION
        assert (await memory_repo.get_by_id(checkin.id)).version == 1

    async def test_invalid_answer(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)

        res = await checkin_engine.answer(test_user_id, checkin.id, "q1", "Meh", expected_version=1)

        assert res.error.kind is ErrorKind.INVALID_ANSWER

    async def test_invalid_answer_checked_before_version(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)

        res = await checkin_engine.answer(test_user_id, checkin.id, "q1", "Meh", expected_version=7)

        assert res.error.kind is ErrorKind.INVALID_ANSWER

    async def test_stale_version_conflict(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)
        await checkin_engine.answer(test_user_id, checkin.id, "q1", "Good", expected_version=1)

        res = await checkin_engine.answer(test_user_id, checkin.id, "q1", "Poor", expected_version=1)

        assert res.error.kind is ErrorKind.CONFLICT

    async def test_racing_answers_one_wins(self, checkin_engine, memory_repo, test_user_id):
        """Two answers on the same version: exactly one is stored, the other conflicts."""
        checkin = await _start(checkin_engine, test_user_id)

        results = await asyncio.gather(
            checkin_engine.answer(test_user_id, checkin.id, "q1", "Good", expected_version=1),
            checkin_engine.answer(test_user_id, checkin.id, "q1", "Poor", expected_version=1),
        )

        winners = [r for r in results if r.ok]
        losers = [r for r in results if not r.ok]
        assert len(winners) == 1
        assert losers[0].error.kind is ErrorKind.CONFLICT
        stored = await memory_repo.get_by_id(checkin.id)
        assert stored.version == 2
        assert stored.answers["q1"].value == winners[0].value.checkin.answers["q1"].value

    async def test_other_users_checkin_is_not_found(self, checkin_engine, test_user_id, another_user_id):
        checkin = await _start(checkin_engine, test_user_id)

        res = await checkin_engine.answer(another_user_id, checkin.id, "q1", "Good", expected_version=1)

        assert res.error.kind is ErrorKind.NOT_FOUND

    async def test_missing_checkin_is_not_found(self, checkin_engine, test_user_id):
        res = await checkin_engine.answer(test_user_id, uuid.uuid4(), "q1", "Good", expected_version=1)

        assert res.error.kind is ErrorKind.NOT_FOUND

    async def test_state_checked_before_question(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)
        await checkin_engine.abort(test_user_id, checkin.id)

        res = await checkin_engine.answer(test_user_id, checkin.id, "q9", "x", expected_version=2)

        assert res.error.kind is ErrorKind.INVALID_STATE_TRANSITION

    async def test_generator_failure_leaves_checkin_untouched(self, memory_repo, clock, test_user_id):
        class NoNextQuestion(TemplateQuestionGenerator):
            async def next(self, category_id, questions, answers):
                raise GeneratorError("model unavailable")

        engine = CheckInEngine(memory_repo, NoNextQuestion(), clock=clock)
        checkin = await _start(engine, test_user_id)

        res = await engine.answer(test_user_id, checkin.id, "q1", "Good", expected_version=1)

        assert res.error.kind is ErrorKind.GENERATOR_FAILURE
        stored = await memory_repo.get_by_id(checkin.id)
        assert stored.version == 1
        assert stored.answers == {}

    async def test_reissued_question_id_is_generator_failure(self, memory_repo, clock, test_user_id):
        class Repeats(TemplateQuestionGenerator):
            async def next(self, category_id, questions, answers):
                return questions[0]

        engine = CheckInEngine(memory_repo, Repeats(), clock=clock)
        checkin = await _start(engine, test_user_id)

        res = await engine.answer(test_user_id, checkin.id, "q1", "Good", expected_version=1)

        assert res.error.kind is ErrorKind.GENERATOR_FAILURE


class TestComplete:
    """Test completion, scoring and recommendations."""

    async def test_general_scenario(self, checkin_engine, memory_repo, test_user_id):
        """q1 'Good' then q2 concerns, then complete."""
        checkin = await _start(checkin_engine, test_user_id)
        await _answer_general(checkin_engine, test_user_id, checkin)

        res = await checkin_engine.complete(test_user_id, checkin.id)

        assert res.ok
        done = res.value.checkin
        assert done.state is CheckInState.COMPLETED
        assert done.completed_at is not None
        assert done.version == 4
        assert 0 <= done.result.wellness_level <= 100
        assert done.result.wellness_level == 67
        assert len(res.value.recommendations) == 2
        assert len(memory_repo.all_recommendations()) == 2

    async def test_complete_twice_is_idempotent(self, checkin_engine, memory_repo, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)
        await _answer_general(checkin_engine, test_user_id, checkin)

        first = await checkin_engine.complete(test_user_id, checkin.id)
        second = await checkin_engine.complete(test_user_id, checkin.id)

        assert second.ok
        assert second.value.checkin.result == first.value.checkin.result
        assert second.value.checkin.version == first.value.checkin.version
        assert [r.id for r in second.value.recommendations] == [r.id for r in first.value.recommendations]
        assert len(memory_repo.all_recommendations()) == 2

    async def test_concurrent_completes_store_one_batch(self, checkin_engine, memory_repo, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)
        await _answer_general(checkin_engine, test_user_id, checkin)

        results = await asyncio.gather(
            checkin_engine.complete(test_user_id, checkin.id),
            checkin_engine.complete(test_user_id, checkin.id),
        )

        assert all(r.ok for r in results)
        assert results[0].value.checkin.result == results[1].value.checkin.result
        assert len(memory_repo.all_recommendations()) == 2

    async def test_complete_with_unanswered_question(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)
        await checkin_engine.answer(test_user_id, checkin.id, "q1", "Good", expected_version=1)

        res = await checkin_engine.complete(test_user_id, checkin.id)

        assert res.error.kind is ErrorKind.INCOMPLETE_ANSWERS
        assert res.error.missing_question_ids == ("q2",)

    async def test_complete_lists_unissued_template_questions(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)

        res = await checkin_engine.complete(test_user_id, checkin.id)

        assert res.error.missing_question_ids == ("q1", "q2")

    async def test_failed_recommendation_insert_rolls_back(self, checkin_engine, memory_repo, test_user_id, monkeypatch):
        """If recommendations cannot be stored, the check-in stays in progress."""
        checkin = await _start(checkin_engine, test_user_id)
        out = await _answer_general(checkin_engine, test_user_id, checkin)
        monkeypatch.setattr(memory_repo, "insert_recommendations", AsyncMock(side_effect=RuntimeError("disk full")))

        with pytest.raises(RuntimeError):
            await checkin_engine.complete(test_user_id, checkin.id)

        stored = await memory_repo.get_by_id(checkin.id)
        assert stored.state is CheckInState.IN_PROGRESS
        assert stored.result is None
        assert stored.version == out.checkin.version
        assert memory_repo.all_recommendations() == []

    async def test_complete_aborted_is_invalid(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)
        await checkin_engine.abort(test_user_id, checkin.id)

        res = await checkin_engine.complete(test_user_id, checkin.id)

        assert res.error.kind is ErrorKind.INVALID_STATE_TRANSITION

    async def test_low_level_gets_three_recommendations(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)
        await _answer_general(checkin_engine, test_user_id, checkin, overall="Poor", areas=("Mental",))

        res = await checkin_engine.complete(test_user_id, checkin.id)

        assert res.value.checkin.result.wellness_level == 0
        assert [r.importance for r in res.value.recommendations] == [8, 7, 6]

    async def test_complete_not_found_for_other_user(self, checkin_engine, test_user_id, another_user_id):
        checkin = await _start(checkin_engine, test_user_id)

        res = await checkin_engine.complete(another_user_id, checkin.id)

        assert res.error.kind is ErrorKind.NOT_FOUND


class TestAbort:
    """Test abort."""

    async def test_abort_blocks_answer_and_complete(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)

        aborted = await checkin_engine.abort(test_user_id, checkin.id)
        answer = await checkin_engine.answer(test_user_id, checkin.id, "q1", "Good", expected_version=2)
        complete = await checkin_engine.complete(test_user_id, checkin.id)
        again = await checkin_engine.abort(test_user_id, checkin.id)

        assert aborted.ok
        assert aborted.value.state is CheckInState.ABORTED
        assert answer.error.kind is ErrorKind.INVALID_STATE_TRANSITION
        assert complete.error.kind is ErrorKind.INVALID_STATE_TRANSITION
        assert again.ok
        assert again.value.version == aborted.value.version

    async def test_abort_keeps_answers(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)
        await checkin_engine.answer(test_user_id, checkin.id, "q1", "Good", expected_version=1)

        res = await checkin_engine.abort(test_user_id, checkin.id)

        assert res.value.answers["q1"].value == "Good"
        assert res.value.completed_at is not None
        assert res.value.result is None

    async def test_abort_completed_is_invalid(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)
        await _answer_general(checkin_engine, test_user_id, checkin)
        await checkin_engine.complete(test_user_id, checkin.id)

        res = await checkin_engine.abort(test_user_id, checkin.id)

        assert res.error.kind is ErrorKind.INVALID_STATE_TRANSITION

    async def test_abort_lost_race_to_abort_succeeds(self, checkin_engine, memory_repo, test_user_id, monkeypatch):
        """A CAS miss caused by a concurrent abort is still a success."""
        checkin = await _start(checkin_engine, test_user_id)
        real_cas = memory_repo.cas_update

        async def abort_sneaks_in(checkin_id, expected_version, patch):
            await real_cas(checkin_id, expected_version, patch)
            return None

        monkeypatch.setattr(memory_repo, "cas_update", abort_sneaks_in)

        res = await checkin_engine.abort(test_user_id, checkin.id)

        assert res.ok
        assert res.value.state is CheckInState.ABORTED


class TestReads:
    """Test read operations."""

    async def test_get(self, checkin_engine, test_user_id, another_user_id):
        checkin = await _start(checkin_engine, test_user_id)

        mine = await checkin_engine.get(test_user_id, checkin.id)
        theirs = await checkin_engine.get(another_user_id, checkin.id)

        assert mine.value.id == checkin.id
        assert theirs.error.kind is ErrorKind.NOT_FOUND

    async def test_list_for_user_newest_first(self, checkin_engine, test_user_id):
        first = await _start(checkin_engine, test_user_id)
        await checkin_engine.abort(test_user_id, first.id)
        second = await _start(checkin_engine, test_user_id)

        everything = await checkin_engine.list_for_user(test_user_id)
        aborted = await checkin_engine.list_for_user(test_user_id, state=CheckInState.ABORTED)

        assert [c.id for c in everything.value] == [second.id, first.id]
        assert [c.id for c in aborted.value] == [first.id]

    async def test_recommendations_for(self, checkin_engine, test_user_id, another_user_id):
        checkin = await _start(checkin_engine, test_user_id)
        await _answer_general(checkin_engine, test_user_id, checkin)
        await checkin_engine.complete(test_user_id, checkin.id)

        recs = await checkin_engine.recommendations_for(test_user_id, checkin.id)
        hidden = await checkin_engine.recommendations_for(another_user_id, checkin.id)

        assert [r.importance for r in recs.value] == [7, 6]
        assert hidden.error.kind is ErrorKind.NOT_FOUND

    async def test_summary(self, checkin_engine, test_user_id):
        checkin = await _start(checkin_engine, test_user_id)
        await _answer_general(checkin_engine, test_user_id, checkin)
        await checkin_engine.complete(test_user_id, checkin.id)

        res = await checkin_engine.summary(test_user_id, "week")

        assert res.value.total_checkins == 1
        assert res.value.average_wellness_level == 67.0
        assert res.value.category_breakdown == {"general": 1}
        assert res.value.trend == "insufficient_data"
