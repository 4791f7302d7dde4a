import asyncio

import pytest

from core.exceptions import (
    ActiveSessionExists,
    InvalidTransition,
    NoQuestionsAvailable,
    PersistenceWriteFailed,
)
from models.session import STATUS_COMPLETED, STATUS_IN_PROGRESS
from services.session_controller import SessionState
from services.session_store import SessionStore


class SlowCompleteStore(SessionStore):
    """Holds the terminal write until released, counting how often it is attempted."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.complete_calls = 0
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def complete_session(self, *args, **kwargs):
        self.complete_calls += 1
        self.entered.set()
        await self.release.wait()
        return await super().complete_session(*args, **kwargs)


class FlakyCompleteStore(SessionStore):
    def __init__(self, *args, failures=1, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = failures

    async def complete_session(self, *args, **kwargs):
        if self.failures:
            self.failures -= 1
            raise PersistenceWriteFailed("connection reset")
        return await super().complete_session(*args, **kwargs)


async def wait_for_state(controller, state, timeout=2.0):
    async def poll():
        while controller.state is not state:
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout)


async def test_start_creates_session(make_controller, store):
    controller = make_controller()

    await controller.start()

    assert controller.state is SessionState.ACTIVE
    assert controller.remaining_seconds == 3600
    assert controller.clock_running
    assert len(controller.questions) == 50
    row = await store.get_session(controller.session_id)
    assert row.status == STATUS_IN_PROGRESS
    assert row.total_questions == 50


async def test_start_without_questions_creates_no_session(make_controller, store, static_source):
    controller = make_controller(source=static_source([]))

    with pytest.raises(NoQuestionsAvailable):
        await controller.start()

    assert controller.state is SessionState.INSTRUCTIONS
    assert await store.get_active_session(1) is None
    assert await store.list_in_progress() == []


async def test_start_with_short_question_bank_fails(make_controller, static_source, make_questions):
    controller = make_controller(source=static_source(make_questions(12)))

    with pytest.raises(NoQuestionsAvailable) as exc_info:
        await controller.start()
    assert exc_info.value.available == 12


async def test_second_start_for_same_student_is_rejected(make_controller):
    first = make_controller()
    await first.start()

    second = make_controller()
    with pytest.raises(ActiveSessionExists) as exc_info:
        await second.start()
    assert exc_info.value.session_id == first.session_id


async def test_answers_and_navigation(make_controller):
    controller = make_controller()
    await controller.start()

    controller.navigate(3)
    controller.select_answer("B")
    controller.select_answer(" C ")
    controller.next_question()
    controller.select_answer("A")

    assert controller.answers == {3: "C", 4: "A"}
    assert controller.answered_indices == [3, 4]
    assert controller.current_question_index == 4

    with pytest.raises(ValueError):
        controller.navigate(50)
    with pytest.raises(ValueError):
        controller.navigate(-1)
    with pytest.raises(ValueError):
        controller.select_answer("   ")
    assert controller.current_question_index == 4

    controller.navigate(0)
    controller.previous_question()
    assert controller.current_question_index == 0
    controller.navigate(49)
    controller.next_question()
    assert controller.current_question_index == 49


async def test_view_never_exposes_the_answer_key(make_controller):
    controller = make_controller()
    await controller.start()

    view = controller.to_view()

    assert view["state"] == "active"
    assert view["remaining_display"] == "01:00:00"
    assert "correct_answer" not in view["current_question"]
    assert "explanation" not in view["current_question"]


async def test_timeout_scores_persisted_answers(make_controller, store, clock, questions):
    controller = make_controller()
    await controller.start()
    for i in range(10):
        controller.navigate(i)
        controller.select_answer(questions[i].correct_answer)

    clock.advance(3600)
    result = await controller.timeout()

    assert controller.state is SessionState.COMPLETED
    assert result["correct_count"] == 10
    assert result["accuracy"] == 0.2
    assert controller.time_spent_seconds == 3600
    assert not controller.clock_running
    row = await store.get_session(controller.session_id)
    assert row.status == STATUS_COMPLETED
    assert row.questions_correct == 10
    assert row.questions_attempted == 10


async def test_late_timeout_caps_time_spent(make_controller, clock):
    controller = make_controller()
    await controller.start()

    clock.advance(3725)
    await controller.timeout()

    assert controller.time_spent_seconds == 3600


async def test_clock_expiry_submits_automatically(make_controller, store):
    controller = make_controller(time_limit_seconds=3, tick_seconds=0.01)
    await controller.start()
    controller.select_answer(controller.current_question.correct_answer)

    await wait_for_state(controller, SessionState.COMPLETED)

    assert controller.result["correct_count"] == 1
    row = await store.get_session(controller.session_id)
    assert row.status == STATUS_COMPLETED


async def test_concurrent_submits_write_once(make_controller, session_factory):
    slow_store = SlowCompleteStore(session_factory)
    controller = make_controller(target_store=slow_store)
    await controller.start()

    first = asyncio.create_task(controller.submit())
    second = asyncio.create_task(controller.timeout())
    await asyncio.wait_for(slow_store.entered.wait(), 2)

    assert controller.is_submitting
    with pytest.raises(InvalidTransition):
        controller.select_answer("A")
    with pytest.raises(InvalidTransition):
        controller.navigate(1)

    slow_store.release.set()
    results = await asyncio.gather(first, second)

    assert results[0] == results[1]
    assert slow_store.complete_calls == 1
    assert controller.state is SessionState.COMPLETED


async def test_failed_terminal_write_keeps_session_active(make_controller, session_factory):
    flaky_store = FlakyCompleteStore(session_factory)
    controller = make_controller(target_store=flaky_store)
    await controller.start()
    controller.select_answer("A")

    with pytest.raises(PersistenceWriteFailed):
        await controller.submit()

    assert controller.state is SessionState.ACTIVE
    assert not controller.is_submitting
    assert (await flaky_store.get_session(controller.session_id)).status == STATUS_IN_PROGRESS

    controller.select_answer("B")
    result = await controller.submit()
    assert controller.state is SessionState.COMPLETED
    assert result["answered_count"] == 1


async def test_operations_after_completion_are_rejected(make_controller):
    controller = make_controller()
    await controller.start()
    await controller.submit()

    with pytest.raises(InvalidTransition):
        controller.select_answer("A")
    with pytest.raises(InvalidTransition):
        controller.navigate(1)
    with pytest.raises(InvalidTransition):
        await controller.submit()
    with pytest.raises(InvalidTransition):
        await controller.timeout()
    with pytest.raises(InvalidTransition):
        await controller.exit()


async def test_operations_before_start_are_rejected(make_controller):
    controller = make_controller()

    with pytest.raises(InvalidTransition):
        controller.select_answer("A")
    with pytest.raises(InvalidTransition):
        await controller.submit()


async def test_exit_pauses_and_persists_snapshot(make_controller, store):
    controller = make_controller()
    await controller.start()
    controller.select_answer("A")
    controller.navigate(7)
    controller.select_answer("D")

    saved = await controller.exit()

    assert saved is True
    assert controller.state is SessionState.PAUSED
    assert not controller.clock_running
    row = await store.get_session(controller.session_id)
    assert row.status == STATUS_IN_PROGRESS
    assert row.session_data == {"current_question_index": 7, "answers": {"0": "A", "7": "D"}}


async def test_exit_reports_failed_write(make_controller, store, monkeypatch):
    controller = make_controller()
    await controller.start()

    async def failing_save(*args, **kwargs):
        raise PersistenceWriteFailed("db down")
    monkeypatch.setattr(store, "save_progress", failing_save)

    assert await controller.exit() is False
    assert controller.state is SessionState.PAUSED


async def test_autosave_failure_is_not_fatal(make_controller, store, monkeypatch):
    controller = make_controller()
    await controller.start()

    async def failing_save(*args, **kwargs):
        raise PersistenceWriteFailed("db down")
    monkeypatch.setattr(store, "save_progress", failing_save)

    await controller._autosave()

    assert controller.state is SessionState.ACTIVE
    assert controller.clock_running
