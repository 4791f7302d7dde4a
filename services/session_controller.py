"""
Session controller for timed mock tests.

Owns the in-memory state of one attempt and the countdown clock bound to
it. All calls for one controller run on a single event loop: the
synchronous mutations (select_answer, navigate, ...) are atomic with
respect to clock ticks, and the only suspension points are store calls.

States:

    instructions --start()--> active --submit()/timeout()--> completed
                                 |
                                 +--exit()/close()--> paused

A paused attempt is still `in_progress` in storage and continues through
the resume loader, which builds a fresh controller with its time
recomputed from the wall clock.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from core.config import settings
from core.exceptions import (
    ActiveSessionExists,
    InvalidTransition,
    NoQuestionsAvailable,
    PersistenceError,
    SessionFenced,
)
from core.logger import logger
from models.base import utcnow
from models.session import MockTestSession
from services.countdown import CountdownClock, format_clock
from services.question_source import QuestionRecord, QuestionSource
from services.scoring import score_session
from services.session_store import SessionStore


class SessionState(str, Enum):
    INSTRUCTIONS = "instructions"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


def elapsed_seconds(started_at: datetime, now: datetime) -> int:
    """Whole seconds between two timestamps, never negative."""
    return max(0, int((now - started_at).total_seconds()))


class SessionController:
    def __init__(
        self,
        student_id: int,
        store: SessionStore,
        question_source: Optional[QuestionSource] = None,
        *,
        question_count: Optional[int] = None,
        time_limit_seconds: Optional[int] = None,
        tick_seconds: Optional[float] = None,
        autosave_every: Optional[int] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.student_id = student_id
        self.store = store
        self.question_source = question_source
        self.question_count = question_count or settings.MOCK_TEST_QUESTION_COUNT
        self.time_limit_seconds = time_limit_seconds or settings.MOCK_TEST_TIME_LIMIT_SECONDS
        self.tick_seconds = tick_seconds
        self.autosave_every = autosave_every
        self._now = now

        self.state = SessionState.INSTRUCTIONS
        self.session_id: Optional[str] = None
        self.questions: List[QuestionRecord] = []
        self.started_at: Optional[datetime] = None
        self.current_question_index = 0
        self.answers: Dict[int, str] = {}

        self.completed_at: Optional[datetime] = None
        self.time_spent_seconds: Optional[int] = None
        self.result: Optional[Dict] = None

        self._fence_token = 0
        self._seq = 0
        self._remaining = 0
        self._clock: Optional[CountdownClock] = None
        self._termination: Optional[asyncio.Task] = None

    # --- Queries ---

    @property
    def remaining_seconds(self) -> int:
        if self._clock is not None:
            return self._clock.remaining
        return self._remaining

    @property
    def clock_running(self) -> bool:
        return self._clock is not None and self._clock.running

    @property
    def is_submitting(self) -> bool:
        return self._termination is not None

    @property
    def current_question(self) -> Optional[QuestionRecord]:
        if not self.questions:
            return None
        return self.questions[self.current_question_index]

    @property
    def answered_indices(self) -> List[int]:
        return sorted(self.answers)

    def to_view(self) -> Dict:
        """State as shown to the test taker. Never includes correct answers before completion."""
        question = self.current_question
        view = {
            "state": self.state.value,
            "session_id": self.session_id,
            "total_questions": len(self.questions),
            "current_question_index": self.current_question_index,
            "answered_indices": self.answered_indices,
            "time_limit_seconds": self.time_limit_seconds,
            "remaining_seconds": self.remaining_seconds,
            "remaining_display": format_clock(self.remaining_seconds),
            "current_question": question.to_public_dict() if question and self.state is SessionState.ACTIVE else None,
            "selected_answer": self.answers.get(self.current_question_index),
            "result": self.result,
        }
        return view

    # --- Transitions ---

    async def start(self):
        """Create a new session from a fresh question set and start the clock."""
        self._require(SessionState.INSTRUCTIONS, "start")
        if self.question_source is None:
            raise ValueError("A question source is required to start a mock test")

        async with self.store.start_lock(self.student_id):
            existing = await self.store.get_active_session(self.student_id)
            if existing is not None:
                raise ActiveSessionExists(self.student_id, existing.session_id)

            questions = await self.question_source.fetch_questions(self.question_count)
            if len(questions) < self.question_count:
                logger.warning("Not enough questions for mock test", student_id=self.student_id,
                               requested=self.question_count, available=len(questions))
                raise NoQuestionsAvailable(self.question_count, len(questions))
            questions = list(questions[: self.question_count])

            started_at = self._now()
            session = await self.store.create_session(
                self.student_id, questions, self.time_limit_seconds, started_at
            )

        self._attach(session, questions, fence_token=session.fence_token)
        self.state = SessionState.ACTIVE
        self._remaining = self.time_limit_seconds
        self.start_clock()

    def restore(
        self,
        session: MockTestSession,
        questions: List[QuestionRecord],
        current_question_index: int,
        answers: Dict[int, str],
        fence_token: int,
        remaining_seconds: int,
        save_seq: int = 0,
    ):
        """Rebuild an in-progress attempt from storage. The clock is left stopped.

        `save_seq` must come from the row read under the fence, not from `session`,
        which may predate a later write by the previous holder.
        """
        self._require(SessionState.INSTRUCTIONS, "resume")
        self._attach(session, questions, fence_token=fence_token)
        self._seq = save_seq
        self.current_question_index = current_question_index
        self.answers = dict(answers)
        self._remaining = max(0, remaining_seconds)
        self.state = SessionState.ACTIVE

    def start_clock(self):
        self._require(SessionState.ACTIVE, "start the clock")
        if self.clock_running:
            return
        self._clock = CountdownClock(
            self.session_id,
            self._remaining,
            on_expire=self.timeout,
            on_autosave=self._autosave,
            tick_seconds=self.tick_seconds,
            autosave_every=self.autosave_every,
        )
        self._clock.start()

    def select_answer(self, answer: str):
        """Record an answer for the current question, replacing any earlier one. No feedback is given."""
        self._require_mutable("select an answer")
        if answer is None or not str(answer).strip():
            raise ValueError("Answer must not be blank")
        self.answers[self.current_question_index] = str(answer).strip()

    def navigate(self, index: int):
        """Jump to any question, answered or not."""
        self._require_mutable("navigate")
        if not 0 <= index < len(self.questions):
            raise ValueError(f"Question index {index} is out of range 0..{len(self.questions) - 1}")
        self.current_question_index = index

    def next_question(self):
        self._require_mutable("navigate")
        if self.current_question_index < len(self.questions) - 1:
            self.current_question_index += 1

    def previous_question(self):
        self._require_mutable("navigate")
        if self.current_question_index > 0:
            self.current_question_index -= 1

    async def save(self) -> bool:
        """Persist the current snapshot now. Errors propagate."""
        self._require(SessionState.ACTIVE, "save")
        return await self._write_snapshot()

    async def submit(self) -> Dict:
        return await self._terminate("submit")

    async def timeout(self) -> Dict:
        return await self._terminate("timeout")

    async def exit(self) -> bool:
        """Stop the clock, write one last snapshot, and pause. Storage keeps the session in progress."""
        self._require_mutable("exit")
        self._pause()
        try:
            saved = await self._write_snapshot()
        except SessionFenced as e:
            logger.warning("Exit write rejected, session taken over", session_id=self.session_id, error=str(e))
            return False
        except PersistenceError as e:
            logger.warning("Exit write failed", session_id=self.session_id, error=str(e))
            return False
        logger.info("Mock test exited", session_id=self.session_id, student_id=self.student_id,
                    remaining=self.remaining_seconds)
        return saved

    def close(self):
        """Teardown: cancel the clock without writing."""
        if self.state is SessionState.ACTIVE and not self.is_submitting:
            self._pause()
        elif self._clock is not None:
            self._clock.cancel()

    # --- Internals ---

    def _attach(self, session: MockTestSession, questions: List[QuestionRecord], fence_token: int):
        self.session_id = session.session_id
        self.questions = list(questions)
        self.started_at = session.started_at
        self.time_limit_seconds = session.time_limit_seconds
        self._fence_token = fence_token
        self._seq = session.save_seq or 0

    def _require(self, state: SessionState, operation: str):
        if self.state is not state:
            raise InvalidTransition(operation, self.state.value)

    def _require_mutable(self, operation: str):
        self._require(SessionState.ACTIVE, operation)
        if self._termination is not None:
            raise InvalidTransition(operation, self.state.value, "submission in progress")

    def _pause(self):
        if self._clock is not None:
            self._clock.cancel()
        self.state = SessionState.PAUSED

    async def _write_snapshot(self) -> bool:
        self._seq += 1
        return await self.store.save_progress(
            self.session_id,
            self._fence_token,
            self._seq,
            self.current_question_index,
            dict(self.answers),
        )

    async def _autosave(self):
        if self.state is not SessionState.ACTIVE or self._termination is not None:
            return
        try:
            applied = await self._write_snapshot()
            logger.debug("Autosave", session_id=self.session_id, applied=applied, seq=self._seq)
        except SessionFenced as e:
            logger.warning("Autosave rejected, session taken over by another client",
                           session_id=self.session_id, error=str(e))
            self.close()
        except PersistenceError as e:
            logger.warning("Autosave failed", session_id=self.session_id, error=str(e))

    async def _terminate(self, reason: str) -> Dict:
        if self.state is not SessionState.ACTIVE:
            raise InvalidTransition(reason, self.state.value)
        if self._termination is None:
            self._termination = asyncio.create_task(self._complete(reason))
        # Shielded so a cancelled caller (e.g. the clock) cannot abort the terminal write
        return await asyncio.shield(self._termination)

    async def _complete(self, reason: str) -> Dict:
        try:
            # 1. Flush the full answer map
            await self._write_snapshot()

            # 2. Score
            completed_at = self._now()
            time_spent = elapsed_seconds(self.started_at, completed_at)
            if reason == "timeout":
                time_spent = min(time_spent, self.time_limit_seconds)
            result = score_session(self.questions, self.answers, time_spent)

            # 3. Terminal record
            stored = await self.store.complete_session(
                self.session_id, self._fence_token, completed_at, result, dict(self.answers)
            )

            # 4. Clock
            if self._clock is not None:
                self._clock.cancel()

            # 5. In-memory transition
            self.completed_at = completed_at
            self.time_spent_seconds = stored.get("time_spent_seconds", time_spent)
            self.result = stored
            self.state = SessionState.COMPLETED
            logger.info("Mock test finished", session_id=self.session_id, student_id=self.student_id,
                        reason=reason, correct=stored.get("correct_count"), total=stored.get("total_count"))
            return stored
        except SessionFenced:
            logger.warning("Terminal write rejected, session taken over", session_id=self.session_id)
            self._pause()
            raise
        except PersistenceError as e:
            logger.error("Terminal write failed, session stays active", session_id=self.session_id,
                         reason=reason, error=str(e))
            raise
        finally:
            if self.state is not SessionState.COMPLETED:
                self._termination = None
