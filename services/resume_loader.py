from datetime import datetime
from typing import Callable, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from core.exceptions import CorruptSessionData
from core.logger import logger
from models.base import utcnow
from models.session import MockTestSession, STATUS_IN_PROGRESS
from services.question_source import QuestionSource
from services.session_controller import SessionController, elapsed_seconds
from services.session_store import SessionStore


class SessionSnapshot(BaseModel):
    """The persisted in-progress part of a session (its `session_data`)."""
    current_question_index: int = Field(0, ge=0)
    answers: Dict[int, str] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, data: Optional[dict], total_questions: int) -> "SessionSnapshot":
        if data is None:
            return cls()
        try:
            snapshot = cls.model_validate(data)
        except ValidationError as e:
            raise CorruptSessionData(f"Invalid session data: {e}") from e

        if total_questions <= 0:
            raise CorruptSessionData("Session has no assigned questions")
        if snapshot.current_question_index >= total_questions:
            raise CorruptSessionData(f"Cursor {snapshot.current_question_index} outside {total_questions} questions")
        stray = [index for index in snapshot.answers if not 0 <= index < total_questions]
        if stray:
            raise CorruptSessionData(f"Answers for unassigned question indices {stray}")
        return snapshot


def remaining_seconds(time_limit_seconds: int, started_at: datetime, now: datetime) -> int:
    """Time left on the wall clock: max(0, limit - (now - started_at)) in whole seconds."""
    return max(0, time_limit_seconds - elapsed_seconds(started_at, now))


class ResumeLoader:
    """
    Reconstructs a student's in-progress session after a restart.

    Remaining time is always recomputed from `started_at`; nothing cached
    about the countdown is trusted. An expired session is submitted with
    whatever answers were last persisted instead of being resumed.
    """

    def __init__(
        self,
        store: SessionStore,
        question_source: Optional[QuestionSource] = None,
        *,
        tick_seconds: Optional[float] = None,
        autosave_every: Optional[int] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.question_source = question_source
        self.tick_seconds = tick_seconds
        self.autosave_every = autosave_every
        self._now = now

    async def load(self, student_id: int) -> Optional[SessionController]:
        """Return an active (or, if it had expired, completed) controller, or None if there is nothing to resume."""
        session = await self.store.get_active_session(student_id)
        if session is None:
            return None
        return await self.resume(session)

    async def resume(self, session: MockTestSession) -> Optional[SessionController]:
        try:
            questions = await self.store.load_questions(session.session_id)
            if len(questions) != session.total_questions:
                raise CorruptSessionData(
                    f"Expected {session.total_questions} questions, found {len(questions)}"
                )
        except CorruptSessionData as e:
            return await self._abandon(session, e)

        # `session` may be stale by now; everything mutable comes from the fenced row
        grant = await self.store.acquire_fence(session.session_id)
        if grant.status != STATUS_IN_PROGRESS:
            logger.info("Session finished before it could be resumed", session_id=session.session_id,
                        status=grant.status)
            return None
        try:
            snapshot = SessionSnapshot.from_record(grant.session_data, len(questions))
        except CorruptSessionData as e:
            return await self._abandon(session, e)

        remaining = remaining_seconds(session.time_limit_seconds, session.started_at, self._now())

        controller = SessionController(
            session.student_id,
            self.store,
            self.question_source,
            question_count=session.total_questions,
            time_limit_seconds=session.time_limit_seconds,
            tick_seconds=self.tick_seconds,
            autosave_every=self.autosave_every,
            now=self._now,
        )
        controller.restore(
            session,
            questions,
            current_question_index=snapshot.current_question_index,
            answers=snapshot.answers,
            fence_token=grant.fence_token,
            remaining_seconds=remaining,
            save_seq=grant.save_seq,
        )

        if remaining <= 0:
            logger.info("Resumed session already expired, submitting", session_id=session.session_id,
                        student_id=session.student_id)
            await controller.timeout()
            return controller

        controller.start_clock()
        logger.info("Mock test session resumed", session_id=session.session_id,
                    student_id=session.student_id, remaining=remaining)
        return controller

    async def _abandon(self, session: MockTestSession, error: CorruptSessionData) -> None:
        logger.error("Unrecoverable mock test session", session_id=session.session_id,
                     student_id=session.student_id, error=str(error))
        await self.store.abandon_session(session.session_id)
        return None
