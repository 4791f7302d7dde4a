import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.exceptions import (
    ActiveSessionExists,
    InvalidTransition,
    PersistenceError,
    PersistenceWriteFailed,
    SessionFenced,
    SessionNotFound,
)
from core.logger import logger
from models.base import utcnow
from models.session import (
    MockTestAnswer,
    MockTestSession,
    STATUS_ABANDONED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
)
from services.question_source import QuestionRecord
from services.scoring import MockTestResult

START_LOCK_KEY = "mocktest:start-lock:{student_id}"


@dataclass(frozen=True)
class FenceGrant:
    """What a resuming client holds after fencing: its token and the row as it stood under the lock."""
    fence_token: int
    save_seq: int
    session_data: Optional[dict]
    status: str


def encode_answers(answers: Dict[int, str]) -> Dict[str, str]:
    # JSON object keys are strings
    return {str(index): value for index, value in sorted(answers.items())}


class SessionStore:
    """
    Durable storage for mock test sessions.

    Opens a short-lived database session per call so a long-running
    controller never holds a connection between ticks. Every SQLAlchemy
    failure is surfaced as PersistenceError / PersistenceWriteFailed.
    """

    def __init__(self, session_factory: async_sessionmaker, redis: Optional[Redis] = None):
        self.session_factory = session_factory
        self.redis = redis

    @asynccontextmanager
    async def start_lock(self, student_id: int):
        """Best-effort per-student lock around session creation."""
        if not self.redis:
            yield
            return

        key = START_LOCK_KEY.format(student_id=student_id)
        try:
            acquired = await self.redis.set(key, "1", nx=True, ex=settings.START_LOCK_TTL_SECONDS)
        except RedisError as e:
            logger.warning("Start lock unavailable, continuing without it", student_id=student_id, error=str(e))
            yield
            return

        if not acquired:
            raise ActiveSessionExists(student_id)
        try:
            yield
        finally:
            try:
                await self.redis.delete(key)
            except RedisError as e:
                logger.warning("Failed to release start lock", student_id=student_id, error=str(e))

    async def get_active_session(self, student_id: int) -> Optional[MockTestSession]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(MockTestSession)
                    .filter(MockTestSession.student_id == student_id, MockTestSession.status == STATUS_IN_PROGRESS)
                    .order_by(MockTestSession.started_at.desc())
                )
                return result.scalars().first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not look up active session: {e}") from e

    async def get_session(self, session_id: str) -> Optional[MockTestSession]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(MockTestSession).filter(MockTestSession.session_id == session_id))
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load session {session_id}: {e}") from e

    async def list_in_progress(self) -> List[MockTestSession]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(MockTestSession).filter(MockTestSession.status == STATUS_IN_PROGRESS)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not list sessions: {e}") from e

    async def create_session(
        self,
        student_id: int,
        questions: Sequence[QuestionRecord],
        time_limit_seconds: int,
        started_at: datetime,
    ) -> MockTestSession:
        """Insert the session row and one assignment row per question in one transaction."""
        session = MockTestSession(
            session_id=uuid.uuid4().hex,
            student_id=student_id,
            status=STATUS_IN_PROGRESS,
            total_questions=len(questions),
            time_limit_seconds=time_limit_seconds,
            started_at=started_at,
            session_data={"current_question_index": 0, "answers": {}},
            save_seq=0,
            fence_token=1,
        )
        try:
            async with self.session_factory() as db:
                db.add(session)
                for order, question in enumerate(questions):
                    db.add(
                        MockTestAnswer(
                            session_id=session.session_id,
                            question_id=question.id,
                            question_order=order,
                            question_data=question.to_dict(),
                        )
                    )
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to create mock test session", student_id=student_id, error=str(e))
            raise PersistenceWriteFailed(f"Could not create session: {e}") from e

        logger.info("Mock test session created", student_id=student_id, session_id=session.session_id,
                    total_questions=len(questions))
        return session

    async def load_questions(self, session_id: str) -> List[QuestionRecord]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(MockTestAnswer.question_data)
                    .filter(MockTestAnswer.session_id == session_id)
                    .order_by(MockTestAnswer.question_order)
                )
                snapshots = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load questions for {session_id}: {e}") from e
        return [QuestionRecord.from_dict(data) for data in snapshots]

    async def acquire_fence(self, session_id: str) -> FenceGrant:
        """
        Bump the session's fence token. Writes holding an older token are rejected from now on.

        The snapshot and its sequence number are read under the same row lock,
        so the new holder continues from the last write the old holder made.
        """
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(MockTestSession).filter(MockTestSession.session_id == session_id).with_for_update()
                )
                session = result.scalar_one_or_none()
                if session is None:
                    raise SessionNotFound(session_id)
                session.fence_token = (session.fence_token or 0) + 1
                grant = FenceGrant(
                    fence_token=session.fence_token,
                    save_seq=session.save_seq or 0,
                    session_data=session.session_data,
                    status=session.status,
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceWriteFailed(f"Could not fence session {session_id}: {e}") from e
        logger.debug("Fence token acquired", session_id=session_id, fence_token=grant.fence_token,
                     save_seq=grant.save_seq)
        return grant

    async def save_progress(
        self,
        session_id: str,
        fence_token: int,
        seq: int,
        current_question_index: int,
        answers: Dict[int, str],
    ) -> bool:
        """
        Write the full {current_question_index, answers} snapshot.

        Returns False when a snapshot with an equal or higher sequence number
        is already stored, or the session is no longer in progress.
        Raises SessionFenced when another client holds a newer token.
        """
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    update(MockTestSession)
                    .where(
                        MockTestSession.session_id == session_id,
                        MockTestSession.status == STATUS_IN_PROGRESS,
                        MockTestSession.fence_token == fence_token,
                        MockTestSession.save_seq < seq,
                    )
                    .values(
                        session_data={
                            "current_question_index": current_question_index,
                            "answers": encode_answers(answers),
                        },
                        save_seq=seq,
                    )
                )
                if result.rowcount == 0:
                    await db.rollback()
                    await self._explain_rejected_write(db, session_id, fence_token)
                    return False

                rows = await db.execute(select(MockTestAnswer).filter(MockTestAnswer.session_id == session_id))
                now = utcnow()
                for row in rows.scalars().all():
                    answer = answers.get(row.question_order)
                    if answer != row.student_answer:
                        row.student_answer = answer
                        row.answered_at = now if answer is not None else None
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceWriteFailed(f"Could not save progress for {session_id}: {e}") from e
        return True

    async def complete_session(
        self,
        session_id: str,
        fence_token: int,
        completed_at: datetime,
        result: MockTestResult,
        answers: Dict[int, str],
    ) -> Dict:
        """
        Write the terminal record. Returns the stored result.

        Idempotent: if the session is already completed (an earlier attempt
        committed but its acknowledgement was lost) the stored result is
        returned unchanged.
        """
        payload = result.to_dict()
        try:
            async with self.session_factory() as db:
                update_result = await db.execute(
                    update(MockTestSession)
                    .where(
                        MockTestSession.session_id == session_id,
                        MockTestSession.status == STATUS_IN_PROGRESS,
                        MockTestSession.fence_token == fence_token,
                    )
                    .values(
                        status=STATUS_COMPLETED,
                        completed_at=completed_at,
                        time_spent_seconds=result.time_spent_seconds,
                        questions_attempted=result.answered_count,
                        questions_correct=result.correct_count,
                        result=payload,
                    )
                )
                if update_result.rowcount == 0:
                    await db.rollback()
                    existing = await self._explain_rejected_write(db, session_id, fence_token)
                    if existing.status == STATUS_COMPLETED:
                        logger.info("Session already completed, reusing stored result", session_id=session_id)
                        return existing.result
                    raise InvalidTransition("complete", existing.status)

                outcomes = {outcome.index: outcome for outcome in result.outcomes}
                rows = await db.execute(select(MockTestAnswer).filter(MockTestAnswer.session_id == session_id))
                for row in rows.scalars().all():
                    outcome = outcomes.get(row.question_order)
                    answer = answers.get(row.question_order)
                    if answer != row.student_answer:
                        row.student_answer = answer
                        row.answered_at = completed_at if answer is not None else None
                    row.is_correct = outcome.is_correct if outcome else False
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("Terminal write failed", session_id=session_id, error=str(e))
            raise PersistenceWriteFailed(f"Could not complete session {session_id}: {e}") from e

        logger.info("Mock test session completed", session_id=session_id,
                    correct=result.correct_count, total=result.total_count)
        return payload

    async def abandon_session(self, session_id: str):
        """Mark an unrecoverable in-progress session so it is never resumed again."""
        try:
            async with self.session_factory() as db:
                await db.execute(
                    update(MockTestSession)
                    .where(MockTestSession.session_id == session_id, MockTestSession.status == STATUS_IN_PROGRESS)
                    .values(status=STATUS_ABANDONED)
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceWriteFailed(f"Could not abandon session {session_id}: {e}") from e
        logger.warning("Mock test session abandoned", session_id=session_id)

    async def _explain_rejected_write(self, db, session_id: str, fence_token: int) -> MockTestSession:
        result = await db.execute(select(MockTestSession).filter(MockTestSession.session_id == session_id))
        session = result.scalar_one_or_none()
        if session is None:
            raise SessionNotFound(session_id)
        if session.status == STATUS_IN_PROGRESS and session.fence_token != fence_token:
            raise SessionFenced(session_id, fence_token)
        return session
