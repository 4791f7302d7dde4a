from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from models.session import MockTestSession, MockTestAnswer, STATUS_COMPLETED
from services.scoring import ratio
from core.config import settings
from core.logger import logger

class PerformanceService:
    """Read-only reporting over a student's mock test history."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_summary(self, student_id: int, recent_limit: Optional[int] = None) -> Dict:
        """
        Aggregate completed tests.
        Score per test is its rounded percentage; average is the rounded mean of those.
        """
        result = await self.db.execute(
            select(MockTestSession)
            .filter(MockTestSession.student_id == student_id)
            .order_by(desc(MockTestSession.started_at))
        )
        sessions = result.scalars().all()
        completed = [s for s in sessions if s.status == STATUS_COMPLETED]

        scores = [self._score_percent(s) for s in completed]
        total_tests = len(completed)

        summary = {
            "total_tests": total_tests,
            "average_score": round(sum(scores) / total_tests) if total_tests else 0,
            "best_score": max(scores) if scores else 0,
            "total_time_spent_seconds": sum(s.time_spent_seconds or 0 for s in completed),
            "recent_tests": [
                self._session_row(s) for s in sessions[: recent_limit or settings.RECENT_TESTS_LIMIT]
            ],
        }
        logger.debug("Performance summary built", student_id=student_id, total_tests=total_tests)
        return summary

    async def get_recent_mistakes(self, student_id: int, limit: Optional[int] = None) -> List[Dict]:
        """Incorrectly answered questions from completed tests, newest first."""
        result = await self.db.execute(
            select(MockTestAnswer, MockTestSession.completed_at)
            .join(MockTestSession, MockTestAnswer.session_id == MockTestSession.session_id)
            .filter(
                MockTestSession.student_id == student_id,
                MockTestSession.status == STATUS_COMPLETED,
                MockTestAnswer.is_correct == False,
                MockTestAnswer.student_answer.isnot(None),
            )
            .order_by(desc(MockTestAnswer.answered_at), MockTestAnswer.id)
            .limit(limit or settings.RECENT_MISTAKES_LIMIT)
        )

        mistakes = []
        for answer, completed_at in result.all():
            question = answer.question_data or {}
            mistakes.append({
                "session_id": answer.session_id,
                "question_id": answer.question_id,
                "question_text": question.get("text"),
                "options": question.get("options"),
                "student_answer": answer.student_answer,
                "correct_answer": question.get("correct_answer"),
                "explanation": question.get("explanation"),
                "topic": question.get("topic"),
                "difficulty": question.get("difficulty"),
                "answered_at": answer.answered_at or completed_at,
            })
        return mistakes

    async def get_topic_accuracy(self, student_id: int) -> List[Dict]:
        """Per-topic accuracy across all completed tests, weakest first."""
        result = await self.db.execute(
            select(MockTestAnswer.question_data, MockTestAnswer.is_correct)
            .join(MockTestSession, MockTestAnswer.session_id == MockTestSession.session_id)
            .filter(MockTestSession.student_id == student_id, MockTestSession.status == STATUS_COMPLETED)
        )

        topic_stats: Dict[str, Dict[str, int]] = {}
        for question, is_correct in result.all():
            topic = (question or {}).get("topic") or "Unknown"
            stats = topic_stats.setdefault(topic, {"correct": 0, "total": 0})
            stats["total"] += 1
            if is_correct:
                stats["correct"] += 1

        rows = [
            {
                "topic": topic,
                "correct": stats["correct"],
                "total": stats["total"],
                "accuracy": round(ratio(stats["correct"], stats["total"]) * 100),
            }
            for topic, stats in topic_stats.items()
        ]
        return sorted(rows, key=lambda r: (r["accuracy"], r["topic"]))

    @staticmethod
    def _score_percent(session: MockTestSession) -> int:
        return round(ratio(session.questions_correct or 0, session.total_questions or 0) * 100)

    def _session_row(self, session: MockTestSession) -> Dict:
        return {
            "session_id": session.session_id,
            "status": session.status,
            "total_questions": session.total_questions,
            "questions_correct": session.questions_correct,
            "score": self._score_percent(session) if session.status == STATUS_COMPLETED else None,
            "time_spent_seconds": session.time_spent_seconds,
            "started_at": session.started_at,
            "completed_at": session.completed_at,
        }
