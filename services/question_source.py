from dataclasses import dataclass, asdict
from typing import List, Dict, Optional, Tuple, Protocol
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.exceptions import PersistenceError, CorruptSessionData
from core.logger import logger
from models.question import MockTestQuestion

OPTION_LETTERS = ("A", "B", "C", "D")
MULTIPLE_CHOICE = "multiple_choice"
WRITTEN_ANSWER = "written_answer"


@dataclass(frozen=True)
class QuestionRecord:
    """A question as assigned to a session. Never mutated by the engine."""
    id: str
    text: str
    correct_answer: str
    topic: str
    difficulty: str
    options: Optional[Tuple[str, ...]] = None
    question_type: str = MULTIPLE_CHOICE
    subtopic: Optional[str] = None
    explanation: Optional[str] = None
    marks: int = 1

    @property
    def is_free_form(self) -> bool:
        return self.options is None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["options"] = list(self.options) if self.options is not None else None
        return data

    def to_public_dict(self) -> Dict:
        """Question as shown during the test (no correct answer, no explanation)."""
        data = self.to_dict()
        data.pop("correct_answer")
        data.pop("explanation")
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "QuestionRecord":
        try:
            options = data.get("options")
            return cls(
                id=str(data["id"]),
                text=data["text"],
                correct_answer=data["correct_answer"],
                topic=data.get("topic") or "Unknown",
                difficulty=data.get("difficulty") or "Medium",
                options=tuple(options) if options is not None else None,
                question_type=data.get("question_type") or MULTIPLE_CHOICE,
                subtopic=data.get("subtopic"),
                explanation=data.get("explanation"),
                marks=int(data.get("marks", 1)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptSessionData(f"Invalid question snapshot: {e}") from e

    @classmethod
    def from_model(cls, row: MockTestQuestion) -> "QuestionRecord":
        options = None
        if row.question_type == MULTIPLE_CHOICE:
            options = tuple(
                getattr(row, f"option_{letter.lower()}") or "" for letter in OPTION_LETTERS
            )
        return cls(
            id=row.question_id,
            text=row.question_text,
            correct_answer=row.correct_answer,
            topic=row.topic,
            difficulty=row.difficulty,
            options=options,
            question_type=row.question_type,
            subtopic=row.subtopic,
            explanation=row.explanation,
            marks=row.marks,
        )


class QuestionSource(Protocol):
    async def fetch_questions(self, count: int) -> List[QuestionRecord]:
        """Return an ordered list of up to `count` questions."""
        ...


class DbQuestionSource:
    """Draws a random set of active questions from the question bank table."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def fetch_questions(self, count: int) -> List[QuestionRecord]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(MockTestQuestion)
                    .filter(MockTestQuestion.is_active == True)
                    .order_by(func.random())
                    .limit(count)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch mock test questions", count=count, error=str(e))
            raise PersistenceError("Could not load questions") from e

        logger.debug("Fetched mock test questions", requested=count, returned=len(rows))
        return [QuestionRecord.from_model(row) for row in rows]
