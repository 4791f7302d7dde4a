"""
Scoring engine for mock tests.

Pure functions: no I/O, no clock. Given the assigned questions and the
collected answers it always produces the same result, so a completed
session can be rescored from its stored snapshot at any time.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from services.question_source import QuestionRecord

UNKNOWN_TOPIC = "Unknown"


@dataclass(frozen=True)
class QuestionOutcome:
    index: int
    question_id: str
    topic: str
    answer: Optional[str]
    is_correct: bool

    @property
    def is_attempted(self) -> bool:
        return self.answer is not None


@dataclass
class TopicScore:
    correct: int = 0
    total: int = 0

    @property
    def accuracy(self) -> float:
        return ratio(self.correct, self.total)

    def to_dict(self) -> Dict:
        return {"correct": self.correct, "total": self.total, "accuracy": self.accuracy}


@dataclass
class MockTestResult:
    correct_count: int
    total_count: int
    answered_count: int
    time_spent_seconds: int
    topic_breakdown: Dict[str, TopicScore]
    outcomes: List[QuestionOutcome] = field(default_factory=list)

    @property
    def accuracy(self) -> float:
        return ratio(self.correct_count, self.total_count)

    def to_dict(self) -> Dict:
        return {
            "accuracy": self.accuracy,
            "correct_count": self.correct_count,
            "total_count": self.total_count,
            "answered_count": self.answered_count,
            "time_spent_seconds": self.time_spent_seconds,
            "topic_breakdown": {
                topic: score.to_dict() for topic, score in self.topic_breakdown.items()
            },
        }


def ratio(part: int, whole: int) -> float:
    """part / whole, defined as 0.0 for an empty whole."""
    if whole <= 0:
        return 0.0
    return part / whole


def normalize_answer(question: QuestionRecord, answer: Optional[str]) -> Optional[str]:
    if answer is None:
        return None
    answer = answer.strip()
    if not answer:
        return None
    if question.is_free_form:
        # Written answers ignore case and repeated whitespace
        return " ".join(answer.split()).casefold()
    return answer


def is_correct(question: QuestionRecord, answer: Optional[str]) -> bool:
    given = normalize_answer(question, answer)
    if given is None:
        return False
    return given == normalize_answer(question, question.correct_answer)


def score_session(
    questions: Sequence[QuestionRecord],
    answers: Mapping[int, str],
    time_spent_seconds: int = 0,
) -> MockTestResult:
    """Score answers (keyed by question index) against the assigned questions.

    Unanswered questions count as incorrect but still add to their
    topic's total. Topics appear in order of first appearance.
    """
    topic_breakdown: Dict[str, TopicScore] = {}
    outcomes: List[QuestionOutcome] = []
    correct_count = 0
    answered_count = 0

    for index, question in enumerate(questions):
        answer = answers.get(index)
        correct = is_correct(question, answer)
        topic = question.topic or UNKNOWN_TOPIC

        tally = topic_breakdown.setdefault(topic, TopicScore())
        tally.total += 1
        if correct:
            tally.correct += 1
            correct_count += 1
        if normalize_answer(question, answer) is not None:
            answered_count += 1

        outcomes.append(
            QuestionOutcome(
                index=index,
                question_id=question.id,
                topic=topic,
                answer=answer,
                is_correct=correct,
            )
        )

    return MockTestResult(
        correct_count=correct_count,
        total_count=len(questions),
        answered_count=answered_count,
        time_spent_seconds=time_spent_seconds,
        topic_breakdown=topic_breakdown,
        outcomes=outcomes,
    )
