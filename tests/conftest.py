"""
Pytest configuration and fixtures for mock test engine tests.
"""
import sys
import os
from datetime import datetime, timedelta

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ["REDIS_URL"] = ""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.base import Base
import models.session  # noqa: F401  (registers tables)
import models.question  # noqa: F401
from services.question_source import QuestionRecord, OPTION_LETTERS
from services.session_controller import SessionController
from services.session_store import SessionStore
from services.task_manager import task_manager

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)

TOPICS = ["Arithmetic", "Algebra", "Geometry", "Statistics"]


class FakeClock:
    """Injectable `now` that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 1, 5, 9, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float):
        self.current += timedelta(seconds=seconds)


class StaticQuestionSource:
    def __init__(self, questions):
        self.questions = list(questions)
        self.calls = 0

    async def fetch_questions(self, count):
        self.calls += 1
        return self.questions[:count]


def build_questions(count, topics=TOPICS):
    """Question i has topic topics[i % len(topics)] and correct option OPTION_LETTERS[i % 4]."""
    return [
        QuestionRecord(
            id=f"Q{i + 1}",
            text=f"Question {i + 1}: What is {i} + {i}?",
            correct_answer=OPTION_LETTERS[i % 4],
            topic=topics[i % len(topics)],
            difficulty="Easy",
            options=tuple(str(i * 2 + offset) for offset in (0, 1, 2, 3)),
            explanation=f"{i} + {i} = {i * 2}",
        )
        for i in range(count)
    ]


def wrong_answer(question: QuestionRecord) -> str:
    return next(letter for letter in OPTION_LETTERS if letter != question.correct_answer)


@pytest.fixture
def make_questions():
    return build_questions


@pytest.fixture
def wrong():
    return wrong_answer


@pytest.fixture
def questions():
    return build_questions(50)


@pytest.fixture
def question_source(questions):
    return StaticQuestionSource(questions)


@pytest.fixture
def static_source():
    return StaticQuestionSource


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def store(session_factory):
    return SessionStore(session_factory)


@pytest_asyncio.fixture
async def make_controller(store, question_source, clock):
    """Controllers whose clock never ticks on its own during a test (tick = 60s)."""
    created = []

    def factory(student_id=1, source=None, *, target_store=None, **options):
        options.setdefault("question_count", 50)
        options.setdefault("time_limit_seconds", 3600)
        options.setdefault("tick_seconds", 60)
        options.setdefault("autosave_every", 10)
        options.setdefault("now", clock)
        controller = SessionController(
            student_id,
            target_store or store,
            source if source is not None else question_source,
            **options,
        )
        created.append(controller)
        return controller

    yield factory
    for controller in created:
        controller.close()
        if controller._clock is not None:
            await controller._clock.wait()


@pytest.fixture(autouse=True)
def reset_task_manager():
    yield
    # Clock tasks die with their test's event loop
    task_manager._tasks.clear()
