from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional
import hmac
import hashlib
import time
import structlog
from pydantic import BaseModel, Field

from core.config import settings
from core.exceptions import (
    MockTestError,
    NoQuestionsAvailable,
    InvalidTransition,
    ActiveSessionExists,
    SessionNotFound,
    PersistenceError,
)
from db.session import AsyncSessionLocal, create_redis, close_redis
from services.question_source import DbQuestionSource
from services.session_controller import SessionController, SessionState
from services.session_store import SessionStore
from services.resume_loader import ResumeLoader
from services.performance_service import PerformanceService

logger = structlog.get_logger()

# API Documentation
API_DESCRIPTION = """
## Mock Test API

Timed, resumable mock tests. One attempt per student can be in progress at a
time; it survives reloads and restarts with its clock recomputed from the
wall clock.

### Authentication

All endpoints require a signed token:
- Header: `X-Auth-Token: {student_id}:{timestamp}:{signature}`
- Signature: HMAC-SHA256 of `{student_id}:{timestamp}` with the server secret.
- Tokens expire after 30 days.
"""

TAGS_METADATA = [
    {
        "name": "mock-test",
        "description": "Start, answer, navigate, submit and exit a timed mock test.",
    },
    {
        "name": "performance",
        "description": "Results history and review of completed mock tests.",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.redis = create_redis()
    try:
        yield
    finally:
        for controller in list(app.state.controllers.values()):
            controller.close()
        app.state.controllers.clear()
        await close_redis(app.state.redis)


app = FastAPI(
    title="Mock Test API",
    description=API_DESCRIPTION,
    version="1.0.0",
    openapi_tags=TAGS_METADATA,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# One live controller per student in this process
app.state.controllers = {}
app.state.redis = None

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Pydantic Models with Documentation ===

class AnswerRequest(BaseModel):
    """Answer for the current question."""
    answer: str = Field(..., description="Option letter (A-D) or written answer", max_length=255, examples=["B"])


class NavigateRequest(BaseModel):
    """Jump to a question."""
    index: int = Field(..., description="0-based question index", ge=0)


class MockTestView(BaseModel):
    """Current state of the student's mock test."""
    state: str = Field(..., description="instructions, active, paused or completed")
    session_id: Optional[str] = Field(None, description="Session identifier")
    total_questions: int = Field(..., description="Number of assigned questions")
    current_question_index: int = Field(..., description="0-based cursor")
    answered_indices: List[int] = Field(..., description="Indices of answered questions")
    time_limit_seconds: int = Field(..., description="Time limit fixed at creation")
    remaining_seconds: int = Field(..., description="Seconds left on the clock")
    remaining_display: str = Field(..., description="Remaining time as HH:MM:SS")
    current_question: Optional[Dict] = Field(None, description="Question at the cursor, without its answer")
    selected_answer: Optional[str] = Field(None, description="Answer recorded for the current question")
    result: Optional[Dict] = Field(None, description="Score and topic breakdown once completed")


class ExitResponse(BaseModel):
    """Exit outcome."""
    saved: bool = Field(..., description="Whether the final snapshot was written")
    remaining_seconds: int = Field(..., description="Seconds left when the test was left")


class RecentTest(BaseModel):
    session_id: str
    status: str
    total_questions: int
    questions_correct: Optional[int] = None
    score: Optional[int] = None
    time_spent_seconds: Optional[int] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


class PerformanceSummary(BaseModel):
    """Aggregate results over completed mock tests."""
    total_tests: int = Field(..., description="Completed mock tests")
    average_score: int = Field(..., description="Mean score in percent")
    best_score: int = Field(..., description="Best score in percent")
    total_time_spent_seconds: int = Field(..., description="Time spent across completed tests")
    recent_tests: List[RecentTest] = Field(..., description="Latest sessions, newest first")


class Mistake(BaseModel):
    session_id: str
    question_id: str
    question_text: Optional[str] = None
    options: Optional[List[str]] = None
    student_answer: Optional[str] = None
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None
    topic: Optional[str] = None
    difficulty: Optional[str] = None
    answered_at: Optional[datetime] = None


class TopicAccuracy(BaseModel):
    topic: str
    correct: int
    total: int
    accuracy: int = Field(..., description="Percent correct")


# === Error mapping ===

@app.exception_handler(MockTestError)
async def mock_test_error_handler(request: Request, exc: MockTestError):
    if isinstance(exc, NoQuestionsAvailable):
        status_code = 422
    elif isinstance(exc, PersistenceError):
        status_code = 503
    elif isinstance(exc, SessionNotFound):
        status_code = 404
    else:
        status_code = 409

    content = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ActiveSessionExists) and exc.session_id:
        content["session_id"] = exc.session_id
    logger.warning("Mock test request rejected", path=request.url.path, error=type(exc).__name__, detail=str(exc))
    return JSONResponse(status_code=status_code, content=content)


# === Dependencies ===

def verify_token(token: str) -> Optional[int]:
    """
    Verify a signed student token.
    Format: {student_id}:{timestamp}:{signature}
    """
    if not token:
        return None

    try:
        parts = token.split(':')
        if len(parts) != 3:
            return None

        student_id_str, timestamp_str, signature = parts

        # Check expiration
        if int(time.time()) - int(timestamp_str) > settings.TOKEN_TTL_SECONDS:
            logger.warning("Token expired", student_id=student_id_str)
            return None

        data = f"{student_id_str}:{timestamp_str}"
        expected_signature = hmac.new(settings.SECRET_KEY.encode(), data.encode(), hashlib.sha256).hexdigest()

        if hmac.compare_digest(expected_signature, signature):
            return int(student_id_str)

        logger.warning("Token signature mismatch", student_id=student_id_str)
        return None
    except ValueError as e:
        logger.warning("Malformed token", error=str(e))
        return None


def get_current_student(x_auth_token: str = Header(None)) -> int:
    student_id = verify_token(x_auth_token)
    if student_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return student_id


def get_session_factory() -> async_sessionmaker:
    return AsyncSessionLocal


def get_engine_options() -> Dict:
    """Clock settings passed to every controller."""
    return {
        "tick_seconds": settings.CLOCK_TICK_SECONDS,
        "autosave_every": settings.AUTOSAVE_EVERY_TICKS,
    }


async def get_db(factory: async_sessionmaker = Depends(get_session_factory)):
    async with factory() as session:
        yield session


def get_store(request: Request, factory: async_sessionmaker = Depends(get_session_factory)) -> SessionStore:
    return SessionStore(factory, redis=request.app.state.redis)


def get_question_source(factory: async_sessionmaker = Depends(get_session_factory)):
    return DbQuestionSource(factory)


async def get_controller(
    request: Request,
    student_id: int = Depends(get_current_student),
    store: SessionStore = Depends(get_store),
    source=Depends(get_question_source),
    options: Dict = Depends(get_engine_options),
) -> Optional[SessionController]:
    """The student's live controller, resuming from storage when none is held in memory."""
    controllers = request.app.state.controllers
    controller = controllers.get(student_id)
    if controller is not None and controller.state in (SessionState.ACTIVE, SessionState.COMPLETED):
        return controller

    controllers.pop(student_id, None)
    controller = await ResumeLoader(store, source, **options).load(student_id)
    if controller is not None:
        controllers[student_id] = controller
    return controller


def require_active(controller: Optional[SessionController], operation: str) -> SessionController:
    if controller is None:
        raise InvalidTransition(operation, SessionState.INSTRUCTIONS.value)
    return controller


# === Mock test ===

@app.get(
    "/api/mock-test",
    response_model=MockTestView,
    tags=["mock-test"],
    summary="Current mock test",
    description="Returns the student's mock test, resuming an in-progress one with its time recomputed.",
)
async def current_mock_test(
    student_id: int = Depends(get_current_student),
    store: SessionStore = Depends(get_store),
    controller: Optional[SessionController] = Depends(get_controller),
):
    if controller is None:
        return SessionController(student_id, store).to_view()
    return controller.to_view()


@app.post(
    "/api/mock-test/start",
    response_model=MockTestView,
    tags=["mock-test"],
    summary="Start a mock test",
    responses={
        409: {"description": "A mock test is already in progress"},
        422: {"description": "Not enough questions available"},
    },
)
async def start_mock_test(
    request: Request,
    student_id: int = Depends(get_current_student),
    store: SessionStore = Depends(get_store),
    source=Depends(get_question_source),
    options: Dict = Depends(get_engine_options),
):
    controllers = request.app.state.controllers
    existing = controllers.get(student_id)
    if existing is not None and existing.state is SessionState.ACTIVE:
        raise ActiveSessionExists(student_id, existing.session_id)

    controller = SessionController(student_id, store, source, **options)
    await controller.start()
    controllers[student_id] = controller
    return controller.to_view()


@app.post("/api/mock-test/answer", response_model=MockTestView, tags=["mock-test"], summary="Answer the current question")
async def answer_question(body: AnswerRequest, controller: Optional[SessionController] = Depends(get_controller)):
    controller = require_active(controller, "select an answer")
    try:
        controller.select_answer(body.answer)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return controller.to_view()


@app.post("/api/mock-test/navigate", response_model=MockTestView, tags=["mock-test"], summary="Jump to a question")
async def navigate(body: NavigateRequest, controller: Optional[SessionController] = Depends(get_controller)):
    controller = require_active(controller, "navigate")
    try:
        controller.navigate(body.index)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return controller.to_view()


@app.post("/api/mock-test/next", response_model=MockTestView, tags=["mock-test"], summary="Next question")
async def next_question(controller: Optional[SessionController] = Depends(get_controller)):
    controller = require_active(controller, "navigate")
    controller.next_question()
    return controller.to_view()


@app.post("/api/mock-test/previous", response_model=MockTestView, tags=["mock-test"], summary="Previous question")
async def previous_question(controller: Optional[SessionController] = Depends(get_controller)):
    controller = require_active(controller, "navigate")
    controller.previous_question()
    return controller.to_view()


@app.post(
    "/api/mock-test/submit",
    response_model=MockTestView,
    tags=["mock-test"],
    summary="Submit the mock test",
    responses={503: {"description": "Results could not be saved; retry the submission"}},
)
async def submit_mock_test(controller: Optional[SessionController] = Depends(get_controller)):
    controller = require_active(controller, "submit")
    await controller.submit()
    return controller.to_view()


@app.post("/api/mock-test/exit", response_model=ExitResponse, tags=["mock-test"], summary="Leave the mock test")
async def exit_mock_test(
    request: Request,
    student_id: int = Depends(get_current_student),
    controller: Optional[SessionController] = Depends(get_controller),
):
    controller = require_active(controller, "exit")
    saved = await controller.exit()
    request.app.state.controllers.pop(student_id, None)
    return {"saved": saved, "remaining_seconds": controller.remaining_seconds}


# === Performance ===

@app.get("/api/mock-test/performance", response_model=PerformanceSummary, tags=["performance"], summary="Results summary")
async def performance_summary(student_id: int = Depends(get_current_student), db: AsyncSession = Depends(get_db)):
    return await PerformanceService(db).get_summary(student_id)


@app.get("/api/mock-test/mistakes", response_model=List[Mistake], tags=["performance"], summary="Recent mistakes")
async def recent_mistakes(student_id: int = Depends(get_current_student), db: AsyncSession = Depends(get_db)):
    return await PerformanceService(db).get_recent_mistakes(student_id)


@app.get("/api/mock-test/topics", response_model=List[TopicAccuracy], tags=["performance"], summary="Accuracy by topic")
async def topic_accuracy(student_id: int = Depends(get_current_student), db: AsyncSession = Depends(get_db)):
    return await PerformanceService(db).get_topic_accuracy(student_id)
