from sqlalchemy import Column, Integer, String, BigInteger, ForeignKey, DateTime, Boolean, JSON, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from models.base import Base, TimestampMixin

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_ABANDONED = "abandoned"


class MockTestSession(Base, TimestampMixin):
    __tablename__ = "mock_test_sessions"

    session_id = Column(String(36), primary_key=True)
    student_id = Column(BigInteger, index=True, nullable=False)
    session_type = Column(String(20), default="mock_test", nullable=False)
    status = Column(String(20), default=STATUS_IN_PROGRESS, index=True, nullable=False)

    total_questions = Column(Integer, nullable=False)
    time_limit_seconds = Column(Integer, nullable=False)
    started_at = Column(DateTime, nullable=False)

    # Set once, by the terminal transition
    completed_at = Column(DateTime, nullable=True)
    time_spent_seconds = Column(Integer, nullable=True)
    questions_attempted = Column(Integer, nullable=True)
    questions_correct = Column(Integer, nullable=True)
    result = Column(JSON, nullable=True)

    # {"current_question_index": int, "answers": {"<index>": "<answer>"}}
    session_data = Column(JSON, nullable=True)

    # Highest snapshot sequence number applied so far
    save_seq = Column(Integer, default=0, nullable=False)
    # Bumped on every resume; writes carrying an older token are rejected
    fence_token = Column(Integer, default=1, nullable=False)

    answers = relationship(
        "MockTestAnswer",
        back_populates="session",
        order_by="MockTestAnswer.question_order",
        cascade="all, delete-orphan",
    )


class MockTestAnswer(Base):
    __tablename__ = "mock_test_answers"
    __table_args__ = (
        UniqueConstraint("session_id", "question_order", name="uq_mock_test_answers_session_order"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(36), ForeignKey("mock_test_sessions.session_id", ondelete="CASCADE"), index=True, nullable=False)
    question_id = Column(String(64), nullable=False)
    question_order = Column(Integer, nullable=False)

    # Immutable copy of the question as assigned
    question_data = Column(JSON, nullable=False)

    student_answer = Column(String(255), nullable=True)
    answered_at = Column(DateTime, nullable=True)
    is_correct = Column(Boolean, nullable=True)

    session = relationship("MockTestSession", back_populates="answers")


Index("idx_mock_sessions_student_status", MockTestSession.student_id, MockTestSession.status)
