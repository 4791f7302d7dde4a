from sqlalchemy import Column, Integer, String, Text, Boolean
from models.base import Base, TimestampMixin


class MockTestQuestion(Base, TimestampMixin):
    __tablename__ = "mock_test_questions"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(String(64), unique=True, index=True, nullable=False)
    question_text = Column(Text, nullable=False)
    question_type = Column(String(30), default="multiple_choice", nullable=False)

    option_a = Column(Text, nullable=True)
    option_b = Column(Text, nullable=True)
    option_c = Column(Text, nullable=True)
    option_d = Column(Text, nullable=True)
    correct_answer = Column(String(255), nullable=False)

    topic = Column(String(100), index=True, nullable=False)
    subtopic = Column(String(100), nullable=True)
    difficulty = Column(String(20), default="Medium", nullable=False)
    explanation = Column(Text, nullable=True)
    marks = Column(Integer, default=1, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
