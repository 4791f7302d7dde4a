import asyncio
import random
import sys
import os

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from db.session import AsyncSessionLocal, engine
from models.base import Base
from models.question import MockTestQuestion
from core.logger import setup_logging, logger

TOPICS = ["Arithmetic", "Algebra", "Geometry", "Statistics"]
DIFFICULTIES = ["Easy", "Medium", "Hard"]


def build_placeholder_questions(count: int, seed: int = 11):
    """Multiplication questions with the correct product always in one of four options."""
    rng = random.Random(seed)
    questions = []
    for i in range(count):
        a, b = rng.randint(5, 24), rng.randint(5, 24)
        answer = a * b
        distractors = set()
        while len(distractors) < 3:
            candidate = answer + rng.choice([-1, 1]) * rng.randint(1, 40)
            if candidate > 0 and candidate != answer:
                distractors.add(candidate)
        options = [answer, *sorted(distractors)]
        rng.shuffle(options)
        letter = "ABCD"[options.index(answer)]
        questions.append(
            MockTestQuestion(
                question_id=f"Q{i + 1}",
                question_text=f"Question {i + 1}: What is {a} × {b}?",
                option_a=str(options[0]),
                option_b=str(options[1]),
                option_c=str(options[2]),
                option_d=str(options[3]),
                correct_answer=letter,
                topic=rng.choice(TOPICS),
                difficulty=rng.choice(DIFFICULTIES),
                explanation=f"{a} × {b} = {answer}",
            )
        )
    return questions


async def seed_questions(count: int):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        try:
            existing = (await session.execute(select(func.count(MockTestQuestion.id)))).scalar() or 0
            if existing >= count:
                print(f"Question bank already has {existing} questions, nothing to do.")
                return

            session.add_all(build_placeholder_questions(count)[existing:])
            await session.commit()
            print(f"✅ Seeded {count - existing} questions.")
            logger.info("Question bank seeded", added=count - existing)
        except SQLAlchemyError as e:
            await session.rollback()
            print(f"❌ Error seeding questions: {e}")
            logger.error(f"Error seeding questions: {e}")

if __name__ == "__main__":
    setup_logging()
    total = int(sys.argv[1]) if len(sys.argv) > 1 else 50
    if os.name == 'nt':
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(seed_questions(total))
