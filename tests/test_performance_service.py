import pytest
import pytest_asyncio

from services.performance_service import PerformanceService


@pytest.fixture
def four_questions(make_questions):
    # Arithmetic/A, Algebra/B, Geometry/C, Statistics/D
    return make_questions(4)


async def finish_test(make_controller, static_source, clock, questions, answers, minutes):
    controller = make_controller(student_id=7, source=static_source(questions), question_count=len(questions))
    await controller.start()
    for index, answer in answers.items():
        controller.navigate(index)
        controller.select_answer(answer)
    clock.advance(minutes * 60)
    await controller.submit()
    return controller


@pytest_asyncio.fixture
async def history(make_controller, static_source, clock, four_questions, wrong):
    q = four_questions
    first = await finish_test(make_controller, static_source, clock, q,
                              {0: q[0].correct_answer, 1: wrong(q[1])}, minutes=2)
    second = await finish_test(make_controller, static_source, clock, q,
                               {0: q[0].correct_answer, 1: q[1].correct_answer,
                                2: q[2].correct_answer, 3: wrong(q[3])}, minutes=1)
    return first, second


async def test_summary_without_tests(session_factory):
    async with session_factory() as db:
        summary = await PerformanceService(db).get_summary(7)

    assert summary == {
        "total_tests": 0,
        "average_score": 0,
        "best_score": 0,
        "total_time_spent_seconds": 0,
        "recent_tests": [],
    }


async def test_summary_over_completed_tests(session_factory, history):
    first, second = history

    async with session_factory() as db:
        summary = await PerformanceService(db).get_summary(7)

    assert summary["total_tests"] == 2
    assert summary["average_score"] == 50
    assert summary["best_score"] == 75
    assert summary["total_time_spent_seconds"] == 180
    assert [t["session_id"] for t in summary["recent_tests"]] == [second.session_id, first.session_id]
    assert [t["score"] for t in summary["recent_tests"]] == [75, 25]


async def test_in_progress_test_is_listed_but_not_scored(session_factory, history, make_controller,
                                                          static_source, four_questions):
    ongoing = make_controller(student_id=7, source=static_source(four_questions), question_count=4)
    await ongoing.start()

    async with session_factory() as db:
        summary = await PerformanceService(db).get_summary(7)

    assert summary["total_tests"] == 2
    assert summary["recent_tests"][0]["session_id"] == ongoing.session_id
    assert summary["recent_tests"][0]["score"] is None


async def test_recent_mistakes_skip_unanswered_questions(session_factory, history, four_questions, wrong):
    async with session_factory() as db:
        service = PerformanceService(db)
        mistakes = await service.get_recent_mistakes(7)
        limited = await service.get_recent_mistakes(7, limit=1)

    assert len(mistakes) == 2
    assert {m["question_id"] for m in mistakes} == {"Q2", "Q4"}
    for mistake in mistakes:
        question = next(q for q in four_questions if q.id == mistake["question_id"])
        assert mistake["correct_answer"] == question.correct_answer
        assert mistake["student_answer"] == wrong(question)
        assert mistake["explanation"] == question.explanation
    assert len(limited) == 1


async def test_topic_accuracy_weakest_first(session_factory, history):
    async with session_factory() as db:
        topics = await PerformanceService(db).get_topic_accuracy(7)

    assert [(t["topic"], t["accuracy"]) for t in topics] == [
        ("Statistics", 0),
        ("Algebra", 50),
        ("Geometry", 50),
        ("Arithmetic", 100),
    ]
    assert all(t["total"] == 2 for t in topics)


async def test_history_is_per_student(session_factory, history):
    async with session_factory() as db:
        service = PerformanceService(db)
        assert (await service.get_summary(8))["total_tests"] == 0
        assert await service.get_recent_mistakes(8) == []
        assert await service.get_topic_accuracy(8) == []
