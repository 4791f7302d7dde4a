import json

from services.question_source import QuestionRecord, WRITTEN_ANSWER
from services.scoring import score_session, ratio, is_correct, UNKNOWN_TOPIC


def test_fifty_questions_ten_correct(questions):
    answers = {i: questions[i].correct_answer for i in range(10)}

    result = score_session(questions, answers, time_spent_seconds=3600)

    assert result.correct_count == 10
    assert result.total_count == 50
    assert result.answered_count == 10
    assert result.accuracy == 0.2
    assert result.time_spent_seconds == 3600


def test_unanswered_questions_count_against_every_topic(questions):
    result = score_session(questions, {})

    assert result.correct_count == 0
    assert result.accuracy == 0.0
    assert list(result.topic_breakdown) == ["Arithmetic", "Algebra", "Geometry", "Statistics"]
    for score in result.topic_breakdown.values():
        assert score.correct == 0
        assert score.total > 0
    assert sum(score.total for score in result.topic_breakdown.values()) == 50


def test_topic_breakdown_sums_match_totals(questions, wrong):
    answers = {}
    for i, question in enumerate(questions):
        if i % 3 == 0:
            answers[i] = question.correct_answer
        elif i % 3 == 1:
            answers[i] = wrong(question)

    result = score_session(questions, answers)

    assert sum(s.correct for s in result.topic_breakdown.values()) == result.correct_count
    assert sum(s.total for s in result.topic_breakdown.values()) == result.total_count
    assert result.correct_count == 17
    assert result.answered_count == 34


def test_scoring_is_deterministic(questions):
    answers = {0: "A", 5: "B", 17: "D", 42: "C"}

    first = json.dumps(score_session(questions, answers, 120).to_dict(), sort_keys=True)
    second = json.dumps(score_session(questions, dict(answers), 120).to_dict(), sort_keys=True)

    assert first == second


def test_empty_question_set_has_zero_accuracy():
    result = score_session([], {})

    assert result.total_count == 0
    assert result.accuracy == 0.0
    assert result.topic_breakdown == {}
    assert ratio(0, 0) == 0.0


def test_answers_outside_the_assignment_are_ignored(make_questions):
    questions = make_questions(4)

    result = score_session(questions, {7: "A", -1: "A"})

    assert result.answered_count == 0
    assert result.correct_count == 0


def test_multiple_choice_comparison_trims_but_keeps_case(make_questions):
    question = make_questions(1)[0]

    assert is_correct(question, " A ")
    assert not is_correct(question, "a")
    assert not is_correct(question, "   ")
    assert not is_correct(question, None)


def test_written_answers_ignore_case_and_spacing():
    question = QuestionRecord(
        id="W1",
        text="What is an angle of 90 degrees called?",
        correct_answer="Right Angle",
        topic="Geometry",
        difficulty="Easy",
        question_type=WRITTEN_ANSWER,
    )

    assert is_correct(question, "  right   angle ")
    assert not is_correct(question, "acute angle")


def test_missing_topic_is_grouped_as_unknown():
    question = QuestionRecord(id="X", text="?", correct_answer="A", topic="", difficulty="Easy",
                              options=("1", "2", "3", "4"))

    result = score_session([question], {0: "A"})

    assert result.topic_breakdown[UNKNOWN_TOPIC].correct == 1
    assert result.outcomes[0].is_correct
