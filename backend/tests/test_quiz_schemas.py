import pytest
from pydantic import ValidationError

from app.schemas.quiz import QuizForEvaluation, QuizQuestion


def _mc(**over) -> dict:
    q = {
        "id": "q1",
        "question": "Which organelle holds chlorophyll?",
        "type": "multiple-choice",
        "options": ["Chloroplast", "Nucleus", "Ribosome"],
        "correctAnswer": "Chloroplast",
        "marks": 3,
    }
    q.update(over)
    return q


def test_multiple_choice_question_builds():
    q = QuizQuestion(**_mc())

    assert q.id == "q1"
    assert q.kind == "multiple-choice"
    assert q.marks == 3
    assert q.correct_option_text() == "Chloroplast"
    assert q.model_dump(by_alias=True) == _mc()


def test_question_builds_from_field_names():
    q = QuizQuestion(id="q2", text="Explain osmosis.", kind="essay", marks=5)

    assert q.options is None
    assert q.correct_answer is None
    assert q.model_dump(by_alias=True)["question"] == "Explain osmosis."


@pytest.mark.parametrize("answer, expected", [(1, "Nucleus"), ("C", "Ribosome"), ("0", "Chloroplast")])
def test_answer_key_forms(answer, expected):
    assert QuizQuestion(**_mc(correctAnswer=answer)).correct_option_text() == expected


@pytest.mark.parametrize(
    "over",
    [
        {"marks": "2"},
        {"marks": 2.0},
        {"marks": 0},
        {"id": 1},
        {"question": ""},
        {"type": "true-false"},
        {"correctAnswer": True},
        {"options": ["Chloroplast", 7]},
    ],
)
def test_wrongly_typed_values_are_rejected(over):
    with pytest.raises(ValidationError):
        QuizQuestion(**_mc(**over))


@pytest.mark.parametrize(
    "over",
    [
        {"options": ["Chloroplast"]},
        {"options": ["Chloroplast", " "]},
        {"correctAnswer": None},
        {"correctAnswer": "Mitochondria"},
        {"correctAnswer": 3},
    ],
)
def test_multiple_choice_rules(over):
    with pytest.raises(ValidationError):
        QuizQuestion(**_mc(**over))


def test_quiz_total_marks_is_sum_of_question_marks():
    quiz = QuizForEvaluation(
        title="Cells",
        questions=[_mc(), {"id": "q2", "question": "Explain osmosis.", "type": "essay", "marks": 7}],
        evaluationPrompts=["Be strict"],
    )

    assert quiz.total_questions == 2
    assert quiz.total_marks == 10
    assert quiz.evaluation_prompts == ["Be strict"]
