import json

import pytest

from app.core.errors import EvaluationError, ParseError
from app.schemas.llm import ProviderConfig
from app.schemas.quiz import QuizForEvaluation
from app.services.quiz_evaluation import NO_ANSWER, build_evaluation_prompt, evaluate, validate_evaluation

CONFIG = ProviderConfig(provider="groq", model="llama3-8b-8192", api_key="gsk")


def _quiz(marks=(40, 60), prompts=()) -> QuizForEvaluation:
    return QuizForEvaluation.model_validate(
        {
            "title": "Cell biology",
            "topic": "Cells",
            "questions": [
                {
                    "id": "q1",
                    "question": "Powerhouse of the cell?",
                    "type": "multiple-choice",
                    "options": ["Nucleus", "Mitochondria"],
                    "correctAnswer": 1,
                    "marks": marks[0],
                },
                {"id": "q2", "question": "Explain mitosis.", "type": "essay", "marks": marks[1]},
            ],
            "evaluationPrompts": list(prompts),
        }
    )


def _result(**over) -> dict:
    r = {
        "score": 72,
        "strengths": ["Clear structure"],
        "weaknesses": ["Missed prophase"],
        "improvements": ["Review the phases of mitosis"],
        "detailedFeedback": "Solid answers overall.",
    }
    r.update(over)
    return r


def _patch_llm(monkeypatch, raw: str, prompts: list | None = None):
    import app.services.quiz_evaluation as eval_mod

    def _fake(prompt, config, *, purpose):
        if prompts is not None:
            prompts.append(prompt)
        return raw

    monkeypatch.setattr(eval_mod, "generate_text", _fake)


def test_total_marks_is_sum_of_question_marks():
    quiz = _quiz()
    assert quiz.total_marks == 100
    assert quiz.total_questions == 2


def test_prompt_contains_answers_and_grading_guidance():
    prompt = build_evaluation_prompt(_quiz(prompts=["Be lenient with spelling"]), {"q1": 1})

    assert "Total Marks: 100" in prompt
    assert "Correct Answer: Mitochondria" in prompt
    assert "Student Answer: Mitochondria (option 1)" in prompt
    assert f"Student Answer: {NO_ANSWER}" in prompt
    assert "Be lenient with spelling" in prompt


def test_prompt_without_extra_prompts_says_none():
    prompt = build_evaluation_prompt(_quiz(), {})
    assert "Additional Evaluation Prompts:\nNone" in prompt


def test_evaluate_happy_path(monkeypatch):
    prompts: list = []
    _patch_llm(monkeypatch, "```json\n" + json.dumps(_result()) + "\n```", prompts)

    out = evaluate(_quiz(), {"q1": 1, "q2": "Cells divide."}, CONFIG)

    assert out.score == 72
    assert out.detailed_feedback == "Solid answers overall."
    assert out.model_dump(by_alias=True)["detailedFeedback"] == "Solid answers overall."
    assert "Cells divide." in prompts[0]


def test_score_above_total_is_rejected(monkeypatch):
    _patch_llm(monkeypatch, json.dumps(_result(score=150)))
    with pytest.raises(EvaluationError):
        evaluate(_quiz(), {}, CONFIG)


@pytest.mark.parametrize("score", [0, 100, 55.5])
def test_score_bounds_inclusive(score):
    assert validate_evaluation(_result(score=score), total_marks=100).score == score


@pytest.mark.parametrize(
    "payload",
    [
        _result(score=-1),
        _result(score="72"),
        _result(score=True),
        _result(detailedFeedback=""),
        _result(strengths="good"),
        _result(weaknesses=[1, 2]),
        {k: v for k, v in _result().items() if k != "improvements"},
        ["not", "an", "object"],
    ],
)
def test_malformed_evaluation_rejected(payload):
    with pytest.raises(EvaluationError):
        validate_evaluation(payload, total_marks=100)


def test_unparseable_evaluation(monkeypatch):
    _patch_llm(monkeypatch, "The student did great!")
    with pytest.raises(ParseError):
        evaluate(_quiz(), {}, CONFIG)
