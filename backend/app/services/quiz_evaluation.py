from __future__ import annotations

import logging
import math
from typing import Any

from app.core.errors import EvaluationError
from app.schemas.llm import ProviderConfig
from app.schemas.quiz import EvaluationResult, QuizForEvaluation, QuizQuestion
from app.services.llm_json import parse_llm_json
from app.services.llm_providers import EVALUATION, generate_text

logger = logging.getLogger(__name__)

NO_ANSWER = "No answer provided"


def _format_answer(question: QuizQuestion, value: Any) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        return NO_ANSWER
    if question.kind == "multiple-choice" and isinstance(value, int) and not isinstance(value, bool):
        opts = question.options or []
        if 0 <= value < len(opts):
            return f"{opts[value]} (option {value})"
    return str(value)


def _format_question(index: int, question: QuizQuestion, answers: dict[str, Any]) -> str:
    lines = [f"Question {index} ({question.marks} marks): {question.text}", f"Type: {question.kind}"]
    if question.kind == "multiple-choice":
        opts = question.options or []
        lines.append("Options: " + ", ".join(f"[{i}] {o}" for i, o in enumerate(opts)))
        correct = question.correct_option_text()
        lines.append(f"Correct Answer: {correct if correct is not None else question.correct_answer}")
    lines.append(f"Student Answer: {_format_answer(question, answers.get(question.id))}")
    return "\n".join(lines)


def build_evaluation_prompt(quiz: QuizForEvaluation, answers: dict[str, Any], *, total_marks: int | None = None) -> str:
    total = quiz.total_marks if total_marks is None else int(total_marks)
    blocks = "\n\n".join(_format_question(i, q, answers) for i, q in enumerate(quiz.questions, start=1))
    extra = "\n".join(p for p in quiz.evaluation_prompts if str(p).strip()) or "None"
    return f"""Evaluate the following quiz answers and provide detailed feedback:

Quiz: {quiz.title}
Topic: {quiz.topic or 'General'}
Total Questions: {quiz.total_questions}
Total Marks: {total}

Questions and Answers:
{blocks}

Additional Evaluation Prompts:
{extra}

Please provide:
1. Total score out of {total} (a number between 0 and {total})
2. Strengths (array of strings)
3. Weaknesses (array of strings)
4. Improvement suggestions (array of strings)
5. Detailed feedback (string)

Return ONLY a JSON object with exactly these fields:
{{
  "score": number,
  "strengths": ["strength1", "strength2"],
  "weaknesses": ["weakness1", "weakness2"],
  "improvements": ["improvement1", "improvement2"],
  "detailedFeedback": "detailed feedback text"
}}"""


def _string_list(payload: dict[str, Any], key: str) -> list[str]:
    value = payload.get(key)
    if not isinstance(value, list) or not all(isinstance(x, str) for x in value):
        raise EvaluationError(f"{key} must be an array of strings")
    return list(value)


def validate_evaluation(payload: Any, *, total_marks: int) -> EvaluationResult:
    if not isinstance(payload, dict):
        raise EvaluationError("evaluation response is not a JSON object")

    score = payload.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not math.isfinite(score):
        raise EvaluationError("score must be a number")
    if not 0 <= score <= total_marks:
        raise EvaluationError(f"score {score} is outside the range 0..{total_marks}")

    feedback = payload.get("detailedFeedback")
    if not isinstance(feedback, str) or not feedback.strip():
        raise EvaluationError("detailedFeedback must be a non-empty string")

    return EvaluationResult(
        score=float(score),
        strengths=_string_list(payload, "strengths"),
        weaknesses=_string_list(payload, "weaknesses"),
        improvements=_string_list(payload, "improvements"),
        detailed_feedback=feedback,
    )


def evaluate(
    quiz: QuizForEvaluation,
    answers: dict[str, Any],
    config: ProviderConfig,
    *,
    total_marks: int | None = None,
) -> EvaluationResult:
    """Grade `answers` against `quiz`.

    `total_marks` bounds the score; an attempt passes the total it was started with.
    """
    total = quiz.total_marks if total_marks is None else int(total_marks)
    prompt = build_evaluation_prompt(quiz, answers or {}, total_marks=total)
    raw = generate_text(prompt, config, purpose=EVALUATION)
    payload = parse_llm_json(raw)

    try:
        result = validate_evaluation(payload, total_marks=total)
    except EvaluationError as e:
        logger.warning("quiz_evaluation: rejected provider=%s reason=%s", config.provider.value, e.reason)
        raise

    logger.info(
        "quiz_evaluation: ok provider=%s score=%s/%s",
        config.provider.value,
        result.score,
        total,
    )
    return result
