from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from app.core.config import settings
from app.core.errors import GenerationError
from app.schemas.llm import ProviderConfig
from app.schemas.quiz import QuizQuestion
from app.services.llm_json import parse_llm_json
from app.services.llm_providers import GENERATION, generate_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationSource:
    topic: str | None = None
    document_url: str | None = None

    @property
    def is_document(self) -> bool:
        return bool((self.document_url or "").strip())


_OUTPUT_CONTRACT = """Create a mix of multiple-choice, short-answer, and essay questions.
Each question should have appropriate marks assigned (a whole number, at least 1).
Multiple-choice questions must have at least 2 options and a correctAnswer that is
either the 0-based index of the right option or its exact text.
Short-answer and essay questions do not need options or a correctAnswer.

IMPORTANT: Return ONLY valid JSON wrapped in a markdown code block like this:
```json
{
  "questions": [
    {
      "id": "unique_id",
      "question": "question text",
      "type": "multiple-choice|short-answer|essay",
      "options": ["option1", "option2", "option3", "option4"],
      "correctAnswer": "correct answer or option index",
      "marks": 1
    }
  ]
}
```

Do not include any explanatory text before or after the JSON."""


def build_topic_prompt(topic: str, count: int) -> str:
    return f'Generate {int(count)} quiz questions on the topic: "{topic.strip()}".\n\n{_OUTPUT_CONTRACT}'


def build_document_prompt(document_url: str, count: int, topic: str | None = None) -> str:
    focus = f' Focus on the topic: "{topic.strip()}".' if (topic or "").strip() else ""
    return (
        f"Generate {int(count)} quiz questions based on the PDF document at {document_url.strip()}.{focus}\n\n"
        f"{_OUTPUT_CONTRACT}"
    )


def build_generation_prompt(source: GenerationSource, count: int) -> str:
    if source.is_document:
        return build_document_prompt(str(source.document_url), count, source.topic)
    if not (source.topic or "").strip():
        raise GenerationError("topic or document URL is required")
    return build_topic_prompt(str(source.topic), count)


def _first_error(e: ValidationError) -> str:
    errs = e.errors()
    if not errs:
        return str(e)
    err = errs[0]
    loc = ".".join(str(x) for x in err.get("loc") or ())
    msg = str(err.get("msg") or "invalid")
    return f"{loc}: {msg}" if loc else msg


def validate_questions(payload: Any) -> list[QuizQuestion]:
    """All-or-nothing validation of a parsed `{"questions": [...]}` payload."""
    if not isinstance(payload, dict) or not isinstance(payload.get("questions"), list):
        raise GenerationError("Invalid response format: missing questions array")

    items = payload["questions"]
    if not items:
        raise GenerationError("Invalid response format: questions array is empty")

    out: list[QuizQuestion] = []
    seen_ids: set[str] = set()
    for i, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise GenerationError(f"question {i} is not an object")
        try:
            q = QuizQuestion.model_validate(item)
        except ValidationError as e:
            raise GenerationError(f"question {i} is invalid: {_first_error(e)}") from e
        if q.id in seen_ids:
            raise GenerationError(f"question {i} reuses id {q.id!r}")
        seen_ids.add(q.id)
        out.append(q)
    return out


def generate_questions(source: GenerationSource, count: int, config: ProviderConfig) -> list[QuizQuestion]:
    max_q = int(settings.quiz_max_questions)
    if not isinstance(count, int) or isinstance(count, bool) or not 1 <= count <= max_q:
        raise GenerationError(f"Please enter a valid number of questions (1-{max_q})")

    prompt = build_generation_prompt(source, count)
    raw = generate_text(prompt, config, purpose=GENERATION)
    payload = parse_llm_json(raw)

    try:
        questions = validate_questions(payload)
    except GenerationError as e:
        logger.warning("quiz_generation: rejected batch provider=%s reason=%s", config.provider.value, e.reason)
        raise

    if len(questions) != count:
        logger.warning("quiz_generation: requested=%d generated=%d", count, len(questions))
    logger.info(
        "quiz_generation: ok provider=%s source=%s questions=%d",
        config.provider.value,
        "document" if source.is_document else "topic",
        len(questions),
    )
    return questions
