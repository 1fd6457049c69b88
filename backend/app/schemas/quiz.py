from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt, StrictStr, model_validator

from app.schemas.llm import ProviderConfig

QuestionKindName = Literal["multiple-choice", "short-answer", "essay"]

_OPTION_LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def resolve_correct_option(options: list[str] | None, correct: object) -> int | None:
    """Index of the option a multiple-choice answer key points at.

    Accepts an integer index, the option text itself, an option letter
    ("B") or a digit string. Returns None if nothing matches.
    """
    opts = list(options or [])
    if not opts or correct is None or isinstance(correct, bool):
        return None

    if isinstance(correct, int):
        return correct if 0 <= correct < len(opts) else None

    s = str(correct).strip()
    if not s:
        return None

    norm = s.casefold()
    for i, opt in enumerate(opts):
        if str(opt).strip().casefold() == norm:
            return i

    if len(s) == 1 and s.upper() in _OPTION_LETTERS:
        idx = _OPTION_LETTERS.index(s.upper())
        return idx if idx < len(opts) else None

    if s.isdigit():
        idx = int(s)
        return idx if idx < len(opts) else None

    return None


class QuizQuestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Strict types: values emitted with the wrong JSON type are rejected, not coerced.
    id: StrictStr = Field(min_length=1)
    text: StrictStr = Field(alias="question", min_length=1)
    kind: QuestionKindName = Field(alias="type")
    options: list[StrictStr] | None = None
    correct_answer: StrictStr | StrictInt | None = Field(default=None, alias="correctAnswer")
    marks: StrictInt = Field(ge=1)

    @model_validator(mode="after")
    def _check_multiple_choice(self) -> "QuizQuestion":
        if self.kind != "multiple-choice":
            return self
        opts = self.options or []
        if len(opts) < 2:
            raise ValueError("multiple-choice question needs at least 2 options")
        if any(not str(o).strip() for o in opts):
            raise ValueError("multiple-choice options must be non-empty")
        if self.correct_answer is None:
            raise ValueError("multiple-choice question needs correctAnswer")
        if resolve_correct_option(opts, self.correct_answer) is None:
            raise ValueError("correctAnswer does not reference a valid option")
        return self

    def correct_option_text(self) -> str | None:
        idx = resolve_correct_option(self.options, self.correct_answer)
        if idx is None:
            return None
        return str((self.options or [])[idx])


class EvaluationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    score: float
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    detailed_feedback: str = Field(alias="detailedFeedback")


class QuizForEvaluation(BaseModel):
    """Quiz content handed to the grader."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    topic: str | None = None
    questions: list[QuizQuestion]
    evaluation_prompts: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("evaluation_prompts", "evaluationPrompts"),
    )

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def total_marks(self) -> int:
        return sum(int(q.marks) for q in self.questions)


class QuizGenerateRequest(BaseModel):
    topic: str | None = None
    document_url: str | None = None
    count: int = Field(ge=1, le=50)
    llm_config: ProviderConfig | None = None

    @model_validator(mode="after")
    def _check_source(self) -> "QuizGenerateRequest":
        if not (self.topic or "").strip() and not (self.document_url or "").strip():
            raise ValueError("topic or document_url is required")
        return self


class QuizGenerateResponse(BaseModel):
    questions: list[QuizQuestion]
    requested: int
    generated: int


class DocumentUploadResponse(BaseModel):
    document_url: str
    object_key: str


class QuizCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    description: str | None = None
    topic: str | None = None
    source_document_url: str | None = None
    questions: list[QuizQuestion] = Field(min_length=1)
    evaluation_prompts: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_ids(self) -> "QuizCreateRequest":
        ids = [q.id for q in self.questions]
        if len(set(ids)) != len(ids):
            raise ValueError("question ids must be unique")
        return self


class QuizUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = None
    topic: str | None = None
    questions: list[QuizQuestion] | None = Field(default=None, min_length=1)
    evaluation_prompts: list[str] | None = None

    @model_validator(mode="after")
    def _check_unique_ids(self) -> "QuizUpdateRequest":
        if self.questions is not None:
            ids = [q.id for q in self.questions]
            if len(set(ids)) != len(ids):
                raise ValueError("question ids must be unique")
        return self


class QuizCreateResponse(BaseModel):
    id: str
    total_questions: int
    total_marks: int


class QuizSummary(BaseModel):
    id: str
    title: str
    description: str | None
    topic: str | None
    total_questions: int
    total_marks: int
    created_at: str


class QuizListResponse(BaseModel):
    items: list[QuizSummary]


class QuizDetail(BaseModel):
    id: str
    title: str
    description: str | None
    topic: str | None
    source_document_url: str | None
    total_questions: int
    total_marks: int
    questions: list[dict[str, Any]]
    evaluation_prompts: list[str]
    created_by: str
    created_at: str
    updated_at: str


class AttemptStartResponse(BaseModel):
    attempt_id: str
    created: bool


class AnswerSaveRequest(BaseModel):
    value: Any = None


class AttemptSubmitRequest(BaseModel):
    llm_config: ProviderConfig | None = None


class AttemptPublic(BaseModel):
    id: str
    quiz_id: str
    user_id: str
    status: str
    answers: dict[str, Any]
    score: float | None
    total_marks: int
    evaluation_result: EvaluationResult | None
    started_at: str
    completed_at: str | None


class AttemptListResponse(BaseModel):
    items: list[AttemptPublic]


class GenerateQuizFunctionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    topic: str | None = None
    document_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("documentUrl", "pdfUrl", "document_url"),
    )
    total_questions: int = Field(validation_alias=AliasChoices("totalQuestions", "total_questions"))
    llm_config: ProviderConfig | None = Field(
        default=None,
        validation_alias=AliasChoices("llmConfig", "llm_config"),
    )


class EvaluateQuizFunctionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    quiz: QuizForEvaluation
    answers: dict[str, Any] = Field(default_factory=dict)
    llm_config: ProviderConfig | None = Field(
        default=None,
        validation_alias=AliasChoices("llmConfig", "llm_config"),
    )


class FunctionErrorResponse(BaseModel):
    error: str
    details: str | None = None
