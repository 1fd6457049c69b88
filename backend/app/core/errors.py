"""Error types raised by the quiz pipeline.

Every pipeline failure is scoped to one generation, evaluation or attempt
operation. None of them is fatal to the process; routers let them bubble to
the app-level handler, which renders a categorized user-facing message.
"""

from __future__ import annotations


class QuizPipelineError(Exception):
    """Base class for all quiz pipeline errors."""

    status_code: int = 502
    error_code: str = "pipeline_error"

    def __init__(self, message: str):
        self.message = str(message)
        super().__init__(self.message)


class ProviderError(QuizPipelineError):
    """Transport failure or non-2xx answer from an LLM provider."""

    error_code = "provider_error"

    def __init__(self, message: str, *, status: int | None = None, provider: str | None = None):
        self.status = status
        self.provider = provider
        super().__init__(message)

    def __str__(self) -> str:
        prefix = f"{self.provider} API error" if self.provider else "LLM API error"
        if self.status is not None:
            return f"{prefix}: {self.status}: {self.message}"
        return f"{prefix}: {self.message}"


class ParseError(QuizPipelineError):
    """Provider response or model output holds no usable JSON payload."""

    error_code = "parse_error"

    def __init__(self, message: str, *, raw_text: str = ""):
        self.raw_text = raw_text
        super().__init__(message)


class GenerationError(QuizPipelineError):
    """Generated question payload is structurally invalid."""

    error_code = "generation_error"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class EvaluationError(QuizPipelineError):
    """Evaluation payload is structurally invalid or out of range."""

    error_code = "evaluation_error"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class InvalidStateError(QuizPipelineError):
    """Operation attempted against an attempt in the wrong state."""

    status_code = 409
    error_code = "invalid_state"


class NotFoundError(QuizPipelineError):
    status_code = 404
    error_code = "not_found"


class ConfigError(QuizPipelineError):
    """LLM configuration rejected at save time."""

    status_code = 400
    error_code = "invalid_config"


CATEGORY_MESSAGES: dict[str, str] = {
    "auth": "Authentication failed with the LLM provider. Check the API key configured for this provider.",
    "rate_limit": "Rate limit exceeded at the LLM provider. Please wait a moment and try again.",
    "network": "Network error while contacting the LLM provider. Please check connectivity and try again.",
    "malformed_response": "Invalid response from the AI service. Please try again.",
    "invalid_state": "This quiz attempt can no longer be changed.",
    "not_found": "The requested resource was not found.",
    "invalid_config": "The LLM configuration is invalid.",
    "provider_error": "The LLM provider returned an error.",
}


def classify_error(exc: BaseException) -> str:
    """Map a pipeline error onto a remediation category."""
    if isinstance(exc, ProviderError):
        if exc.status in {401, 403}:
            return "auth"
        if exc.status == 429:
            return "rate_limit"
        if exc.status is None:
            return "network"
        return "provider_error"
    if isinstance(exc, (ParseError, GenerationError, EvaluationError)):
        return "malformed_response"
    if isinstance(exc, InvalidStateError):
        return "invalid_state"
    if isinstance(exc, NotFoundError):
        return "not_found"
    if isinstance(exc, ConfigError):
        return "invalid_config"

    # Errors from outside the pipeline only carry their text.
    msg = str(exc).lower()
    if "401" in msg or "403" in msg or "api key" in msg:
        return "auth"
    if "rate limit" in msg or "429" in msg:
        return "rate_limit"
    if "network" in msg or "timed out" in msg or "connection" in msg:
        return "network"
    if "json" in msg or "parse" in msg:
        return "malformed_response"
    return "provider_error"


def user_message(exc: BaseException) -> str:
    return CATEGORY_MESSAGES[classify_error(exc)]


def http_status_for(exc: QuizPipelineError) -> int:
    if isinstance(exc, ProviderError) and exc.status == 429:
        return 429
    return int(exc.status_code)
