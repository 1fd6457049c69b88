"""Function-style endpoints: one JSON body in, one JSON body out.

Failures of any kind come back as HTTP 400 `{error, details}` rather than the
app-wide envelope, so thin clients only need one error shape.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.core.errors import QuizPipelineError, user_message
from app.core.rate_limit import rate_limit
from app.core.security import get_current_user
from app.models.user import User
from app.schemas.quiz import EvaluateQuizFunctionRequest, FunctionErrorResponse, GenerateQuizFunctionRequest
from app.services.llm_config import config_store
from app.services.quiz_evaluation import evaluate
from app.services.quiz_generation import GenerationSource, generate_questions

router = APIRouter(prefix="/functions", tags=["functions"])

logger = logging.getLogger(__name__)


def _error(error: str, details: str | None = None) -> JSONResponse:
    return JSONResponse(status_code=400, content=FunctionErrorResponse(error=error, details=details).model_dump())


def _validation_details(e: ValidationError) -> str:
    err = (e.errors() or [{}])[0]
    loc = ".".join(str(x) for x in err.get("loc", ()))
    return f"{loc}: {err.get('msg', 'invalid value')}" if loc else str(err.get("msg", "invalid value"))


@router.post("/generate-quiz")
def generate_quiz_function(
    body: dict[str, Any] = Body(...),
    current: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="fn_generate_quiz", limit=10, window_seconds=60),
):
    try:
        req = GenerateQuizFunctionRequest.model_validate(body)
    except ValidationError as e:
        return _error("Invalid request", _validation_details(e))

    if not (req.topic or "").strip() and not (req.document_url or "").strip():
        return _error("Invalid request", "topic or documentUrl is required")

    try:
        questions = generate_questions(
            GenerationSource(topic=req.topic, document_url=req.document_url),
            req.total_questions,
            config_store.resolve(req.llm_config),
        )
    except QuizPipelineError as e:
        logger.warning("functions: generate-quiz failed user=%s err=%s", current.id, e)
        return _error(user_message(e), str(e))

    return {"questions": [q.model_dump(by_alias=True) for q in questions]}


@router.post("/evaluate-quiz")
def evaluate_quiz_function(
    body: dict[str, Any] = Body(...),
    current: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="fn_evaluate_quiz", limit=10, window_seconds=60),
):
    try:
        req = EvaluateQuizFunctionRequest.model_validate(body)
    except ValidationError as e:
        return _error("Invalid request", _validation_details(e))

    try:
        result = evaluate(req.quiz, req.answers, config_store.resolve(req.llm_config))
    except QuizPipelineError as e:
        logger.warning("functions: evaluate-quiz failed user=%s err=%s", current.id, e)
        return _error(user_message(e), str(e))

    return result.model_dump(by_alias=True)
