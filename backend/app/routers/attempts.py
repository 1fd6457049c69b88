from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.rate_limit import rate_limit
from app.core.security import get_current_user
from app.db.session import get_db
from app.models.attempt import QuizAttempt
from app.models.user import User, UserRole
from app.schemas.quiz import AnswerSaveRequest, AttemptListResponse, AttemptPublic, AttemptSubmitRequest
from app.services.llm_config import config_store
from app.services.quiz_attempts import QuizAttemptService

router = APIRouter(tags=["attempts"])


def _attempt_public(attempt: QuizAttempt) -> AttemptPublic:
    return AttemptPublic(
        id=str(attempt.id),
        quiz_id=str(attempt.quiz_id),
        user_id=str(attempt.user_id),
        status=attempt.status,
        answers=dict(attempt.answers or {}),
        score=attempt.score,
        total_marks=int(attempt.total_marks or 0),
        evaluation_result=attempt.evaluation_result,
        started_at=attempt.started_at.isoformat(),
        completed_at=attempt.completed_at.isoformat() if attempt.completed_at else None,
    )


def _owned_attempt(svc: QuizAttemptService, attempt_id: str, user: User) -> QuizAttempt:
    try:
        pk = uuid.UUID(str(attempt_id))
    except ValueError as e:
        raise HTTPException(status_code=404, detail="quiz attempt not found") from e

    attempt = svc.get(pk)
    # Admins may inspect any attempt; learners only their own.
    if attempt.user_id != user.id and user.role != UserRole.admin:
        raise HTTPException(status_code=404, detail="quiz attempt not found")
    return attempt


@router.put("/attempts/{attempt_id}/answers/{question_id}", response_model=AttemptPublic)
def save_answer(
    attempt_id: str,
    question_id: str,
    payload: AnswerSaveRequest,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    svc = QuizAttemptService(db)
    attempt = _owned_attempt(svc, attempt_id, current)
    if attempt.user_id != current.id:
        raise HTTPException(status_code=403, detail="forbidden")
    return _attempt_public(svc.save_answer(attempt.id, question_id, payload.value))


@router.post("/attempts/{attempt_id}/submit", response_model=AttemptPublic)
def submit_attempt(
    attempt_id: str,
    payload: AttemptSubmitRequest | None = None,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="attempt_submit", limit=10, window_seconds=60),
):
    svc = QuizAttemptService(db)
    attempt = _owned_attempt(svc, attempt_id, current)
    if attempt.user_id != current.id:
        raise HTTPException(status_code=403, detail="forbidden")
    config = config_store.resolve(payload.llm_config if payload is not None else None)
    return _attempt_public(svc.submit(attempt.id, config))


@router.get("/attempts/{attempt_id}", response_model=AttemptPublic)
def get_attempt(attempt_id: str, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return _attempt_public(_owned_attempt(QuizAttemptService(db), attempt_id, current))


@router.get("/me/attempts", response_model=AttemptListResponse)
def my_attempts(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return AttemptListResponse(items=[_attempt_public(a) for a in QuizAttemptService(db).list_for_user(current.id)])
