from __future__ import annotations

import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import InvalidStateError
from app.core.rate_limit import rate_limit
from app.core.security import get_current_user, require_admin
from app.db.session import get_db
from app.models.attempt import QuizAttempt
from app.models.quiz import Quiz
from app.models.user import User, UserRole
from app.schemas.quiz import (
    AttemptStartResponse,
    DocumentUploadResponse,
    QuizCreateRequest,
    QuizCreateResponse,
    QuizDetail,
    QuizGenerateRequest,
    QuizGenerateResponse,
    QuizListResponse,
    QuizQuestion,
    QuizSummary,
    QuizUpdateRequest,
)
from app.services.llm_config import config_store
from app.services.quiz_attempts import QuizAttemptService
from app.services.quiz_generation import GenerationSource, generate_questions
from app.services.storage import upload_document

router = APIRouter(prefix="/quizzes", tags=["quizzes"])

logger = logging.getLogger(__name__)


def _parse_uuid(value: str, *, what: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise HTTPException(status_code=404, detail=f"{what} not found") from e


def _get_quiz(db: Session, quiz_id: str) -> Quiz:
    quiz = db.get(Quiz, _parse_uuid(quiz_id, what="quiz"))
    if quiz is None:
        raise HTTPException(status_code=404, detail="quiz not found")
    return quiz


def _apply_questions(quiz: Quiz, questions: list[QuizQuestion]) -> None:
    quiz.questions = [q.model_dump(by_alias=True) for q in questions]
    quiz.total_questions = len(questions)
    quiz.total_marks = sum(int(q.marks) for q in questions)


def _question_view(q: dict, *, reveal_answers: bool) -> dict:
    out = dict(q)
    if not reveal_answers:
        out.pop("correctAnswer", None)
    return out


def _summary(quiz: Quiz) -> QuizSummary:
    return QuizSummary(
        id=str(quiz.id),
        title=quiz.title,
        description=quiz.description,
        topic=quiz.topic,
        total_questions=int(quiz.total_questions or 0),
        total_marks=int(quiz.total_marks or 0),
        created_at=quiz.created_at.isoformat(),
    )


@router.post("/generate", response_model=QuizGenerateResponse)
def generate_quiz(
    payload: QuizGenerateRequest,
    current: User = Depends(require_admin),
    _: object = rate_limit(key_prefix="quiz_generate", limit=10, window_seconds=60),
):
    config = config_store.resolve(payload.llm_config)
    source = GenerationSource(topic=payload.topic, document_url=payload.document_url)
    questions = generate_questions(source, int(payload.count), config)
    return QuizGenerateResponse(questions=questions, requested=int(payload.count), generated=len(questions))


@router.post("/documents", response_model=DocumentUploadResponse)
async def upload_quiz_document(
    file: UploadFile = File(...),
    current: User = Depends(require_admin),
    _: object = rate_limit(key_prefix="quiz_documents", limit=20, window_seconds=60),
):
    if not file.filename or not file.filename.lower().endswith(".pdf"):
        raise HTTPException(status_code=400, detail="only .pdf is supported")

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="empty file")
    if len(data) > int(settings.document_max_bytes):
        raise HTTPException(status_code=413, detail="file too large")

    try:
        object_key, url = upload_document(filename=file.filename, data=data, content_type=file.content_type)
    except Exception as e:
        logger.exception("quizzes: document upload failed filename=%s", file.filename)
        raise HTTPException(status_code=500, detail="failed to upload document") from e

    return DocumentUploadResponse(document_url=url, object_key=object_key)


@router.post("", response_model=QuizCreateResponse)
def create_quiz(
    payload: QuizCreateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(require_admin),
):
    quiz = Quiz(
        title=payload.title.strip(),
        description=payload.description,
        topic=payload.topic,
        source_document_url=payload.source_document_url,
        evaluation_prompts=[p for p in payload.evaluation_prompts if str(p).strip()],
        created_by=current.id,
    )
    _apply_questions(quiz, payload.questions)
    db.add(quiz)
    db.commit()
    db.refresh(quiz)
    logger.info("quizzes: created quiz=%s questions=%d marks=%d", quiz.id, quiz.total_questions, quiz.total_marks)
    return QuizCreateResponse(id=str(quiz.id), total_questions=quiz.total_questions, total_marks=quiz.total_marks)


@router.get("", response_model=QuizListResponse)
def list_quizzes(db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    rows = db.scalars(select(Quiz).order_by(Quiz.created_at.desc())).all()
    return QuizListResponse(items=[_summary(q) for q in rows])


@router.get("/{quiz_id}", response_model=QuizDetail)
def get_quiz(quiz_id: str, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    quiz = _get_quiz(db, quiz_id)
    # Learners never see the answer key.
    reveal = current.role == UserRole.admin
    return QuizDetail(
        id=str(quiz.id),
        title=quiz.title,
        description=quiz.description,
        topic=quiz.topic,
        source_document_url=quiz.source_document_url,
        total_questions=int(quiz.total_questions or 0),
        total_marks=int(quiz.total_marks or 0),
        questions=[_question_view(q, reveal_answers=reveal) for q in (quiz.questions or [])],
        evaluation_prompts=list(quiz.evaluation_prompts or []),
        created_by=str(quiz.created_by),
        created_at=quiz.created_at.isoformat(),
        updated_at=quiz.updated_at.isoformat(),
    )


@router.patch("/{quiz_id}", response_model=QuizCreateResponse)
def update_quiz(
    quiz_id: str,
    payload: QuizUpdateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(require_admin),
):
    quiz = _get_quiz(db, quiz_id)
    if payload.questions is not None:
        attempt_count = db.scalar(select(func.count()).select_from(QuizAttempt).where(QuizAttempt.quiz_id == quiz.id)) or 0
        # Attempts snapshot the quiz total at start, so questions are frozen once one exists.
        if int(attempt_count) > 0:
            raise InvalidStateError("quiz questions cannot be changed once attempts exist")
    if payload.title is not None:
        quiz.title = payload.title.strip()
    if payload.description is not None:
        quiz.description = payload.description
    if payload.topic is not None:
        quiz.topic = payload.topic
    if payload.evaluation_prompts is not None:
        quiz.evaluation_prompts = [p for p in payload.evaluation_prompts if str(p).strip()]
    if payload.questions is not None:
        _apply_questions(quiz, payload.questions)
    quiz.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(quiz)
    return QuizCreateResponse(id=str(quiz.id), total_questions=quiz.total_questions, total_marks=quiz.total_marks)


@router.delete("/{quiz_id}")
def delete_quiz(quiz_id: str, db: Session = Depends(get_db), current: User = Depends(require_admin)):
    quiz = _get_quiz(db, quiz_id)
    db.execute(delete(QuizAttempt).where(QuizAttempt.quiz_id == quiz.id))
    db.delete(quiz)
    db.commit()
    logger.info("quizzes: deleted quiz=%s", quiz_id)
    return {"ok": True}


@router.post("/{quiz_id}/attempts", response_model=AttemptStartResponse)
def start_attempt(quiz_id: str, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    attempt, created = QuizAttemptService(db).start(_parse_uuid(quiz_id, what="quiz"), current.id)
    return AttemptStartResponse(attempt_id=str(attempt.id), created=created)
