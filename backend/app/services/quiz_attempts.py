from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import InvalidStateError, NotFoundError
from app.models.attempt import QuizAttempt
from app.models.quiz import Quiz
from app.schemas.llm import ProviderConfig
from app.schemas.quiz import QuizForEvaluation, QuizQuestion
from app.services.quiz_evaluation import evaluate

logger = logging.getLogger(__name__)


def quiz_for_evaluation(quiz: Quiz) -> QuizForEvaluation:
    return QuizForEvaluation(
        title=quiz.title,
        topic=quiz.topic,
        questions=[QuizQuestion.model_validate(q) for q in (quiz.questions or [])],
        evaluation_prompts=list(quiz.evaluation_prompts or []),
    )


class QuizAttemptService:
    """Attempt lifecycle: in_progress -> completed (terminal).

    Writes that require in_progress are conditional updates on
    `completed_at IS NULL`, so a racing submit cannot be overwritten.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, attempt_id: uuid.UUID) -> QuizAttempt:
        attempt = self.db.get(QuizAttempt, attempt_id)
        if attempt is None:
            raise NotFoundError("quiz attempt not found")
        return attempt

    def _get_quiz(self, quiz_id: uuid.UUID) -> Quiz:
        quiz = self.db.get(Quiz, quiz_id)
        if quiz is None:
            raise NotFoundError("quiz not found")
        return quiz

    def _find(self, quiz_id: uuid.UUID, user_id: uuid.UUID) -> QuizAttempt | None:
        return self.db.scalar(
            select(QuizAttempt).where(QuizAttempt.quiz_id == quiz_id, QuizAttempt.user_id == user_id)
        )

    def start(self, quiz_id: uuid.UUID, user_id: uuid.UUID) -> tuple[QuizAttempt, bool]:
        """Return the (quiz, user) attempt, creating it on first call.

        The second element is True only when a new row was inserted.
        """
        quiz = self._get_quiz(quiz_id)

        existing = self._find(quiz.id, user_id)
        if existing is not None:
            return existing, False

        attempt = QuizAttempt(
            quiz_id=quiz.id,
            user_id=user_id,
            answers={},
            total_marks=int(quiz.total_marks or 0),
        )
        self.db.add(attempt)
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent start for the same pair won the unique constraint.
            self.db.rollback()
            existing = self._find(quiz.id, user_id)
            if existing is None:
                raise
            return existing, False

        self.db.refresh(attempt)
        logger.info("quiz_attempts: started attempt=%s quiz=%s user=%s", attempt.id, quiz.id, user_id)
        return attempt, True

    def save_answer(self, attempt_id: uuid.UUID, question_id: str, value: Any) -> QuizAttempt:
        attempt = self.get(attempt_id)
        if attempt.completed_at is not None:
            raise InvalidStateError("quiz attempt is already completed")

        quiz = self._get_quiz(attempt.quiz_id)
        if question_id not in {str(q.get("id")) for q in (quiz.questions or []) if isinstance(q, dict)}:
            raise NotFoundError("question not found in quiz")

        merged = dict(attempt.answers or {})
        merged[question_id] = value

        res = self.db.execute(
            update(QuizAttempt)
            .where(QuizAttempt.id == attempt.id, QuizAttempt.completed_at.is_(None))
            .values(answers=merged)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            self.db.rollback()
            raise InvalidStateError("quiz attempt is already completed")
        self.db.commit()
        self.db.refresh(attempt)
        return attempt

    def submit(self, attempt_id: uuid.UUID, config: ProviderConfig) -> QuizAttempt:
        attempt = self.get(attempt_id)
        if attempt.completed_at is not None:
            raise InvalidStateError("quiz attempt is already submitted")

        quiz = self._get_quiz(attempt.quiz_id)
        payload = quiz_for_evaluation(quiz)
        answers = dict(attempt.answers or {})
        total_marks = int(attempt.total_marks or 0)
        attempt_pk = attempt.id

        # Release the connection while the grader runs.
        self.db.rollback()

        # Any evaluation failure propagates and leaves the attempt in_progress.
        result = evaluate(payload, answers, config, total_marks=total_marks)

        res = self.db.execute(
            update(QuizAttempt)
            .where(QuizAttempt.id == attempt_pk, QuizAttempt.completed_at.is_(None))
            .values(
                score=float(result.score),
                evaluation_result=result.model_dump(by_alias=True),
                completed_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            self.db.rollback()
            raise InvalidStateError("quiz attempt is already submitted")
        self.db.commit()

        attempt = self.get(attempt_pk)
        self.db.refresh(attempt)
        logger.info("quiz_attempts: completed attempt=%s score=%s/%s", attempt.id, attempt.score, total_marks)
        return attempt

    def list_for_user(self, user_id: uuid.UUID) -> list[QuizAttempt]:
        return list(
            self.db.scalars(
                select(QuizAttempt).where(QuizAttempt.user_id == user_id).order_by(QuizAttempt.started_at.desc())
            )
        )
