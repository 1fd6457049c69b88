import json
import uuid

import pytest

from app.core.errors import EvaluationError, InvalidStateError, NotFoundError
from app.models.quiz import Quiz
from app.models.user import User, UserRole
from app.schemas.llm import ProviderConfig
from app.schemas.quiz import EvaluationResult
from app.services.quiz_attempts import QuizAttemptService

CONFIG = ProviderConfig(provider="openai", model="gpt-4", api_key="sk")


def _seed(db, marks: tuple[int, int] = (4, 6)) -> tuple[Quiz, User]:
    author = User(name=f"author_{uuid.uuid4().hex[:8]}", role=UserRole.admin, password_hash="x")
    learner = User(name=f"learner_{uuid.uuid4().hex[:8]}", role=UserRole.learner, password_hash="x")
    db.add_all([author, learner])
    db.flush()

    quiz = Quiz(
        title="Photosynthesis basics",
        topic="Photosynthesis",
        questions=[
            {
                "id": "q1",
                "question": "Where does photosynthesis happen?",
                "type": "multiple-choice",
                "options": ["Chloroplast", "Ribosome"],
                "correctAnswer": "Chloroplast",
                "marks": marks[0],
            },
            {"id": "q2", "question": "Explain the light reactions.", "type": "essay", "marks": marks[1]},
        ],
        evaluation_prompts=[],
        total_questions=2,
        total_marks=sum(marks),
        created_by=author.id,
    )
    db.add(quiz)
    db.commit()
    db.refresh(quiz)
    db.refresh(learner)
    return quiz, learner


def _fake_evaluate(score: float, seen: list | None = None):
    def _fake(quiz, answers, config, *, total_marks=None):
        if seen is not None:
            seen.append((quiz, dict(answers)))
        return EvaluationResult(
            score=score,
            strengths=["Good"],
            weaknesses=[],
            improvements=["More detail"],
            detailed_feedback="Nice work.",
        )

    return _fake


def test_start_is_idempotent(db):
    quiz, learner = _seed(db)
    svc = QuizAttemptService(db)

    a1, created1 = svc.start(quiz.id, learner.id)
    a2, created2 = svc.start(quiz.id, learner.id)

    assert created1 is True
    assert created2 is False
    assert a1.id == a2.id
    assert a1.status == "in_progress"
    assert a1.total_marks == 10


def test_start_unknown_quiz(db):
    _, learner = _seed(db)
    with pytest.raises(NotFoundError):
        QuizAttemptService(db).start(uuid.uuid4(), learner.id)


def test_save_answer_overwrites_per_question(db):
    quiz, learner = _seed(db)
    svc = QuizAttemptService(db)
    attempt, _ = svc.start(quiz.id, learner.id)

    svc.save_answer(attempt.id, "q1", 1)
    svc.save_answer(attempt.id, "q2", "draft")
    updated = svc.save_answer(attempt.id, "q2", "final answer")

    assert updated.answers == {"q1": 1, "q2": "final answer"}


def test_save_answer_unknown_question(db):
    quiz, learner = _seed(db)
    svc = QuizAttemptService(db)
    attempt, _ = svc.start(quiz.id, learner.id)

    with pytest.raises(NotFoundError):
        svc.save_answer(attempt.id, "q99", "x")


def test_submit_completes_and_locks_attempt(db, monkeypatch):
    import app.services.quiz_attempts as attempts_mod

    seen: list = []
    monkeypatch.setattr(attempts_mod, "evaluate", _fake_evaluate(7.5, seen))

    quiz, learner = _seed(db)
    svc = QuizAttemptService(db)
    attempt, _ = svc.start(quiz.id, learner.id)
    svc.save_answer(attempt.id, "q1", "Chloroplast")

    done = svc.submit(attempt.id, CONFIG)

    assert done.status == "completed"
    assert done.score == 7.5
    assert done.completed_at is not None
    assert done.evaluation_result["detailedFeedback"] == "Nice work."
    assert seen[0][0].total_marks == 10
    assert seen[0][1] == {"q1": "Chloroplast"}

    with pytest.raises(InvalidStateError):
        svc.save_answer(attempt.id, "q2", "too late")
    with pytest.raises(InvalidStateError):
        svc.submit(attempt.id, CONFIG)

    # Start after completion hands back the finished attempt.
    again, created = svc.start(quiz.id, learner.id)
    assert created is False
    assert again.status == "completed"


def test_failed_evaluation_leaves_attempt_in_progress(db, monkeypatch):
    import app.services.quiz_attempts as attempts_mod

    def _boom(quiz, answers, config, *, total_marks=None):
        raise EvaluationError("score 150 is outside the range 0..10")

    monkeypatch.setattr(attempts_mod, "evaluate", _boom)

    quiz, learner = _seed(db)
    svc = QuizAttemptService(db)
    attempt, _ = svc.start(quiz.id, learner.id)
    svc.save_answer(attempt.id, "q2", "Light is absorbed.")

    with pytest.raises(EvaluationError):
        svc.submit(attempt.id, CONFIG)

    fresh = svc.get(attempt.id)
    assert fresh.status == "in_progress"
    assert fresh.score is None
    assert fresh.answers == {"q2": "Light is absorbed."}

    # Retry succeeds once the grader behaves.
    monkeypatch.setattr(attempts_mod, "evaluate", _fake_evaluate(6))
    assert svc.submit(attempt.id, CONFIG).status == "completed"


def _grader_reply(score: float, prompts: list | None = None):
    def _fake(prompt, config, *, purpose):
        if prompts is not None:
            prompts.append(prompt)
        return json.dumps(
            {
                "score": score,
                "strengths": [],
                "weaknesses": [],
                "improvements": [],
                "detailedFeedback": "Graded.",
            }
        )

    return _fake


def test_out_of_range_grade_is_rejected_and_attempt_stays_open(db, monkeypatch):
    import app.services.quiz_evaluation as eval_mod

    monkeypatch.setattr(eval_mod, "generate_text", _grader_reply(150))

    quiz, learner = _seed(db, marks=(40, 60))
    assert quiz.total_marks == 100
    svc = QuizAttemptService(db)
    attempt, _ = svc.start(quiz.id, learner.id)
    svc.save_answer(attempt.id, "q1", "Chloroplast")

    with pytest.raises(EvaluationError) as ei:
        svc.submit(attempt.id, CONFIG)
    assert "0..100" in str(ei.value)

    fresh = svc.get(attempt.id)
    db.refresh(fresh)
    assert fresh.status == "in_progress"
    assert fresh.score is None
    assert fresh.completed_at is None
    assert fresh.evaluation_result is None


def test_submit_grades_against_total_snapshotted_at_start(db, monkeypatch):
    import app.services.quiz_evaluation as eval_mod

    quiz, learner = _seed(db)
    svc = QuizAttemptService(db)
    attempt, _ = svc.start(quiz.id, learner.id)
    assert attempt.total_marks == 10

    # Quiz grows to 100 marks after the attempt started.
    questions = [dict(q) for q in quiz.questions]
    questions[0]["marks"] = 40
    questions[1]["marks"] = 60
    quiz.questions = questions
    quiz.total_marks = 100
    db.commit()

    prompts: list = []
    monkeypatch.setattr(eval_mod, "generate_text", _grader_reply(50, prompts))
    with pytest.raises(EvaluationError):
        svc.submit(attempt.id, CONFIG)
    assert "Total Marks: 10\n" in prompts[0]

    fresh = svc.get(attempt.id)
    db.refresh(fresh)
    assert fresh.status == "in_progress"
    assert fresh.score is None

    monkeypatch.setattr(eval_mod, "generate_text", _grader_reply(9))
    done = svc.submit(attempt.id, CONFIG)
    assert done.status == "completed"
    assert done.score == 9
    assert done.total_marks == 10


def test_list_for_user_newest_first(db):
    quiz, learner = _seed(db)
    svc = QuizAttemptService(db)
    attempt, _ = svc.start(quiz.id, learner.id)

    items = svc.list_for_user(learner.id)
    assert [a.id for a in items] == [attempt.id]
