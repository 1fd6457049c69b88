from app.models.user import User, UserRole
from app.models.quiz import Quiz
from app.models.attempt import QuizAttempt

__all__ = [
    "User",
    "UserRole",
    "Quiz",
    "QuizAttempt",
]
