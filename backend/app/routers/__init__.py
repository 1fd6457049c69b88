from app.routers import attempts, auth, functions, health, llm, quizzes

__all__ = [
    "attempts",
    "auth",
    "functions",
    "health",
    "llm",
    "quizzes",
]
