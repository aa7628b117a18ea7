"""Quiz scoring: explicit session state machine and grant-once completions."""

from .service import QuizCompletionRecord, QuizCompletionResult, QuizService
from .session import (
    AnswerResult,
    QuizDefinition,
    QuizOption,
    QuizQuestion,
    QuizSessionState,
    QuizSummary,
    RecordedAnswer,
    answer_question,
    restart_session,
    run_session,
    start_session,
    summarize_session,
)

__all__ = [
    "QuizService",
    "QuizCompletionResult",
    "QuizCompletionRecord",
    "QuizDefinition",
    "QuizOption",
    "QuizQuestion",
    "QuizSessionState",
    "QuizSummary",
    "RecordedAnswer",
    "AnswerResult",
    "start_session",
    "answer_question",
    "restart_session",
    "run_session",
    "summarize_session",
]
