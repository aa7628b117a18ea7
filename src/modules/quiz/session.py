"""
Quiz session state machine (pure).

A session walks an ordered list of multiple-choice questions:

    Question 1 -> ... -> Question N -> Results

Each call to ``answer_question`` locks in the answer for the current
question and returns a *new* ``QuizSessionState``; states are immutable and
never shared, so the machine can be driven and tested without any UI or
storage. Correctness is decided by the selected option's ``is_correct``
flag, never by comparing text. The results summary re-scores the recorded
selections, so a state built or edited by hand cannot claim extra XP.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

from src.modules.shared.constants import QUIZ_PASS_THRESHOLD_PERCENT
from src.modules.shared.exceptions import InvalidOperationError, ValidationError


@dataclass(frozen=True)
class QuizOption:
    text: str
    is_correct: bool = False


@dataclass(frozen=True)
class QuizQuestion:
    """
    One question. Exactly one correct option is an authoring convention and
    is not enforced here.
    """

    question_id: str
    prompt: str
    options: Tuple[QuizOption, ...]
    xp_reward: int = 0
    explanation: Optional[str] = None

    @property
    def correct_option_index(self) -> Optional[int]:
        for index, option in enumerate(self.options):
            if option.is_correct:
                return index
        return None


@dataclass(frozen=True)
class QuizDefinition:
    lesson_id: str
    questions: Tuple[QuizQuestion, ...]

    def __post_init__(self) -> None:
        if not self.questions:
            raise ValidationError("questions", "A quiz needs at least one question")
        for question in self.questions:
            if not question.options:
                raise ValidationError(
                    "options", f"Question {question.question_id} has no options"
                )
            if question.xp_reward < 0:
                raise ValidationError(
                    "xp_reward", f"Question {question.question_id} has a negative reward"
                )

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuizDefinition":
        """
        Build a definition from plain data, e.g.::

            {"lesson_id": "l-1", "questions": [
                {"id": "q1", "question": "...", "xp_reward": 10,
                 "explanation": "...",
                 "options": [{"text": "a", "is_correct": True}, ...]}]}
        """
        questions = []
        for index, raw in enumerate(data.get("questions") or []):
            questions.append(
                QuizQuestion(
                    question_id=str(raw.get("id", index + 1)),
                    prompt=str(raw.get("question", "")),
                    options=tuple(
                        QuizOption(
                            text=str(option.get("text", "")),
                            is_correct=bool(option.get("is_correct", False)),
                        )
                        for option in raw.get("options") or []
                    ),
                    xp_reward=int(raw.get("xp_reward", 0)),
                    explanation=raw.get("explanation"),
                )
            )
        return cls(lesson_id=str(data["lesson_id"]), questions=tuple(questions))


@dataclass(frozen=True)
class RecordedAnswer:
    question_id: str
    selected_index: int
    is_correct: bool
    xp_awarded: int


@dataclass(frozen=True)
class QuizSessionState:
    """Explicit session state passed to and returned from ``answer_question``."""

    lesson_id: str
    question_index: int = 0
    answers: Tuple[RecordedAnswer, ...] = field(default_factory=tuple)
    score: int = 0
    session_xp: int = 0

    def is_finished(self, quiz: QuizDefinition) -> bool:
        return self.question_index >= quiz.total_questions


@dataclass(frozen=True)
class AnswerResult:
    """Immediate per-question feedback plus the advanced state."""

    state: QuizSessionState
    is_correct: bool
    correct_option_index: Optional[int]
    explanation: Optional[str]
    xp_awarded: int


@dataclass(frozen=True)
class QuizSummary:
    lesson_id: str
    score: int
    total_questions: int
    xp_earned: int
    percentage: float
    passed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lesson_id": self.lesson_id,
            "score": self.score,
            "total_questions": self.total_questions,
            "xp_earned": self.xp_earned,
            "percentage": self.percentage,
            "passed": self.passed,
        }


def start_session(quiz: QuizDefinition) -> QuizSessionState:
    return QuizSessionState(lesson_id=quiz.lesson_id)


def restart_session(quiz: QuizDefinition) -> QuizSessionState:
    """Back to Question 1 with nothing answered; persisted results are untouched."""
    return start_session(quiz)


def answer_question(
    quiz: QuizDefinition,
    state: QuizSessionState,
    selected_option_index: int,
    question_id: Optional[str] = None,
) -> AnswerResult:
    """
    Lock in an answer for the current question.

    ``question_id`` lets callers assert which question they are answering;
    answering a question that was already answered is rejected.

    Raises:
        InvalidOperationError: session finished, state from another quiz,
            or question already answered
        ValidationError: option index out of range
    """
    if state.lesson_id != quiz.lesson_id:
        raise InvalidOperationError("answer_question", "Session belongs to a different quiz")
    if state.is_finished(quiz):
        raise InvalidOperationError("answer_question", "Quiz session is already finished")

    question = quiz.questions[state.question_index]

    if question_id is not None and question_id != question.question_id:
        raise InvalidOperationError(
            "answer_question",
            f"Question {question_id} is not the current question",
        )

    if (
        isinstance(selected_option_index, bool)
        or not isinstance(selected_option_index, int)
        or not 0 <= selected_option_index < len(question.options)
    ):
        raise ValidationError(
            "selected_option",
            f"Must be between 0 and {len(question.options) - 1}",
        )

    is_correct = question.options[selected_option_index].is_correct
    xp_awarded = question.xp_reward if is_correct else 0

    next_state = QuizSessionState(
        lesson_id=state.lesson_id,
        question_index=state.question_index + 1,
        answers=state.answers
        + (
            RecordedAnswer(
                question_id=question.question_id,
                selected_index=selected_option_index,
                is_correct=is_correct,
                xp_awarded=xp_awarded,
            ),
        ),
        score=state.score + (1 if is_correct else 0),
        session_xp=state.session_xp + xp_awarded,
    )

    return AnswerResult(
        state=next_state,
        is_correct=is_correct,
        correct_option_index=question.correct_option_index,
        explanation=question.explanation,
        xp_awarded=xp_awarded,
    )


def run_session(quiz: QuizDefinition, selections: Sequence[int]) -> QuizSessionState:
    """Answer every question in order; convenience for imports and tests."""
    state = start_session(quiz)
    for selected in selections:
        state = answer_question(quiz, state, selected).state
    return state


def _rescore(quiz: QuizDefinition, answers: Sequence[RecordedAnswer]) -> Tuple[int, int]:
    """Score and XP from the selections alone; recorded flags and totals are ignored."""
    score = 0
    xp_earned = 0
    for position, (question, answer) in enumerate(zip(quiz.questions, answers), start=1):
        if answer.question_id != question.question_id:
            raise InvalidOperationError(
                "summarize_session",
                f"Answer {position} is for question {answer.question_id}, "
                f"expected {question.question_id}",
            )
        selected = answer.selected_index
        if (
            isinstance(selected, bool)
            or not isinstance(selected, int)
            or not 0 <= selected < len(question.options)
        ):
            raise ValidationError(
                "selected_option",
                f"Answer {position} must be between 0 and {len(question.options) - 1}",
            )
        if question.options[selected].is_correct:
            score += 1
            xp_earned += question.xp_reward
    return score, xp_earned


def summarize_session(
    quiz: QuizDefinition,
    state: QuizSessionState,
    pass_threshold_percent: int = QUIZ_PASS_THRESHOLD_PERCENT,
) -> QuizSummary:
    """
    Results screen data, scored from ``state.answers`` against ``quiz``.

    The running ``score`` and ``session_xp`` on the state are display values
    and are never trusted here. ``passed`` is presentation only.

    Raises:
        InvalidOperationError: state from another quiz, questions unanswered
            or answered out of order
        ValidationError: a selected option index is out of range
    """
    if state.lesson_id != quiz.lesson_id:
        raise InvalidOperationError("summarize_session", "Session belongs to a different quiz")

    answered = len(state.answers)
    if answered < quiz.total_questions:
        raise InvalidOperationError(
            "summarize_session",
            f"{quiz.total_questions - answered} question(s) unanswered",
        )
    if answered > quiz.total_questions:
        raise InvalidOperationError(
            "summarize_session",
            f"{answered} answers recorded for {quiz.total_questions} question(s)",
        )

    score, xp_earned = _rescore(quiz, state.answers)
    percentage = score / quiz.total_questions * 100.0
    return QuizSummary(
        lesson_id=quiz.lesson_id,
        score=score,
        total_questions=quiz.total_questions,
        xp_earned=xp_earned,
        percentage=percentage,
        passed=percentage >= pass_threshold_percent,
    )
