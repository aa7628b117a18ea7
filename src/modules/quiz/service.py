"""
Quiz Service
============

Purpose
-------
Persist finished quiz sessions and pay quiz XP.

XP Policy
---------
XP is granted only on the *first* completion of a lesson's quiz. Retakes
overwrite the completion record (latest attempt wins, for display) but never
call the ledger again. ``xp_granted`` on the record keeps what was actually
paid.

Concurrency
-----------
The profile and the completion row are locked before reading. Two first
completions racing on the (user_id, lesson_id) unique constraint resolve as
"arrived second": the loser is replayed as a retake and pays nothing.

Events
------
- ``quiz.completed`` for every completion (``first_completion`` flag)
- ``xp.granted`` / ``profile.leveled_up`` when XP was paid
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy.exc import IntegrityError

from src.core.database.base import as_utc, utc_now
from src.core.database.service import DatabaseService
from src.core.logging.logger import get_logger
from src.core.validation.input_validator import InputValidator
from src.database.models import QuizCompletion, XpSource
from src.modules.shared.access import Actor
from src.modules.shared.base_repository import BaseRepository
from src.modules.shared.base_service import BaseService
from src.modules.shared.constants import QUIZ_PASS_THRESHOLD_PERCENT
from src.modules.shared.exceptions import ConflictError, ValidationError
from src.modules.xp.ledger import GrantResult, XpLedger

from .session import QuizDefinition, QuizSessionState, QuizSummary, summarize_session

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from src.core.config.manager import ConfigManager
    from src.core.event.bus import EventBus


class QuizCompletionRepository(BaseRepository[QuizCompletion]):
    """Repository for QuizCompletion model."""

    async def get_for_pair(
        self,
        session: AsyncSession,
        user_id: str,
        lesson_id: str,
        for_update: bool = False,
    ) -> Optional[QuizCompletion]:
        return await self.find_one_where(
            session,
            QuizCompletion.user_id == user_id,
            QuizCompletion.lesson_id == lesson_id,
            for_update=for_update,
        )


@dataclass(frozen=True)
class QuizCompletionRecord:
    user_id: str
    lesson_id: str
    score: int
    total_questions: int
    xp_earned: int
    xp_granted: int
    attempts: int
    completed_at: Optional[datetime]

    @classmethod
    def from_model(cls, row: QuizCompletion) -> "QuizCompletionRecord":
        return cls(
            user_id=row.user_id,
            lesson_id=row.lesson_id,
            score=row.score,
            total_questions=row.total_questions,
            xp_earned=row.xp_earned,
            xp_granted=row.xp_granted,
            attempts=row.attempts,
            completed_at=as_utc(row.completed_at),
        )


@dataclass(frozen=True)
class QuizCompletionResult:
    user_id: str
    lesson_id: str
    score: int
    total_questions: int
    xp_earned: int
    first_completion: bool
    attempts: int
    completed_at: datetime
    grant: Optional[GrantResult] = None

    @property
    def xp_granted(self) -> int:
        return self.grant.amount if self.grant is not None else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "lesson_id": self.lesson_id,
            "score": self.score,
            "total_questions": self.total_questions,
            "xp_earned": self.xp_earned,
            "xp_granted": self.xp_granted,
            "first_completion": self.first_completion,
            "attempts": self.attempts,
        }


class QuizService(BaseService):
    """
    Service for quiz completions.

    Public Methods
    --------------
    - complete_quiz() -> Persist a finished session; pay XP on first completion
    - submit_session() -> Summarize a finished QuizSessionState and complete it
    - get_completion() -> Latest completion for a (user, lesson) pair
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        ledger: Optional[XpLedger] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._ledger = ledger or XpLedger()
        self._completion_repo = QuizCompletionRepository(
            model_class=QuizCompletion,
            logger=get_logger(f"{__name__}.QuizCompletionRepository"),
        )

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def complete_quiz(
        self,
        user_id: str,
        lesson_id: str,
        score: int,
        total_questions: int,
        xp_earned: int,
        actor: Actor,
    ) -> QuizCompletionResult:
        """
        Record a finished quiz session.

        Args:
            user_id: Learner
            lesson_id: Lesson the quiz belongs to
            score: Correct answers, 0..total_questions
            total_questions: Questions in the session (>= 1)
            xp_earned: Session XP; paid only on the first completion
            actor: Acting user, checked against user_id

        Raises:
            ValidationError: Out-of-range score/total/xp
            NotFoundError: Profile does not exist
            PermissionDeniedError: Actor may not act for user_id
        """
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        lesson_id = InputValidator.validate_identifier(lesson_id, field_name="lesson_id")
        total_questions = InputValidator.validate_positive_integer(
            total_questions, field_name="total_questions"
        )
        score = InputValidator.validate_non_negative_integer(
            score, field_name="score", max_value=total_questions
        )
        xp_earned = InputValidator.validate_non_negative_integer(xp_earned, field_name="xp_earned")
        self.authorize(actor, user_id, "complete_quiz")

        self.log_operation(
            "complete_quiz",
            user_id=user_id,
            lesson_id=lesson_id,
            score=score,
            total_questions=total_questions,
            xp_earned=xp_earned,
        )

        try:
            result = await self._record_completion(
                user_id, lesson_id, score, total_questions, xp_earned
            )
        except ConflictError as exc:
            self.log.info(
                "Concurrent quiz completion detected; replaying as retake",
                extra={"user_id": user_id, "lesson_id": lesson_id, "error_code": exc.error_code},
            )
            result = await self._record_completion(
                user_id, lesson_id, score, total_questions, xp_earned
            )

        await self.emit_event(
            "quiz.completed",
            {
                "user_id": user_id,
                "lesson_id": lesson_id,
                "score": score,
                "total_questions": total_questions,
                "xp_earned": xp_earned,
                "xp_granted": result.xp_granted,
                "first_completion": result.first_completion,
            },
        )

        if result.grant is not None:
            for event_name, payload in self._ledger.events_for(result.grant):
                await self.emit_event(event_name, payload)

        self.log.info(
            f"Quiz for lesson {lesson_id} completed by {user_id}: {score}/{total_questions}",
            extra={
                "user_id": user_id,
                "lesson_id": lesson_id,
                "first_completion": result.first_completion,
                "xp_granted": result.xp_granted,
                "attempts": result.attempts,
            },
        )

        return result

    async def _record_completion(
        self,
        user_id: str,
        lesson_id: str,
        score: int,
        total_questions: int,
        xp_earned: int,
    ) -> QuizCompletionResult:
        async with DatabaseService.get_transaction() as session:
            await self._ledger.lock_profile(session, user_id)
            now = utc_now()

            completion = await self._completion_repo.get_for_pair(
                session, user_id, lesson_id, for_update=True
            )

            grant: Optional[GrantResult] = None
            first_completion = completion is None

            if completion is None:
                completion = self._completion_repo.add(
                    session,
                    QuizCompletion(
                        user_id=user_id,
                        lesson_id=lesson_id,
                        score=score,
                        total_questions=total_questions,
                        xp_earned=xp_earned,
                        xp_granted=0,
                        attempts=1,
                        completed_at=now,
                    ),
                )
                await self._flush_new_completion(session, user_id, lesson_id)

                if xp_earned > 0:
                    grant = await self._ledger.apply_grant(
                        session,
                        user_id=user_id,
                        amount=xp_earned,
                        source=XpSource.QUIZ,
                        source_id=lesson_id,
                        description=f"Quiz completed: {score}/{total_questions}",
                        now=now,
                    )
                    completion.xp_granted = grant.amount
            else:
                completion.score = score
                completion.total_questions = total_questions
                completion.xp_earned = xp_earned
                completion.attempts = (completion.attempts or 0) + 1
                completion.completed_at = now

            attempts = completion.attempts

        return QuizCompletionResult(
            user_id=user_id,
            lesson_id=lesson_id,
            score=score,
            total_questions=total_questions,
            xp_earned=xp_earned,
            first_completion=first_completion,
            attempts=attempts,
            completed_at=now,
            grant=grant,
        )

    async def _flush_new_completion(
        self, session: AsyncSession, user_id: str, lesson_id: str
    ) -> None:
        try:
            await self._completion_repo.flush(session)
        except IntegrityError as exc:
            raise ConflictError(
                "QuizCompletion",
                f"{user_id}:{lesson_id}",
                "completion was recorded by a concurrent request",
            ) from exc

    async def submit_session(
        self,
        user_id: str,
        quiz: QuizDefinition,
        state: QuizSessionState,
        actor: Actor,
    ) -> Dict[str, Any]:
        """
        Complete a finished in-memory session.

        Score and XP are recomputed from the recorded selections; the running
        totals carried on ``state`` are ignored.

        Returns the results-screen summary merged with the persisted outcome.

        Raises:
            ValidationError: State belongs to another quiz, option out of range
            InvalidOperationError: Answers missing, extra or out of order
        """
        if state.lesson_id != quiz.lesson_id:
            raise ValidationError("state", "Session does not belong to this quiz")

        threshold = self.get_int_config("quiz.pass_threshold_percent", QUIZ_PASS_THRESHOLD_PERCENT)
        summary: QuizSummary = summarize_session(quiz, state, pass_threshold_percent=threshold)

        completion = await self.complete_quiz(
            user_id=user_id,
            lesson_id=quiz.lesson_id,
            score=summary.score,
            total_questions=summary.total_questions,
            xp_earned=summary.xp_earned,
            actor=actor,
        )

        return {
            **summary.to_dict(),
            "xp_granted": completion.xp_granted,
            "first_completion": completion.first_completion,
            "attempts": completion.attempts,
        }

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_completion(
        self, user_id: str, lesson_id: str, actor: Actor
    ) -> Optional[QuizCompletionRecord]:
        """Latest completion for (user, lesson), or None."""
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        lesson_id = InputValidator.validate_identifier(lesson_id, field_name="lesson_id")
        self.authorize(actor, user_id, "get_completion")

        async with DatabaseService.get_session() as session:
            completion = await self._completion_repo.get_for_pair(session, user_id, lesson_id)
            return QuizCompletionRecord.from_model(completion) if completion is not None else None
