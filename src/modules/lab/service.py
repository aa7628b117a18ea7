"""
Lab Evaluation Service
======================

Purpose
-------
Evaluate a learner's free-text lab command, persist it to the (user, lab)
attempt history and pay the lab's XP reward the first time it is solved.

State machine per (user, lab)
-----------------------------
NotStarted (no row) -> InProgress -> Completed (terminal)

- Every submission increments ``attempts`` and appends the sanitized command.
- The first correct submission flips ``is_completed``, stamps
  ``completed_at`` and grants ``xp_reward`` with source ``lab``.
- Correct submissions after completion only append history.

Concurrency
-----------
The profile row and the attempt row are locked (SELECT ... FOR UPDATE) and
the completion flip is a conditional ``UPDATE ... WHERE is_completed IS
false`` checked by rowcount, so at most one submission ever pays. A
concurrent first insert that loses on the (user_id, lab_id) unique
constraint surfaces as ConflictError and is replayed once against the row
the winner created.

Events
------
- ``lab.submitted`` for every submission
- ``lab.completed`` on the completing submission
- ``xp.granted`` / ``profile.leveled_up`` when XP was paid
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from src.core.database.base import as_utc, utc_now
from src.core.database.service import DatabaseService
from src.core.logging.logger import get_logger
from src.core.validation.input_validator import InputValidator
from src.database.models import LabAttempt, XpSource
from src.modules.shared.access import Actor
from src.modules.shared.base_repository import BaseRepository
from src.modules.shared.base_service import BaseService
from src.modules.shared.constants import MAX_COMMAND_LENGTH
from src.modules.shared.exceptions import ConflictError, ValidationError
from src.modules.xp.ledger import GrantResult, XpLedger

from .evaluation import is_accepted, sanitize_command

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from src.core.config.manager import ConfigManager
    from src.core.event.bus import EventBus


class LabAttemptRepository(BaseRepository[LabAttempt]):
    """Repository for LabAttempt model."""

    async def get_for_pair(
        self,
        session: AsyncSession,
        user_id: str,
        lab_id: str,
        for_update: bool = False,
    ) -> Optional[LabAttempt]:
        return await self.find_one_where(
            session,
            LabAttempt.user_id == user_id,
            LabAttempt.lab_id == lab_id,
            for_update=for_update,
        )

    async def mark_completed(
        self, session: AsyncSession, attempt_id: int, completed_at: datetime
    ) -> bool:
        """Flip the completion flag if still unset; True when this call flipped it."""
        stmt = (
            update(LabAttempt)
            .where(LabAttempt.id == attempt_id, LabAttempt.is_completed.is_(False))
            .values(is_completed=True, completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        flipped = result.rowcount == 1

        self.log.debug(
            "Repository.mark_completed: LabAttempt",
            extra={"model": "LabAttempt", "id": attempt_id, "flipped": flipped},
        )
        return flipped


@dataclass(frozen=True)
class LabAttemptRecord:
    """Read model for a (user, lab) attempt row."""

    user_id: str
    lab_id: str
    attempts: int
    commands_used: List[str]
    is_completed: bool
    completed_at: Optional[datetime]
    best_time_seconds: Optional[int]

    @classmethod
    def from_model(cls, attempt: LabAttempt) -> "LabAttemptRecord":
        return cls(
            user_id=attempt.user_id,
            lab_id=attempt.lab_id,
            attempts=attempt.attempts,
            commands_used=list(attempt.commands_used or []),
            is_completed=attempt.is_completed,
            completed_at=as_utc(attempt.completed_at),
            best_time_seconds=attempt.best_time_seconds,
        )


@dataclass(frozen=True)
class LabSubmissionResult:
    """Outcome of one submission, for immediate learner feedback."""

    is_correct: bool
    newly_completed: bool
    sanitized_command: str
    attempt: LabAttemptRecord
    grant: Optional[GrantResult] = None

    @property
    def xp_awarded(self) -> int:
        return self.grant.amount if self.grant is not None else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_correct": self.is_correct,
            "newly_completed": self.newly_completed,
            "command": self.sanitized_command,
            "attempts": self.attempt.attempts,
            "is_completed": self.attempt.is_completed,
            "xp_awarded": self.xp_awarded,
        }


class LabEvaluationService(BaseService):
    """
    Service for lab command submissions.

    Public Methods
    --------------
    - submit_command() -> Evaluate, record and (once) reward a command
    - get_attempt() -> Current attempt record for a (user, lab) pair
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
        self._attempt_repo = LabAttemptRepository(
            model_class=LabAttempt,
            logger=get_logger(f"{__name__}.LabAttemptRepository"),
        )

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def submit_command(
        self,
        user_id: str,
        lab_id: str,
        raw_command: str,
        accepted_commands: Sequence[str],
        xp_reward: int,
        actor: Actor,
    ) -> LabSubmissionResult:
        """
        Evaluate and record one lab command.

        Incorrect commands are not an error: they are recorded and reported
        with ``is_correct=False``.

        Args:
            user_id: Learner submitting
            lab_id: Lab being attempted
            raw_command: Text as typed by the learner
            accepted_commands: Solutions from the lab definition
            xp_reward: XP paid on first completion (0 for none)
            actor: Acting user, checked against user_id

        Raises:
            ValidationError: Bad identifiers, empty command, no solutions
            NotFoundError: Profile does not exist
            PermissionDeniedError: Actor may not act for user_id
        """
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        lab_id = InputValidator.validate_identifier(lab_id, field_name="lab_id")
        xp_reward = InputValidator.validate_non_negative_integer(xp_reward, field_name="xp_reward")

        if isinstance(accepted_commands, str) or not accepted_commands:
            raise ValidationError("accepted_commands", "At least one accepted command is required")

        max_length = self.get_int_config("labs.max_command_length", MAX_COMMAND_LENGTH)
        command = sanitize_command(raw_command, max_length=max_length)
        is_correct = is_accepted(command, accepted_commands)

        self.authorize(actor, user_id, "submit_command")

        self.log_operation(
            "submit_command",
            user_id=user_id,
            lab_id=lab_id,
            is_correct=is_correct,
        )

        try:
            result = await self._record_submission(
                user_id, lab_id, command, is_correct, xp_reward
            )
        except ConflictError as exc:
            self.log.info(
                "Concurrent lab attempt creation detected; replaying submission",
                extra={"user_id": user_id, "lab_id": lab_id, "error_code": exc.error_code},
            )
            result = await self._record_submission(
                user_id, lab_id, command, is_correct, xp_reward
            )

        await self.emit_event(
            "lab.submitted",
            {
                "user_id": user_id,
                "lab_id": lab_id,
                "is_correct": is_correct,
                "attempts": result.attempt.attempts,
            },
        )

        if result.newly_completed:
            await self.emit_event(
                "lab.completed",
                {
                    "user_id": user_id,
                    "lab_id": lab_id,
                    "attempts": result.attempt.attempts,
                    "xp_awarded": result.xp_awarded,
                },
            )
            self.log.info(
                f"Lab {lab_id} completed by {user_id}",
                extra={
                    "user_id": user_id,
                    "lab_id": lab_id,
                    "attempts": result.attempt.attempts,
                    "xp_awarded": result.xp_awarded,
                },
            )

        if result.grant is not None:
            for event_name, payload in self._ledger.events_for(result.grant):
                await self.emit_event(event_name, payload)

        return result

    async def _record_submission(
        self,
        user_id: str,
        lab_id: str,
        command: str,
        is_correct: bool,
        xp_reward: int,
    ) -> LabSubmissionResult:
        async with DatabaseService.get_transaction() as session:
            await self._ledger.lock_profile(session, user_id)

            attempt = await self._attempt_repo.get_for_pair(
                session, user_id, lab_id, for_update=True
            )
            if attempt is None:
                attempt = await self._create_attempt(session, user_id, lab_id)

            attempt.attempts = (attempt.attempts or 0) + 1
            attempt.commands_used = [*(attempt.commands_used or []), command]
            await self._attempt_repo.flush(session)

            newly_completed = False
            grant: Optional[GrantResult] = None

            if is_correct and not attempt.is_completed:
                now = utc_now()
                newly_completed = await self._attempt_repo.mark_completed(
                    session, attempt.id, now
                )
                await self._attempt_repo.refresh(
                    session, attempt, ["is_completed", "completed_at"]
                )

                if newly_completed and xp_reward > 0:
                    grant = await self._ledger.apply_grant(
                        session,
                        user_id=user_id,
                        amount=xp_reward,
                        source=XpSource.LAB,
                        source_id=lab_id,
                        description="Lab completed",
                        now=now,
                    )

            record = LabAttemptRecord.from_model(attempt)

        return LabSubmissionResult(
            is_correct=is_correct,
            newly_completed=newly_completed,
            sanitized_command=command,
            attempt=record,
            grant=grant,
        )

    async def _create_attempt(
        self, session: AsyncSession, user_id: str, lab_id: str
    ) -> LabAttempt:
        attempt = self._attempt_repo.add(
            session,
            LabAttempt(
                user_id=user_id,
                lab_id=lab_id,
                attempts=0,
                commands_used=[],
                is_completed=False,
            ),
        )
        try:
            await self._attempt_repo.flush(session)
        except IntegrityError as exc:
            raise ConflictError(
                "LabAttempt",
                f"{user_id}:{lab_id}",
                "attempt record was created by a concurrent submission",
            ) from exc
        return attempt

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_attempt(
        self, user_id: str, lab_id: str, actor: Actor
    ) -> Optional[LabAttemptRecord]:
        """Attempt record for (user, lab), or None when never attempted."""
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        lab_id = InputValidator.validate_identifier(lab_id, field_name="lab_id")
        self.authorize(actor, user_id, "get_attempt")

        async with DatabaseService.get_session() as session:
            attempt = await self._attempt_repo.get_for_pair(session, user_id, lab_id)
            return LabAttemptRecord.from_model(attempt) if attempt is not None else None
