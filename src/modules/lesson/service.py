"""
Lesson Progress Service
=======================

Purpose
-------
Track lesson and module completion and pay their XP rewards once.

Domain
------
- ``complete_lesson``: first completion flips the flag and grants
  ``xp_reward`` (source ``lesson``); repeats change nothing
- ``update_module_progress``: keeps the highest clamped 0..100 percentage
  reported; reaching 100 completes the module once and grants
  ``xp_reward`` (source ``module``)
- ``complete_module``: shorthand for progress 100

Concurrency
-----------
Same guard as lab completion: profile lock, row lock, conditional
``UPDATE ... WHERE is_completed IS false`` checked by rowcount, and a single
replay when a concurrent first insert wins the unique constraint.

Events
------
- ``lesson.completed`` / ``module.completed`` on the completing call
- ``xp.granted`` / ``profile.leveled_up`` when XP was paid
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from src.core.database.base import utc_now
from src.core.database.service import DatabaseService
from src.core.logging.logger import get_logger
from src.core.validation.input_validator import InputValidator
from src.database.models import LessonProgress, ModuleProgress, XpSource
from src.modules.shared.access import Actor
from src.modules.shared.base_repository import BaseRepository
from src.modules.shared.base_service import BaseService
from src.modules.shared.exceptions import ConflictError
from src.modules.xp.ledger import GrantResult, XpLedger

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from src.core.config.manager import ConfigManager
    from src.core.event.bus import EventBus


# ============================================================================
# Repositories
# ============================================================================


class LessonProgressRepository(BaseRepository[LessonProgress]):
    """Repository for LessonProgress model."""

    async def mark_completed(
        self, session: AsyncSession, row_id: int, completed_at: datetime
    ) -> bool:
        stmt = (
            update(LessonProgress)
            .where(LessonProgress.id == row_id, LessonProgress.is_completed.is_(False))
            .values(is_completed=True, completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1


class ModuleProgressRepository(BaseRepository[ModuleProgress]):
    """Repository for ModuleProgress model."""

    async def mark_completed(
        self, session: AsyncSession, row_id: int, completed_at: datetime
    ) -> bool:
        stmt = (
            update(ModuleProgress)
            .where(ModuleProgress.id == row_id, ModuleProgress.is_completed.is_(False))
            .values(is_completed=True, completed_at=completed_at, progress_percentage=100)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1


# ============================================================================
# Results
# ============================================================================


@dataclass(frozen=True)
class CompletionResult:
    """Outcome of a lesson or module progress call."""

    user_id: str
    item_id: str
    kind: str
    is_completed: bool
    newly_completed: bool
    progress_percentage: int = 100
    grant: Optional[GrantResult] = None

    @property
    def xp_awarded(self) -> int:
        return self.grant.amount if self.grant is not None else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            f"{self.kind}_id": self.item_id,
            "is_completed": self.is_completed,
            "newly_completed": self.newly_completed,
            "progress_percentage": self.progress_percentage,
            "xp_awarded": self.xp_awarded,
        }


# ============================================================================
# LessonProgressService
# ============================================================================


class LessonProgressService(BaseService):
    """
    Service for lesson and module completion.

    Public Methods
    --------------
    - complete_lesson() -> Mark a lesson done; grant once
    - update_module_progress() -> Store module percentage; complete at 100
    - complete_module() -> Progress 100 shorthand
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
        self._lesson_repo = LessonProgressRepository(
            model_class=LessonProgress,
            logger=get_logger(f"{__name__}.LessonProgressRepository"),
        )
        self._module_repo = ModuleProgressRepository(
            model_class=ModuleProgress,
            logger=get_logger(f"{__name__}.ModuleProgressRepository"),
        )

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def complete_lesson(
        self,
        user_id: str,
        lesson_id: str,
        xp_reward: int = 0,
        *,
        actor: Actor,
    ) -> CompletionResult:
        """
        Mark ``lesson_id`` complete for ``user_id``.

        Raises:
            ValidationError: Invalid identifiers or negative reward
            NotFoundError: Profile does not exist
            PermissionDeniedError: Actor may not act for user_id
        """
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        lesson_id = InputValidator.validate_identifier(lesson_id, field_name="lesson_id")
        xp_reward = InputValidator.validate_non_negative_integer(xp_reward, field_name="xp_reward")
        self.authorize(actor, user_id, "complete_lesson")

        self.log_operation("complete_lesson", user_id=user_id, lesson_id=lesson_id)

        try:
            result = await self._complete_lesson(user_id, lesson_id, xp_reward)
        except ConflictError as exc:
            self.log.info(
                "Concurrent lesson completion detected; replaying",
                extra={"user_id": user_id, "lesson_id": lesson_id, "error_code": exc.error_code},
            )
            result = await self._complete_lesson(user_id, lesson_id, xp_reward)

        if result.newly_completed:
            await self.emit_event(
                "lesson.completed",
                {"user_id": user_id, "lesson_id": lesson_id, "xp_awarded": result.xp_awarded},
            )
        await self._emit_grant(result.grant)

        return result

    async def update_module_progress(
        self,
        user_id: str,
        module_id: str,
        progress_percentage: int,
        xp_reward: int = 0,
        *,
        actor: Actor,
    ) -> CompletionResult:
        """
        Store module progress; values outside 0..100 are clamped.

        Progress only moves forward: a percentage below the stored one is
        ignored. Once a module is completed its percentage stays at 100.
        """
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        module_id = InputValidator.validate_identifier(module_id, field_name="module_id")
        progress_percentage = min(
            max(
                InputValidator.validate_integer(
                    progress_percentage, field_name="progress_percentage"
                ),
                0,
            ),
            100,
        )
        xp_reward = InputValidator.validate_non_negative_integer(xp_reward, field_name="xp_reward")
        self.authorize(actor, user_id, "update_module_progress")

        self.log_operation(
            "update_module_progress",
            user_id=user_id,
            module_id=module_id,
            progress_percentage=progress_percentage,
        )

        try:
            result = await self._update_module(user_id, module_id, progress_percentage, xp_reward)
        except ConflictError as exc:
            self.log.info(
                "Concurrent module progress creation detected; replaying",
                extra={"user_id": user_id, "module_id": module_id, "error_code": exc.error_code},
            )
            result = await self._update_module(user_id, module_id, progress_percentage, xp_reward)

        if result.newly_completed:
            await self.emit_event(
                "module.completed",
                {"user_id": user_id, "module_id": module_id, "xp_awarded": result.xp_awarded},
            )
        await self._emit_grant(result.grant)

        return result

    async def complete_module(
        self,
        user_id: str,
        module_id: str,
        xp_reward: int = 0,
        *,
        actor: Actor,
    ) -> CompletionResult:
        return await self.update_module_progress(
            user_id, module_id, 100, xp_reward=xp_reward, actor=actor
        )

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _complete_lesson(
        self, user_id: str, lesson_id: str, xp_reward: int
    ) -> CompletionResult:
        async with DatabaseService.get_transaction() as session:
            await self._ledger.lock_profile(session, user_id)

            row = await self._lesson_repo.find_one_where(
                session,
                LessonProgress.user_id == user_id,
                LessonProgress.lesson_id == lesson_id,
                for_update=True,
            )
            if row is None:
                row = self._lesson_repo.add(
                    session,
                    LessonProgress(user_id=user_id, lesson_id=lesson_id, is_completed=False),
                )
                await self._flush_insert(session, "LessonProgress", user_id, lesson_id)

            if row.is_completed:
                return CompletionResult(
                    user_id=user_id,
                    item_id=lesson_id,
                    kind="lesson",
                    is_completed=True,
                    newly_completed=False,
                )

            now = utc_now()
            newly_completed = await self._lesson_repo.mark_completed(session, row.id, now)
            grant = None
            if newly_completed and xp_reward > 0:
                grant = await self._ledger.apply_grant(
                    session,
                    user_id=user_id,
                    amount=xp_reward,
                    source=XpSource.LESSON,
                    source_id=lesson_id,
                    description="Lesson completed",
                    now=now,
                )

        return CompletionResult(
            user_id=user_id,
            item_id=lesson_id,
            kind="lesson",
            is_completed=True,
            newly_completed=newly_completed,
            grant=grant,
        )

    async def _update_module(
        self, user_id: str, module_id: str, progress_percentage: int, xp_reward: int
    ) -> CompletionResult:
        async with DatabaseService.get_transaction() as session:
            await self._ledger.lock_profile(session, user_id)

            row = await self._module_repo.find_one_where(
                session,
                ModuleProgress.user_id == user_id,
                ModuleProgress.module_id == module_id,
                for_update=True,
            )
            if row is None:
                row = self._module_repo.add(
                    session,
                    ModuleProgress(
                        user_id=user_id,
                        module_id=module_id,
                        progress_percentage=0,
                        is_completed=False,
                    ),
                )
                await self._flush_insert(session, "ModuleProgress", user_id, module_id)

            if row.is_completed:
                return CompletionResult(
                    user_id=user_id,
                    item_id=module_id,
                    kind="module",
                    is_completed=True,
                    newly_completed=False,
                )

            if progress_percentage < 100:
                row.progress_percentage = max(row.progress_percentage or 0, progress_percentage)
                return CompletionResult(
                    user_id=user_id,
                    item_id=module_id,
                    kind="module",
                    is_completed=False,
                    newly_completed=False,
                    progress_percentage=row.progress_percentage,
                )

            now = utc_now()
            newly_completed = await self._module_repo.mark_completed(session, row.id, now)
            grant = None
            if newly_completed and xp_reward > 0:
                grant = await self._ledger.apply_grant(
                    session,
                    user_id=user_id,
                    amount=xp_reward,
                    source=XpSource.MODULE,
                    source_id=module_id,
                    description="Module completed",
                    now=now,
                )

        return CompletionResult(
            user_id=user_id,
            item_id=module_id,
            kind="module",
            is_completed=True,
            newly_completed=newly_completed,
            grant=grant,
        )

    async def _flush_insert(
        self, session: AsyncSession, resource: str, user_id: str, item_id: str
    ) -> None:
        try:
            await session.flush()
        except IntegrityError as exc:
            raise ConflictError(
                resource,
                f"{user_id}:{item_id}",
                "progress record was created by a concurrent request",
            ) from exc

    async def _emit_grant(self, grant: Optional[GrantResult]) -> None:
        if grant is None:
            return
        for event_name, payload in self._ledger.events_for(grant):
            await self.emit_event(event_name, payload)
