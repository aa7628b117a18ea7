"""
XP Ledger Service
=================

Purpose
-------
Public entry points for the XP ledger: granting XP, administrative progress
resets, ledger history and cache reconciliation.

Domain
------
- ``grant_xp``: one positive grant = one ledger row + profile cache update,
  committed atomically
- ``reset_progress``: wipe a learner's ledger and progress records (staff)
- ``get_history`` / ``get_ledger_total``: audit-trail reads
- ``reconcile_profile``: rebuild the profile cache from the ledger (staff)

Events
------
- ``xp.granted`` and ``profile.leveled_up`` after a grant commits
- ``progress.reset`` after a reset commits
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from src.core.database.base import as_utc
from src.core.database.service import DatabaseService
from src.core.logging.logger import get_logger
from src.core.validation.input_validator import InputValidator
from src.database.models import (
    LabAttempt,
    LessonProgress,
    ModuleProgress,
    QuizCompletion,
    XpSource,
    XpTransaction,
)
from src.modules.shared.access import Actor
from src.modules.shared.base_repository import BaseRepository
from src.modules.shared.base_service import BaseService
from src.modules.shared.constants import (
    DEFAULT_HISTORY_PAGE_SIZE,
    MAX_DESCRIPTION_LENGTH,
    MAX_HISTORY_PAGE_SIZE,
)
from src.modules.shared.exceptions import NotFoundError
from src.modules.shared.formulas import level_for_xp

from .ledger import GrantResult, XpLedger

if TYPE_CHECKING:
    from datetime import datetime
    from logging import Logger

    from src.core.config.manager import ConfigManager
    from src.core.event.bus import EventBus


@dataclass(frozen=True)
class XpTransactionRecord:
    """Read model for one ledger row."""

    id: int
    user_id: str
    amount: int
    source: XpSource
    source_id: Optional[str]
    description: Optional[str]
    created_at: datetime

    @classmethod
    def from_model(cls, row: XpTransaction) -> "XpTransactionRecord":
        return cls(
            id=row.id,
            user_id=row.user_id,
            amount=row.amount,
            source=XpSource(row.source),
            source_id=row.source_id,
            description=row.description,
            created_at=as_utc(row.created_at),
        )


class XpLedgerService(BaseService):
    """
    Service owning the XP ledger.

    Public Methods
    --------------
    - grant_xp() -> Append a grant and update the profile cache
    - reset_progress() -> Delete ledger + progress, reset profile (staff)
    - get_history() -> Newest-first ledger page
    - get_ledger_total() -> Sum of ledger amounts
    - reconcile_profile() -> Rewrite cached xp/level from the ledger (staff)
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        ledger: Optional[XpLedger] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._ledger = ledger or XpLedger(logger)

        self._progress_repos: List[BaseRepository[Any]] = [
            BaseRepository(
                model_class=model,
                logger=get_logger(f"{__name__}.{model.__name__}Repository"),
            )
            for model in (LabAttempt, QuizCompletion, LessonProgress, ModuleProgress)
        ]

    @property
    def ledger(self) -> XpLedger:
        return self._ledger

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def grant_xp(
        self,
        user_id: str,
        amount: int,
        source: XpSource | str,
        source_id: Optional[str] = None,
        description: Optional[str] = None,
        *,
        actor: Actor,
    ) -> GrantResult:
        """
        Grant XP to a learner.

        This is a **write operation** using get_transaction(); the ledger row
        and the profile update commit together or not at all.

        Args:
            user_id: Learner receiving XP
            amount: Positive integer amount
            source: One of lesson, quiz, lab, achievement, module
            source_id: Optional id of the granting entity
            description: Optional human-readable reason
            actor: Acting user, checked against user_id

        Returns:
            GrantResult with old/new xp and level

        Raises:
            ValidationError: Invalid amount, source or identifiers
            NotFoundError: Profile does not exist
            PermissionDeniedError: Actor may not act for user_id
        """
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        amount = InputValidator.validate_positive_integer(amount, field_name="amount")
        source_value = InputValidator.validate_choice(
            source.value if isinstance(source, XpSource) else source,
            field_name="source",
            valid_choices=[s.value for s in XpSource],
        )
        if source_id is not None:
            source_id = InputValidator.validate_identifier(source_id, field_name="source_id")
        if description is not None:
            description = InputValidator.validate_string(
                description, field_name="description", max_length=MAX_DESCRIPTION_LENGTH
            )
        self.authorize(actor, user_id, "grant_xp")

        self.log_operation(
            "grant_xp",
            user_id=user_id,
            amount=amount,
            source=source_value,
            source_id=source_id,
        )

        async with DatabaseService.get_transaction() as session:
            result = await self._ledger.apply_grant(
                session,
                user_id=user_id,
                amount=amount,
                source=XpSource(source_value),
                source_id=source_id,
                description=description,
            )

        for event_name, payload in self._ledger.events_for(result):
            await self.emit_event(event_name, payload)

        self.log.info(
            f"XP granted to {user_id}: +{amount} ({source_value})",
            extra={
                "user_id": user_id,
                "amount": amount,
                "new_xp": result.new_xp,
                "new_level": result.new_level,
                "leveled_up": result.leveled_up,
            },
        )

        return result

    async def reset_progress(self, user_id: str, actor: Actor) -> Dict[str, Any]:
        """
        Irreversibly wipe a learner's progression.

        Deletes every ledger row and every lab/quiz/lesson/module progress
        record, then sets xp=0, level=1, streak=0. Earned achievements are
        kept.

        Raises:
            PermissionDeniedError: Actor is not staff for user_id
            NotFoundError: Profile does not exist
        """
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        self.authorize_staff(actor, user_id, "reset_progress")

        self.log_operation("reset_progress", user_id=user_id, actor_id=actor.user_id)

        async with DatabaseService.get_transaction() as session:
            profile = await self._ledger.lock_profile(session, user_id)
            previous_xp = profile.xp
            previous_level = profile.level

            deleted: Dict[str, int] = {
                "xp_transactions": await self._ledger.transactions.delete_where(
                    session, XpTransaction.user_id == user_id
                )
            }
            for repo in self._progress_repos:
                model = repo.model_class
                deleted[model.__tablename__] = await repo.delete_where(
                    session, model.user_id == user_id
                )

            profile.xp = 0
            profile.level = 1
            profile.streak_days = 0

        result = {
            "user_id": user_id,
            "previous_xp": previous_xp,
            "previous_level": previous_level,
            "deleted": deleted,
        }

        await self.emit_event(
            "progress.reset",
            {**result, "actor_id": actor.user_id},
        )

        self.log.warning(
            f"Progress reset for {user_id}",
            extra={
                "user_id": user_id,
                "actor_id": actor.user_id,
                "previous_xp": previous_xp,
                "deleted": deleted,
            },
        )

        return result

    async def reconcile_profile(self, user_id: str, actor: Actor) -> Dict[str, Any]:
        """
        Rewrite the profile's cached xp/level from the ledger sum.

        Returns a dict with ``corrected`` telling whether anything changed.
        """
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        self.authorize_staff(actor, user_id, "reconcile_profile")

        self.log_operation("reconcile_profile", user_id=user_id, actor_id=actor.user_id)

        async with DatabaseService.get_transaction() as session:
            profile = await self._ledger.lock_profile(session, user_id)
            ledger_total = await self._ledger.transactions.sum_column(
                session, XpTransaction.amount, XpTransaction.user_id == user_id
            )

            cached_xp = profile.xp
            cached_level = profile.level
            expected_level = level_for_xp(ledger_total)
            corrected = cached_xp != ledger_total or cached_level != expected_level

            if corrected:
                profile.xp = ledger_total
                profile.level = expected_level

        if corrected:
            self.log.warning(
                f"Profile cache corrected for {user_id}",
                extra={
                    "user_id": user_id,
                    "cached_xp": cached_xp,
                    "ledger_total": ledger_total,
                    "cached_level": cached_level,
                    "new_level": expected_level,
                },
            )

        return {
            "user_id": user_id,
            "corrected": corrected,
            "cached_xp": cached_xp,
            "ledger_total": ledger_total,
            "level": expected_level,
        }

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_history(
        self,
        user_id: str,
        limit: int = DEFAULT_HISTORY_PAGE_SIZE,
        offset: int = 0,
        source: Optional[XpSource | str] = None,
        *,
        actor: Actor,
    ) -> List[XpTransactionRecord]:
        """
        Newest-first page of a learner's ledger.

        This is a **read-only** operation using get_session().
        """
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        max_page = self.get_int_config("history.max_page_size", MAX_HISTORY_PAGE_SIZE)
        limit = InputValidator.validate_positive_integer(
            limit, field_name="limit", max_value=max_page
        )
        offset = InputValidator.validate_non_negative_integer(offset, field_name="offset")
        self.authorize(actor, user_id, "get_history")

        conditions = [XpTransaction.user_id == user_id]
        if source is not None:
            source_value = InputValidator.validate_choice(
                source.value if isinstance(source, XpSource) else source,
                field_name="source",
                valid_choices=[s.value for s in XpSource],
            )
            conditions.append(XpTransaction.source == source_value)

        async with DatabaseService.get_session() as session:
            rows = await self._ledger.transactions.find_many_where(
                session,
                *conditions,
                order_by=(XpTransaction.created_at.desc(), XpTransaction.id.desc()),
                limit=limit,
                offset=offset,
            )

        return [XpTransactionRecord.from_model(row) for row in rows]

    async def get_ledger_total(self, user_id: str, actor: Actor) -> int:
        """Sum of all ledger amounts for ``user_id``."""
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        self.authorize(actor, user_id, "get_ledger_total")

        async with DatabaseService.get_session() as session:
            if await self._ledger.profiles.get_by_user_id(session, user_id) is None:
                raise NotFoundError("Profile", user_id)
            return await self._ledger.transactions.sum_column(
                session, XpTransaction.amount, XpTransaction.user_id == user_id
            )
