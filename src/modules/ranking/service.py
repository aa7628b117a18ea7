"""
Ranking Service
===============

Purpose
-------
Read-time leaderboards over the profile XP cache (global) and the XP ledger
(rolling window), optionally restricted to a pre-resolved cohort of user ids.

Domain
------
- ``global_ranking``: lifetime XP order, top ``limit``
- ``windowed_ranking``: XP gained in the trailing ``window_days``, top ``limit``
- ``rank_of``: one user's rank, percentile and gap to the user above

Rankings are never persisted. Ordering and rank assignment live in
``src.modules.ranking.engine`` so that every entry point shares one
tie-break. Users with no XP in scope are left out rather than ranked last.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Collection, List, Optional

from sqlalchemy import func, select

from src.core.database.base import utc_now
from src.core.database.service import DatabaseService
from src.core.validation.input_validator import InputValidator
from src.database.models import Profile, XpTransaction
from src.modules.shared.base_service import BaseService
from src.modules.shared.constants import (
    DEFAULT_GLOBAL_RANKING_LIMIT,
    DEFAULT_RANKING_WINDOW_DAYS,
    DEFAULT_WINDOWED_RANKING_LIMIT,
    MAX_RANKING_LIMIT,
)

from .engine import RankingCandidate, RankingEntry, RankPosition, locate, rank_candidates

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from src.core.config.manager import ConfigManager
    from src.core.event.bus import EventBus


class RankingService(BaseService):
    """
    Service for leaderboard queries.

    Public Methods
    --------------
    - global_ranking() -> Top users by lifetime XP
    - windowed_ranking() -> Top users by XP gained in a trailing window
    - rank_of() -> A single user's position in either scope
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def global_ranking(
        self,
        limit: Optional[int] = None,
        user_ids: Optional[Collection[str]] = None,
    ) -> List[RankingEntry]:
        """
        Top users by cumulative XP.

        This is a **read-only** operation using get_session().

        Args:
            limit: Entries to return (default ``ranking.global_limit``)
            user_ids: Optional cohort; None ranks every profile

        Raises:
            ValidationError: Invalid limit or cohort ids
        """
        limit = self._resolve_limit(limit, "ranking.global_limit", DEFAULT_GLOBAL_RANKING_LIMIT)
        cohort = self._resolve_cohort(user_ids)

        self.log_operation("global_ranking", limit=limit, cohort_size=self._cohort_size(cohort))

        if cohort is not None and not cohort:
            return []

        async with DatabaseService.get_session() as session:
            candidates = await self._global_candidates(session, cohort)

        return rank_candidates(candidates)[:limit]

    async def windowed_ranking(
        self,
        window_days: Optional[int] = None,
        limit: Optional[int] = None,
        user_ids: Optional[Collection[str]] = None,
    ) -> List[RankingEntry]:
        """
        Top users by XP gained since ``now - window_days``.

        Users whose transactions all predate the window do not appear, even
        though they rank globally.
        """
        window_days = self._resolve_window(window_days)
        limit = self._resolve_limit(
            limit, "ranking.windowed_limit", DEFAULT_WINDOWED_RANKING_LIMIT
        )
        cohort = self._resolve_cohort(user_ids)

        self.log_operation(
            "windowed_ranking",
            window_days=window_days,
            limit=limit,
            cohort_size=self._cohort_size(cohort),
        )

        if cohort is not None and not cohort:
            return []

        async with DatabaseService.get_session() as session:
            candidates = await self._windowed_candidates(session, window_days, cohort)

        return rank_candidates(candidates)[:limit]

    async def rank_of(
        self,
        user_id: str,
        window_days: Optional[int] = None,
        user_ids: Optional[Collection[str]] = None,
    ) -> RankPosition:
        """
        One user's standing.

        ``window_days=None`` ranks by lifetime XP; otherwise by XP gained in
        the window. A user who is absent from the scope (no profile, no XP,
        not in the cohort) comes back with ``rank=None`` and the scope's
        total; an empty scope has ``total=0``.
        """
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        if window_days is not None:
            window_days = self._resolve_window(window_days)
        cohort = self._resolve_cohort(user_ids)

        self.log_operation(
            "rank_of",
            user_id=user_id,
            window_days=window_days,
            cohort_size=self._cohort_size(cohort),
        )

        if cohort is not None and not cohort:
            return locate([], user_id)

        async with DatabaseService.get_session() as session:
            if window_days is None:
                candidates = await self._global_candidates(session, cohort)
            else:
                candidates = await self._windowed_candidates(session, window_days, cohort)

        position = locate(rank_candidates(candidates), user_id)

        self.log.debug(
            "Rank resolved",
            extra={
                "user_id": user_id,
                "rank": position.rank,
                "total": position.total,
                "percentile": position.percentile,
            },
        )
        return position

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _global_candidates(
        self, session: AsyncSession, cohort: Optional[List[str]]
    ) -> List[RankingCandidate]:
        stmt = select(
            Profile.user_id, Profile.username, Profile.xp, Profile.created_at
        ).where(Profile.xp > 0)
        if cohort is not None:
            stmt = stmt.where(Profile.user_id.in_(cohort))

        result = await session.execute(stmt)
        return [
            RankingCandidate(
                user_id=row.user_id,
                username=row.username,
                score=int(row.xp),
                created_at=row.created_at,
            )
            for row in result
        ]

    async def _windowed_candidates(
        self, session: AsyncSession, window_days: int, cohort: Optional[List[str]]
    ) -> List[RankingCandidate]:
        since = utc_now() - timedelta(days=window_days)
        gained = func.sum(XpTransaction.amount).label("gained")

        stmt = (
            select(Profile.user_id, Profile.username, Profile.created_at, gained)
            .join(XpTransaction, XpTransaction.user_id == Profile.user_id)
            .where(XpTransaction.created_at >= since)
            .group_by(Profile.user_id, Profile.username, Profile.created_at)
            .having(func.sum(XpTransaction.amount) > 0)
        )
        if cohort is not None:
            stmt = stmt.where(Profile.user_id.in_(cohort))

        result = await session.execute(stmt)
        return [
            RankingCandidate(
                user_id=row.user_id,
                username=row.username,
                score=int(row.gained),
                created_at=row.created_at,
            )
            for row in result
        ]

    def _resolve_limit(self, limit: Optional[int], config_key: str, default: int) -> int:
        if limit is None:
            limit = self.get_int_config(config_key, default)
        max_limit = self.get_int_config("ranking.max_limit", MAX_RANKING_LIMIT)
        return InputValidator.validate_positive_integer(
            limit, field_name="limit", max_value=max_limit
        )

    def _resolve_window(self, window_days: Optional[int]) -> int:
        if window_days is None:
            window_days = self.get_int_config("ranking.window_days", DEFAULT_RANKING_WINDOW_DAYS)
        return InputValidator.validate_positive_integer(window_days, field_name="window_days")

    @staticmethod
    def _resolve_cohort(user_ids: Optional[Collection[str]]) -> Optional[List[str]]:
        if user_ids is None:
            return None
        return InputValidator.validate_id_list(user_ids, field_name="user_ids")

    @staticmethod
    def _cohort_size(cohort: Optional[List[str]]) -> Optional[int]:
        return len(cohort) if cohort is not None else None
