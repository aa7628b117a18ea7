"""
Profile Service
===============

Purpose
-------
Create learner profiles and serve the progression snapshot the dashboard
renders: XP, level, level title, progress toward the next level and streak.

Domain
------
- ``create_profile``: idempotent; first creation emits ``profile.created``
- ``get_profile``: read-only snapshot with derived progression fields
- ``profile_exists``: existence check

Level titles are read from ``progression.level_titles`` as a list of
``{below: <level or null>, title: <str>}`` bands; the code defaults apply
when the key is absent.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from src.core.database.base import as_utc
from src.core.database.service import DatabaseService
from src.core.exceptions import ConfigurationError
from src.core.logging.logger import get_logger
from src.core.validation.input_validator import InputValidator
from src.database.models import Profile
from src.modules.shared.access import Actor
from src.modules.shared.base_service import BaseService
from src.modules.shared.constants import DEFAULT_LEVEL_TITLES, MAX_USERNAME_LENGTH
from src.modules.shared.exceptions import NotFoundError
from src.modules.shared.formulas import level_title, progress_percent, xp_to_next_level
from src.modules.xp.ledger import ProfileRepository

if TYPE_CHECKING:
    from logging import Logger

    from src.core.config.manager import ConfigManager
    from src.core.event.bus import EventBus


@dataclass(frozen=True)
class ProfileSnapshot:
    user_id: str
    username: str
    full_name: Optional[str]
    xp: int
    level: int
    level_title: str
    progress_percent: float
    xp_to_next_level: int
    streak_days: int
    last_activity_at: Optional[datetime]
    created_at: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "full_name": self.full_name,
            "xp": self.xp,
            "level": self.level,
            "level_title": self.level_title,
            "progress_percent": self.progress_percent,
            "xp_to_next_level": self.xp_to_next_level,
            "streak_days": self.streak_days,
            "last_activity_at": self.last_activity_at,
            "created_at": self.created_at,
        }


class ProfileService(BaseService):
    """
    Service for learner profiles.

    Public Methods
    --------------
    - create_profile() -> Register a learner (idempotent)
    - get_profile() -> Progression snapshot
    - profile_exists() -> Existence check
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._profile_repo = ProfileRepository(
            model_class=Profile,
            logger=get_logger(f"{__name__}.ProfileRepository"),
        )

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_profile(self, user_id: str, actor: Actor) -> ProfileSnapshot:
        """
        Progression snapshot for ``user_id``.

        This is a **read-only** operation using get_session().

        Raises:
            NotFoundError: Profile does not exist
        """
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        self.authorize(actor, user_id, "get_profile")

        async with DatabaseService.get_session() as session:
            profile = await self._profile_repo.get_by_user_id(session, user_id)
            if profile is None:
                raise NotFoundError("Profile", user_id)
            return self._snapshot(profile)

    async def profile_exists(self, user_id: str) -> bool:
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")

        async with DatabaseService.get_session() as session:
            return await self._profile_repo.exists(session, Profile.user_id == user_id)

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def create_profile(
        self,
        user_id: str,
        username: str,
        full_name: Optional[str] = None,
    ) -> ProfileSnapshot:
        """
        Create a profile at 0 XP / level 1, or return the existing one.

        The external auth provider calls this on sign-up; calling it again
        for the same ``user_id`` is harmless and leaves the profile as is.
        """
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        username = InputValidator.validate_string(
            username,
            field_name="username",
            min_length=1,
            max_length=MAX_USERNAME_LENGTH,
        )
        if full_name is not None:
            full_name = InputValidator.validate_string(
                full_name, field_name="full_name", max_length=200
            )

        self.log_operation("create_profile", user_id=user_id, username=username)

        try:
            snapshot, created = await self._create_or_get(user_id, username, full_name)
        except IntegrityError:
            # lost a concurrent sign-up race; the winner's row is authoritative
            snapshot, created = await self._create_or_get(user_id, username, full_name)

        if created:
            await self.emit_event(
                "profile.created",
                {"user_id": user_id, "username": username},
            )
            self.log.info(
                f"Profile created: {username}",
                extra={"user_id": user_id, "username": username},
            )

        return snapshot

    async def _create_or_get(
        self, user_id: str, username: str, full_name: Optional[str]
    ) -> Tuple[ProfileSnapshot, bool]:
        async with DatabaseService.get_transaction() as session:
            existing = await self._profile_repo.get_by_user_id(session, user_id)
            if existing is not None:
                return self._snapshot(existing), False

            profile = self._profile_repo.add(
                session,
                Profile(
                    user_id=user_id,
                    username=username,
                    full_name=full_name,
                    xp=0,
                    level=1,
                    streak_days=0,
                ),
            )
            await self._profile_repo.flush(session)
            return self._snapshot(profile), True

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    def _snapshot(self, profile: Profile) -> ProfileSnapshot:
        return ProfileSnapshot(
            user_id=profile.user_id,
            username=profile.username,
            full_name=profile.full_name,
            xp=profile.xp,
            level=profile.level,
            level_title=level_title(profile.level, self._level_bands()),
            progress_percent=progress_percent(profile.xp, profile.level),
            xp_to_next_level=xp_to_next_level(profile.xp),
            streak_days=profile.streak_days,
            last_activity_at=as_utc(profile.last_activity_at),
            created_at=as_utc(profile.created_at),
        )

    def _level_bands(self) -> List[Tuple[Optional[int], str]]:
        raw = self.get_config("progression.level_titles")
        if raw is None:
            return list(DEFAULT_LEVEL_TITLES)

        bands: List[Tuple[Optional[int], str]] = []
        try:
            for band in raw:
                upper = band.get("below")
                bands.append((int(upper) if upper is not None else None, str(band["title"])))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(
                "progression.level_titles",
                "Expected a list of {below, title} mappings",
            ) from exc
        return bands
