"""
Achievement Service
===================

Purpose
-------
Award achievements when a learner's progress metric reaches the
achievement's requirement, paying each achievement's XP reward once.

Domain
------
- ``evaluate_achievements``: award every active, unearned achievement whose
  metric qualifies; idempotent
- ``list_user_achievements``: earned achievements, oldest first
- ``list_achievements`` / ``create_achievement``: the catalogue (create is
  staff only)

Metrics
-------
``xp_total``, ``level`` and ``streak_days`` come from the profile; the
``*_completed`` metrics count completed progress rows. A reward grant can
raise ``xp_total``/``level`` enough to unlock further achievements, so
evaluation repeats until a pass awards nothing.

Events
------
- ``achievement.awarded`` per newly earned achievement
- ``xp.granted`` / ``profile.leveled_up`` for each paid reward
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from src.core.database.base import as_utc, utc_now
from src.core.database.service import DatabaseService
from src.core.logging.logger import get_logger
from src.core.validation.input_validator import InputValidator
from src.database.models import (
    Achievement,
    LabAttempt,
    LessonProgress,
    ModuleProgress,
    Profile,
    QuizCompletion,
    RequirementType,
    UserAchievement,
    XpSource,
)
from src.modules.shared.access import Actor, ensure_staff
from src.modules.shared.base_repository import BaseRepository
from src.modules.shared.base_service import BaseService
from src.modules.shared.exceptions import ConflictError, ValidationError
from src.modules.xp.ledger import GrantResult, XpLedger

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from src.core.config.manager import ConfigManager
    from src.core.event.bus import EventBus


class AchievementRepository(BaseRepository[Achievement]):
    """Repository for Achievement model."""

    pass


class UserAchievementRepository(BaseRepository[UserAchievement]):
    """Repository for UserAchievement model."""

    pass


@dataclass(frozen=True)
class AchievementRecord:
    achievement_id: int
    name: str
    description: Optional[str]
    icon: Optional[str]
    xp_reward: int
    requirement_type: str
    requirement_value: int
    is_active: bool

    @classmethod
    def from_model(cls, achievement: Achievement) -> "AchievementRecord":
        return cls(
            achievement_id=achievement.id,
            name=achievement.name,
            description=achievement.description,
            icon=achievement.icon,
            xp_reward=achievement.xp_reward,
            requirement_type=achievement.requirement_type,
            requirement_value=achievement.requirement_value,
            is_active=achievement.is_active,
        )


@dataclass(frozen=True)
class EarnedAchievementRecord:
    achievement_id: int
    name: str
    description: Optional[str]
    icon: Optional[str]
    xp_reward: int
    earned_at: datetime


@dataclass(frozen=True)
class AwardedAchievement:
    achievement_id: int
    name: str
    icon: Optional[str]
    requirement_type: str
    requirement_value: int
    earned_at: datetime
    grant: Optional[GrantResult] = None

    @property
    def xp_awarded(self) -> int:
        return self.grant.amount if self.grant is not None else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "achievement_id": self.achievement_id,
            "name": self.name,
            "icon": self.icon,
            "requirement_type": self.requirement_type,
            "requirement_value": self.requirement_value,
            "earned_at": self.earned_at,
            "xp_awarded": self.xp_awarded,
        }


class AchievementService(BaseService):
    """
    Service for achievements.

    Public Methods
    --------------
    - evaluate_achievements() -> Award everything the learner now qualifies for
    - list_user_achievements() -> Earned achievements
    - list_achievements() -> Catalogue
    - create_achievement() -> Add a catalogue entry (staff)
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
        self._achievement_repo = AchievementRepository(
            model_class=Achievement,
            logger=get_logger(f"{__name__}.AchievementRepository"),
        )
        self._earned_repo = UserAchievementRepository(
            model_class=UserAchievement,
            logger=get_logger(f"{__name__}.UserAchievementRepository"),
        )
        self._lab_repo = BaseRepository(
            model_class=LabAttempt, logger=get_logger(f"{__name__}.LabAttemptRepository")
        )
        self._quiz_repo = BaseRepository(
            model_class=QuizCompletion, logger=get_logger(f"{__name__}.QuizCompletionRepository")
        )
        self._lesson_repo = BaseRepository(
            model_class=LessonProgress, logger=get_logger(f"{__name__}.LessonProgressRepository")
        )
        self._module_repo = BaseRepository(
            model_class=ModuleProgress, logger=get_logger(f"{__name__}.ModuleProgressRepository")
        )

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def evaluate_achievements(self, user_id: str, actor: Actor) -> List[AwardedAchievement]:
        """
        Award every qualifying achievement not yet earned.

        Returns the achievements awarded by this call; an empty list when
        nothing new qualifies.

        Raises:
            NotFoundError: Profile does not exist
        """
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        self.authorize(actor, user_id, "evaluate_achievements")

        self.log_operation("evaluate_achievements", user_id=user_id)

        try:
            awarded = await self._evaluate(user_id)
        except ConflictError as exc:
            self.log.info(
                "Concurrent achievement award detected; re-evaluating",
                extra={"user_id": user_id, "error_code": exc.error_code},
            )
            awarded = await self._evaluate(user_id)

        for award in awarded:
            await self.emit_event(
                "achievement.awarded",
                {"user_id": user_id, **award.to_dict()},
            )
            if award.grant is not None:
                for event_name, payload in self._ledger.events_for(award.grant):
                    await self.emit_event(event_name, payload)

        if awarded:
            self.log.info(
                f"{len(awarded)} achievement(s) awarded to {user_id}",
                extra={
                    "user_id": user_id,
                    "achievement_ids": [a.achievement_id for a in awarded],
                },
            )

        return awarded

    async def create_achievement(
        self,
        actor: Actor,
        name: str,
        requirement_type: RequirementType | str,
        requirement_value: int,
        xp_reward: int = 0,
        description: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> AchievementRecord:
        """Add an active achievement to the catalogue (staff only)."""
        ensure_staff(actor, "create_achievement")
        name = InputValidator.validate_string(name, field_name="name", min_length=1, max_length=100)
        requirement = InputValidator.validate_choice(
            requirement_type.value
            if isinstance(requirement_type, RequirementType)
            else requirement_type,
            field_name="requirement_type",
            valid_choices=[r.value for r in RequirementType],
        )
        requirement_value = InputValidator.validate_positive_integer(
            requirement_value, field_name="requirement_value"
        )
        xp_reward = InputValidator.validate_non_negative_integer(xp_reward, field_name="xp_reward")

        self.log_operation(
            "create_achievement", achievement_name=name, requirement_type=requirement
        )

        async with DatabaseService.get_transaction() as session:
            if await self._achievement_repo.exists(session, Achievement.name == name):
                raise ValidationError("name", f"Achievement '{name}' already exists")

            achievement = self._achievement_repo.add(
                session,
                Achievement(
                    name=name,
                    description=description,
                    icon=icon,
                    xp_reward=xp_reward,
                    requirement_type=requirement,
                    requirement_value=requirement_value,
                    is_active=True,
                ),
            )
            await self._achievement_repo.flush(session)
            return AchievementRecord.from_model(achievement)

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def list_achievements(self, active_only: bool = True) -> List[AchievementRecord]:
        conditions = [Achievement.is_active.is_(True)] if active_only else []
        async with DatabaseService.get_session() as session:
            rows = await self._achievement_repo.find_many_where(
                session, *conditions, order_by=(Achievement.id,)
            )
            return [AchievementRecord.from_model(row) for row in rows]

    async def list_user_achievements(
        self, user_id: str, actor: Actor
    ) -> List[EarnedAchievementRecord]:
        """Earned achievements for ``user_id``, oldest first."""
        user_id = InputValidator.validate_identifier(user_id, field_name="user_id")
        self.authorize(actor, user_id, "list_user_achievements")

        async with DatabaseService.get_session() as session:
            rows = await session.execute(
                select(
                    UserAchievement.achievement_id,
                    UserAchievement.earned_at,
                    Achievement.name,
                    Achievement.description,
                    Achievement.icon,
                    Achievement.xp_reward,
                )
                .join(Achievement, UserAchievement.achievement_id == Achievement.id)
                .where(UserAchievement.user_id == user_id)
                .order_by(UserAchievement.earned_at, UserAchievement.id)
            )
            return [
                EarnedAchievementRecord(
                    achievement_id=row.achievement_id,
                    name=row.name,
                    description=row.description,
                    icon=row.icon,
                    xp_reward=row.xp_reward,
                    earned_at=as_utc(row.earned_at),
                )
                for row in rows
            ]

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _evaluate(self, user_id: str) -> List[AwardedAchievement]:
        awarded: List[AwardedAchievement] = []

        async with DatabaseService.get_transaction() as session:
            profile = await self._ledger.lock_profile(session, user_id)

            catalogue = await self._achievement_repo.find_many_where(
                session,
                Achievement.is_active.is_(True),
                order_by=(Achievement.requirement_value, Achievement.id),
            )
            earned_rows = await self._earned_repo.find_many_where(
                session, UserAchievement.user_id == user_id
            )
            earned: Set[int] = {row.achievement_id for row in earned_rows}
            counts: Dict[str, int] = {}

            progressed = True
            while progressed:
                progressed = False
                for achievement in catalogue:
                    if achievement.id in earned:
                        continue

                    metric = await self._metric(
                        session, profile, achievement.requirement_type, counts
                    )
                    if metric is None or metric < achievement.requirement_value:
                        continue

                    awarded.append(await self._award(session, user_id, achievement))
                    earned.add(achievement.id)
                    progressed = True

        return awarded

    async def _award(
        self, session: AsyncSession, user_id: str, achievement: Achievement
    ) -> AwardedAchievement:
        now = utc_now()
        self._earned_repo.add(
            session,
            UserAchievement(user_id=user_id, achievement_id=achievement.id, earned_at=now),
        )
        try:
            await self._earned_repo.flush(session)
        except IntegrityError as exc:
            raise ConflictError(
                "UserAchievement",
                f"{user_id}:{achievement.id}",
                "achievement was awarded by a concurrent evaluation",
            ) from exc

        grant = None
        if achievement.xp_reward > 0:
            grant = await self._ledger.apply_grant(
                session,
                user_id=user_id,
                amount=achievement.xp_reward,
                source=XpSource.ACHIEVEMENT,
                source_id=str(achievement.id),
                description=f"Achievement unlocked: {achievement.name}",
                now=now,
            )

        return AwardedAchievement(
            achievement_id=achievement.id,
            name=achievement.name,
            icon=achievement.icon,
            requirement_type=achievement.requirement_type,
            requirement_value=achievement.requirement_value,
            earned_at=now,
            grant=grant,
        )

    async def _metric(
        self,
        session: AsyncSession,
        profile: Profile,
        requirement_type: str,
        counts: Dict[str, int],
    ) -> Optional[int]:
        """Current value of a requirement metric; None for unknown types."""
        try:
            requirement = RequirementType(requirement_type)
        except ValueError:
            self.log.warning(
                "Skipping achievement with unknown requirement type",
                extra={"requirement_type": requirement_type},
            )
            return None

        if requirement is RequirementType.XP_TOTAL:
            return profile.xp
        if requirement is RequirementType.LEVEL:
            return profile.level
        if requirement is RequirementType.STREAK_DAYS:
            return profile.streak_days

        # completion counts cannot change during an evaluation
        if requirement.value not in counts:
            counts[requirement.value] = await self._count_completed(
                session, profile.user_id, requirement
            )
        return counts[requirement.value]

    async def _count_completed(
        self, session: AsyncSession, user_id: str, requirement: RequirementType
    ) -> int:
        if requirement is RequirementType.LABS_COMPLETED:
            return await self._lab_repo.count(
                session, LabAttempt.user_id == user_id, LabAttempt.is_completed.is_(True)
            )
        if requirement is RequirementType.QUIZZES_COMPLETED:
            return await self._quiz_repo.count(session, QuizCompletion.user_id == user_id)
        if requirement is RequirementType.LESSONS_COMPLETED:
            return await self._lesson_repo.count(
                session,
                LessonProgress.user_id == user_id,
                LessonProgress.is_completed.is_(True),
            )
        return await self._module_repo.count(
            session,
            ModuleProgress.user_id == user_id,
            ModuleProgress.is_completed.is_(True),
        )
