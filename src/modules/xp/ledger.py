"""
In-transaction XP ledger.

Purpose
-------
Apply one XP grant inside the caller's open transaction: append the ledger
row and rewrite the profile's cached xp/level/streak under a row lock. Every
service that pays XP (labs, quizzes, lessons, modules, achievements) goes
through ``XpLedger.apply_grant`` so that a completion guard and the grant it
protects commit or roll back together.

Non-Responsibilities
--------------------
- Opening or committing transactions (callers use DatabaseService)
- Publishing events (callers publish ``events_for(result)`` after commit)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from src.core.database.base import as_utc, utc_now
from src.core.logging.logger import get_logger
from src.core.validation.input_validator import InputValidator
from src.database.models import Profile, XpSource, XpTransaction
from src.modules.shared.base_repository import BaseRepository
from src.modules.shared.constants import MAX_DESCRIPTION_LENGTH
from src.modules.shared.exceptions import NotFoundError
from src.modules.shared.formulas import level_for_xp, next_streak

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession


class ProfileRepository(BaseRepository[Profile]):
    """Repository for Profile model."""

    async def get_by_user_id(
        self, session: AsyncSession, user_id: str, for_update: bool = False
    ) -> Optional[Profile]:
        return await self.find_one_where(
            session, Profile.user_id == user_id, for_update=for_update
        )


class XpTransactionRepository(BaseRepository[XpTransaction]):
    """Repository for XpTransaction model."""

    pass


@dataclass(frozen=True)
class GrantResult:
    """Outcome of one applied grant."""

    transaction_id: int
    user_id: str
    amount: int
    source: XpSource
    source_id: Optional[str]
    old_xp: int
    new_xp: int
    old_level: int
    new_level: int
    streak_days: int
    granted_at: datetime

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "user_id": self.user_id,
            "amount": self.amount,
            "source": self.source.value,
            "source_id": self.source_id,
            "old_xp": self.old_xp,
            "new_xp": self.new_xp,
            "old_level": self.old_level,
            "new_level": self.new_level,
            "leveled_up": self.leveled_up,
            "streak_days": self.streak_days,
        }


class XpLedger:
    """
    Applies grants within an existing session.

    The profile row is locked (SELECT ... FOR UPDATE) before it is read, so
    concurrent grants for the same learner serialize and none is lost.
    """

    def __init__(self, logger: Optional[Logger] = None) -> None:
        self.log = logger or get_logger(__name__)
        self.profiles = ProfileRepository(
            model_class=Profile,
            logger=get_logger(f"{__name__}.ProfileRepository"),
        )
        self.transactions = XpTransactionRepository(
            model_class=XpTransaction,
            logger=get_logger(f"{__name__}.XpTransactionRepository"),
        )

    async def lock_profile(self, session: AsyncSession, user_id: str) -> Profile:
        """Fetch the learner's profile with a row lock, or raise NotFoundError."""
        profile = await self.profiles.get_by_user_id(session, user_id, for_update=True)
        if profile is None:
            raise NotFoundError("Profile", user_id)
        return profile

    async def apply_grant(
        self,
        session: AsyncSession,
        user_id: str,
        amount: int,
        source: XpSource,
        source_id: Optional[str] = None,
        description: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> GrantResult:
        """
        Append one ledger row and update the profile cache.

        Raises:
            ValidationError: amount is not a positive integer
            NotFoundError: no profile for ``user_id``
        """
        amount = InputValidator.validate_positive_integer(amount, field_name="amount")
        source = XpSource(source)
        if description is not None:
            description = description[:MAX_DESCRIPTION_LENGTH]

        now = now or utc_now()
        profile = await self.lock_profile(session, user_id)

        old_xp = profile.xp
        old_level = profile.level

        transaction = self.transactions.add(
            session,
            XpTransaction(
                user_id=user_id,
                amount=amount,
                source=source.value,
                source_id=source_id,
                description=description,
                created_at=now,
            ),
        )

        profile.xp = old_xp + amount
        profile.level = level_for_xp(profile.xp)
        profile.streak_days = next_streak(
            profile.streak_days, as_utc(profile.last_activity_at), now
        )
        profile.last_activity_at = now

        await self.transactions.flush(session)

        self.log.debug(
            "XP grant applied",
            extra={
                "user_id": user_id,
                "amount": amount,
                "source": source.value,
                "source_id": source_id,
                "new_xp": profile.xp,
                "new_level": profile.level,
            },
        )

        return GrantResult(
            transaction_id=transaction.id,
            user_id=user_id,
            amount=amount,
            source=source,
            source_id=source_id,
            old_xp=old_xp,
            new_xp=profile.xp,
            old_level=old_level,
            new_level=profile.level,
            streak_days=profile.streak_days,
            granted_at=now,
        )

    @staticmethod
    def events_for(result: GrantResult) -> List[Tuple[str, Dict[str, Any]]]:
        """Events to publish once the grant's transaction has committed."""
        events: List[Tuple[str, Dict[str, Any]]] = [("xp.granted", result.to_dict())]
        if result.leveled_up:
            events.append(
                (
                    "profile.leveled_up",
                    {
                        "user_id": result.user_id,
                        "old_level": result.old_level,
                        "new_level": result.new_level,
                        "xp": result.new_xp,
                    },
                )
            )
        return events
