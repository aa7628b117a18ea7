"""
Achievement / UserAchievement: unlockable badges and who earned them.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, BigIntId, IdMixin, TimestampMixin, utc_now


class Achievement(Base, IdMixin, TimestampMixin):
    """
    Achievement definition.

    Unlocked when the learner's ``requirement_type`` metric reaches
    ``requirement_value``; pays ``xp_reward`` once.
    """

    __tablename__ = "achievements"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    icon: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    requirement_type: Mapped[str] = mapped_column(String(30), nullable=False)
    requirement_value: Mapped[int] = mapped_column(BigInteger, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class UserAchievement(Base, IdMixin):
    """Earned achievement; unique per (user, achievement)."""

    __tablename__ = "user_achievements"
    __table_args__ = (UniqueConstraint("user_id", "achievement_id"),)

    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("profiles.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    achievement_id: Mapped[int] = mapped_column(
        BigIntId,
        ForeignKey("achievements.id", ondelete="CASCADE"),
        nullable=False,
    )

    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )
