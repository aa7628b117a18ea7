"""
Profile: one learner account's progression state.
Schema only.

``xp`` is the fast-read cache of the learner's XP ledger and ``level`` is a
cache of the level curve applied to ``xp``; both are rewritten in the same
transaction as every ledger append.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, IdMixin, TimestampMixin


class Profile(Base, IdMixin, TimestampMixin):
    """
    Learner profile.

    Schema-only:
    - identity (user_id issued by the auth provider, username, full_name)
    - progression cache (xp, level)
    - activity (streak_days, last_activity_at)
    """

    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("xp >= 0", name="xp_non_negative"),
        CheckConstraint("level >= 1", name="level_positive"),
        Index("ix_profiles_xp_rank", "xp", "created_at"),
    )

    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        doc="External account identifier",
    )

    username: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="Public handle",
    )

    full_name: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
        doc="Display name",
    )

    avatar_url: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )

    xp: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        doc="Cumulative XP (cache of the ledger sum)",
    )

    level: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        doc="Level derived from xp",
    )

    streak_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Consecutive UTC days with XP activity",
    )

    last_activity_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
