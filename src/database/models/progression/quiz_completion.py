"""
QuizCompletion: latest finished quiz session per (user, lesson).
Schema only.

``score``/``total_questions``/``xp_earned`` reflect the most recent
completion. ``xp_granted`` records what the ledger actually paid, which only
happens on the first completion.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, IdMixin, TimestampMixin, utc_now


class QuizCompletion(Base, IdMixin, TimestampMixin):
    """Quiz completion record."""

    __tablename__ = "quiz_completions"
    __table_args__ = (
        UniqueConstraint("user_id", "lesson_id"),
        CheckConstraint(
            "score >= 0 AND score <= total_questions",
            name="score_in_range",
        ),
    )

    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("profiles.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    lesson_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    score: Mapped[int] = mapped_column(Integer, nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False)

    xp_earned: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Session XP of the latest completion (display only)",
    )

    xp_granted: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="XP paid by the ledger for this lesson's quiz",
    )

    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        doc="Number of completed sessions",
    )

    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )
