"""
LabAttempt: per (user, lab) submission history and completion state.
Schema only.

State machine: NotStarted (no row) -> InProgress -> Completed.
``completed_at`` is set exactly when ``is_completed`` becomes true and is
never cleared afterwards.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, IdMixin, TimestampMixin


class LabAttempt(Base, IdMixin, TimestampMixin):
    """
    Lab attempt record.

    ``commands_used`` holds sanitized commands in submission order. Services
    assign a new list on every append so the JSON column is flagged dirty.
    """

    __tablename__ = "lab_attempts"
    __table_args__ = (
        UniqueConstraint("user_id", "lab_id"),
        CheckConstraint(
            "(is_completed AND completed_at IS NOT NULL) "
            "OR (NOT is_completed AND completed_at IS NULL)",
            name="completion_timestamp_consistent",
        ),
    )

    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("profiles.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    lab_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    commands_used: Mapped[List[str]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=list,
    )

    is_completed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    best_time_seconds: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        doc="Reserved; timing is captured outside the core",
    )
