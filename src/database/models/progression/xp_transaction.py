"""
XpTransaction: append-only XP ledger entry.
Schema only.

Rows are written once per grant and never updated. The only deletion path is
an administrative progress reset.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, IdMixin, utc_now


class XpTransaction(Base, IdMixin):
    """
    One XP grant.

    Schema-only:
    - user_id
    - amount (signed; grants are positive)
    - source (XpSource value) and optional source_id
    - description
    - created_at
    """

    __tablename__ = "xp_transactions"
    __table_args__ = (
        Index("ix_xp_transactions_user_time", "user_id", "created_at"),
        Index("ix_xp_transactions_source", "source", "source_id"),
    )

    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("profiles.user_id", ondelete="CASCADE"),
        nullable=False,
    )

    amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    source_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
    )

    description: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        index=True,
    )
