"""
Ranking Engine
==============

Pure ordering over ranking candidates. No I/O; the service feeds it rows
read from the profile table (global) or aggregated from the ledger
(windowed).

Ordering
--------
Score descending, then profile creation time ascending, then ``user_id``
ascending. Candidates with a score of zero or less never rank.

Percentile
----------
``round(100 * (total - rank + 1) / total)`` with halves rounded up, so the
leader is always 100 and the last of N is ``round(100 / N)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from src.core.database.base import as_utc


@dataclass(frozen=True)
class RankingCandidate:
    user_id: str
    username: str
    score: int
    created_at: datetime

    def sort_key(self) -> tuple:
        return (-self.score, as_utc(self.created_at), self.user_id)


@dataclass(frozen=True)
class RankingEntry:
    rank: int
    user_id: str
    username: str
    score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "user_id": self.user_id,
            "username": self.username,
            "score": self.score,
        }


@dataclass(frozen=True)
class RankPosition:
    """
    One user's standing within a scope.

    ``rank`` and ``percentile`` are None when the user is not ranked in the
    scope (no profile, zero score, or outside the cohort). ``next_*`` fields
    describe the user directly above and are None at rank 1 or when unranked.
    """

    user_id: str
    rank: Optional[int]
    total: int
    percentile: Optional[int]
    score: int
    next_user_id: Optional[str] = None
    next_username: Optional[str] = None
    xp_to_next_rank: Optional[int] = None

    @property
    def is_ranked(self) -> bool:
        return self.rank is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "rank": self.rank,
            "total": self.total,
            "percentile": self.percentile,
            "score": self.score,
            "next_user_id": self.next_user_id,
            "next_username": self.next_username,
            "xp_to_next_rank": self.xp_to_next_rank,
        }


def percentile_for_rank(rank: int, total: int) -> int:
    if total <= 0 or rank < 1 or rank > total:
        raise ValueError(f"rank {rank} is outside 1..{total}")
    # integer round-half-up of 100 * (total - rank + 1) / total
    return (200 * (total - rank + 1) + total) // (2 * total)


def rank_candidates(candidates: Iterable[RankingCandidate]) -> List[RankingEntry]:
    """Order candidates and assign 1-based ranks; non-positive scores are dropped."""
    ordered = sorted((c for c in candidates if c.score > 0), key=RankingCandidate.sort_key)
    return [
        RankingEntry(rank=index, user_id=c.user_id, username=c.username, score=c.score)
        for index, c in enumerate(ordered, start=1)
    ]


def top_entries(candidates: Iterable[RankingCandidate], limit: int) -> List[RankingEntry]:
    return rank_candidates(candidates)[:limit]


def locate(entries: List[RankingEntry], user_id: str) -> RankPosition:
    """
    Find ``user_id`` in an already ranked list.

    The gap to the next rank is the XP needed to strictly pass the user
    above, i.e. ``above.score - user.score + 1``.
    """
    total = len(entries)
    for index, entry in enumerate(entries):
        if entry.user_id != user_id:
            continue

        if index == 0:
            return RankPosition(
                user_id=user_id,
                rank=entry.rank,
                total=total,
                percentile=percentile_for_rank(entry.rank, total),
                score=entry.score,
            )

        above = entries[index - 1]
        return RankPosition(
            user_id=user_id,
            rank=entry.rank,
            total=total,
            percentile=percentile_for_rank(entry.rank, total),
            score=entry.score,
            next_user_id=above.user_id,
            next_username=above.username,
            xp_to_next_rank=above.score - entry.score + 1,
        )

    return RankPosition(user_id=user_id, rank=None, total=total, percentile=None, score=0)
