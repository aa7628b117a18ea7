"""Read-time leaderboards: global, rolling-window and per-user standing."""

from .engine import (
    RankingCandidate,
    RankingEntry,
    RankPosition,
    locate,
    percentile_for_rank,
    rank_candidates,
    top_entries,
)
from .service import RankingService

__all__ = [
    "RankingService",
    "RankingCandidate",
    "RankingEntry",
    "RankPosition",
    "locate",
    "percentile_for_rank",
    "rank_candidates",
    "top_entries",
]
