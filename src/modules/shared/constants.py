"""
Academy Domain Constants

Purpose
-------
Provide domain-level constants for progression, lab evaluation, quizzes and
rankings. These are code defaults; every value that operators may tune is
also exposed through ConfigManager (see ``config/academy.yaml``).

IMPORTANT:
This module contains DOMAIN constants only. Infrastructure concerns (pool
sizes, statement timeouts, log destinations) belong in ``Config``.

Design Notes
------------
- Values are annotated with typing.Final to signal immutability
- Grouped by subsystem
- No side effects at import time
"""

from __future__ import annotations

from typing import Final, Optional, Tuple

# ============================================================================
# PROGRESSION
# ============================================================================

XP_PER_LEVEL_UNIT: Final[int] = 50  # floor(level) = (level - 1)^2 * 50
MIN_LEVEL: Final[int] = 1

# (exclusive upper level bound, title); None closes the table
DEFAULT_LEVEL_TITLES: Final[Tuple[Tuple[Optional[int], str], ...]] = (
    (5, "Novice"),
    (10, "Apprentice"),
    (20, "Technician"),
    (35, "Specialist"),
    (50, "Master"),
    (None, "Legend"),
)

# ============================================================================
# IDENTIFIERS
# ============================================================================

MAX_IDENTIFIER_LENGTH: Final[int] = 64
MAX_DESCRIPTION_LENGTH: Final[int] = 255
MAX_USERNAME_LENGTH: Final[int] = 100

# ============================================================================
# LABS
# ============================================================================

MAX_COMMAND_LENGTH: Final[int] = 500

# ============================================================================
# QUIZZES
# ============================================================================

QUIZ_PASS_THRESHOLD_PERCENT: Final[int] = 70

# ============================================================================
# RANKINGS
# ============================================================================

DEFAULT_GLOBAL_RANKING_LIMIT: Final[int] = 50
DEFAULT_WINDOWED_RANKING_LIMIT: Final[int] = 10
DEFAULT_RANKING_WINDOW_DAYS: Final[int] = 7
MAX_RANKING_LIMIT: Final[int] = 500

# ============================================================================
# LEDGER QUERIES
# ============================================================================

DEFAULT_HISTORY_PAGE_SIZE: Final[int] = 50
MAX_HISTORY_PAGE_SIZE: Final[int] = 200
