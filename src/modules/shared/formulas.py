"""
Academy Progression Formulas

Purpose
-------
Pure calculation functions for progression: XP <-> level conversion,
progress within a level, level titles and the daily activity streak.

Design Notes
------------
All formulas:
- Accept parameters explicitly (no config access)
- Are deterministic and free of side effects
- Treat XP as a non-negative integer and level as an integer >= 1

The level curve is quadratic. Level ``L`` begins at ``(L - 1)^2 * 50`` XP and
ends just before ``L^2 * 50`` XP:

    level 1: [0, 50)     level 2: [50, 200)     level 3: [200, 450) ...

Usage
-----
    from src.modules.shared.formulas import level_for_xp, progress_percent

    level = level_for_xp(profile.xp)
    percent = progress_percent(profile.xp, level)
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Optional, Sequence, Tuple

from .constants import DEFAULT_LEVEL_TITLES, MIN_LEVEL, XP_PER_LEVEL_UNIT


def xp_required_for_level(level: int) -> int:
    """
    Cumulative XP at which ``level`` ends (and ``level + 1`` begins).

    Example:
        >>> xp_required_for_level(1)
        50
        >>> xp_required_for_level(3)
        450
    """
    level = max(level, MIN_LEVEL)
    return level * level * XP_PER_LEVEL_UNIT


def xp_floor_for_level(level: int) -> int:
    """
    Cumulative XP at which ``level`` begins.

    Example:
        >>> xp_floor_for_level(1)
        0
        >>> xp_floor_for_level(3)
        200
    """
    level = max(level, MIN_LEVEL)
    return (level - 1) * (level - 1) * XP_PER_LEVEL_UNIT


def level_for_xp(xp: int) -> int:
    """
    Largest level whose floor does not exceed ``xp``.

    Computed with integer square roots so large totals never suffer from
    float rounding.

    Example:
        >>> level_for_xp(0)
        1
        >>> level_for_xp(49)
        1
        >>> level_for_xp(50)
        2
        >>> level_for_xp(450)
        4
    """
    if xp <= 0:
        return MIN_LEVEL
    return math.isqrt(xp // XP_PER_LEVEL_UNIT) + 1


def progress_percent(xp: int, level: int) -> float:
    """
    Progress through ``level`` as a percentage in [0, 100].

    Clamped even when ``xp`` and ``level`` disagree (stale cache).

    Example:
        >>> progress_percent(125, 2)
        50.0
        >>> progress_percent(10_000, 2)
        100.0
    """
    level = max(level, MIN_LEVEL)
    floor_xp = xp_floor_for_level(level)
    span = xp_required_for_level(level) - floor_xp
    percent = (xp - floor_xp) / span * 100.0
    return min(max(percent, 0.0), 100.0)


def xp_to_next_level(xp: int) -> int:
    """XP still missing before the next level is reached."""
    return xp_required_for_level(level_for_xp(xp)) - max(xp, 0)


def level_title(
    level: int,
    bands: Sequence[Tuple[Optional[int], str]] = DEFAULT_LEVEL_TITLES,
) -> str:
    """
    Display title for ``level``.

    ``bands`` is ordered by upper bound; the first band whose exclusive upper
    bound exceeds ``level`` wins. A ``None`` bound matches everything.

    Example:
        >>> level_title(1)
        'Novice'
        >>> level_title(20)
        'Specialist'
        >>> level_title(99)
        'Legend'
    """
    for upper, title in bands:
        if upper is None or level < upper:
            return title
    return bands[-1][1] if bands else ""


def next_streak(
    current_streak: int,
    last_activity_at: Optional[datetime],
    now: datetime,
) -> int:
    """
    Streak after activity at ``now``, comparing UTC calendar days.

    - same day as the last activity: unchanged (at least 1)
    - the day after: +1
    - anything older, or no previous activity: 1
    """
    if last_activity_at is None:
        return 1

    gap_days = (now.date() - last_activity_at.date()).days
    if gap_days <= 0:
        return max(current_streak, 1)
    if gap_days == 1:
        return current_streak + 1
    return 1
