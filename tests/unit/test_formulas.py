"""
Unit tests for progression math.

Purpose
-------
Verify the level curve, progress percentage, level titles and activity
streak rules.

Test Coverage
-------------
- xp_required_for_level / xp_floor_for_level values
- level_for_xp inversion across a wide XP range
- progress_percent bounds and clamping
- level_title default bands and custom bands
- next_streak calendar-day transitions
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.modules.shared.formulas import (
    level_for_xp,
    level_title,
    next_streak,
    progress_percent,
    xp_floor_for_level,
    xp_required_for_level,
    xp_to_next_level,
)


@pytest.mark.unit
class TestLevelCurve:
    """Test the quadratic level curve."""

    def test_required_xp_values(self):
        assert xp_required_for_level(1) == 50
        assert xp_required_for_level(2) == 200
        assert xp_required_for_level(10) == 5000

    def test_floor_xp_values(self):
        assert xp_floor_for_level(1) == 0
        assert xp_floor_for_level(2) == 50
        assert xp_floor_for_level(3) == 200

    @pytest.mark.parametrize(
        "xp, expected_level",
        [(0, 1), (49, 1), (50, 2), (199, 2), (200, 3), (449, 3), (450, 4), (5000, 11)],
    )
    def test_level_for_xp_boundaries(self, xp, expected_level):
        assert level_for_xp(xp) == expected_level

    def test_level_never_below_one(self):
        assert level_for_xp(-100) == 1

    def test_level_inversion_holds(self):
        """floor(level) <= xp < required(level) for every xp."""
        for xp in range(0, 20_000, 7):
            level = level_for_xp(xp)
            assert xp_floor_for_level(level) <= xp < xp_required_for_level(level)

    def test_xp_to_next_level(self):
        assert xp_to_next_level(0) == 50
        assert xp_to_next_level(60) == 140


@pytest.mark.unit
class TestProgressPercent:
    """Test progress toward the next level."""

    def test_progress_at_level_floor_is_zero(self):
        assert progress_percent(50, 2) == 0.0

    def test_progress_midway(self):
        # level 2 spans 50..200
        assert progress_percent(125, 2) == pytest.approx(50.0)

    def test_progress_is_clamped(self):
        assert progress_percent(10_000, 2) == 100.0
        assert progress_percent(0, 5) == 0.0

    def test_progress_bounds_across_range(self):
        for xp in range(0, 5_000, 13):
            assert 0.0 <= progress_percent(xp, level_for_xp(xp)) <= 100.0


@pytest.mark.unit
class TestLevelTitle:
    """Test display titles."""

    @pytest.mark.parametrize(
        "level, title",
        [(1, "Novice"), (4, "Novice"), (5, "Apprentice"), (19, "Technician"),
         (20, "Specialist"), (49, "Master"), (50, "Legend"), (120, "Legend")],
    )
    def test_default_bands(self, level, title):
        assert level_title(level) == title

    def test_custom_bands(self):
        bands = [(3, "Rookie"), (None, "Veteran")]

        assert level_title(2, bands) == "Rookie"
        assert level_title(3, bands) == "Veteran"


@pytest.mark.unit
class TestStreak:
    """Test UTC calendar-day streak transitions."""

    now = datetime(2026, 3, 10, 9, 30, tzinfo=timezone.utc)

    def test_first_activity_starts_streak(self):
        assert next_streak(0, None, self.now) == 1

    def test_same_day_keeps_streak(self):
        earlier_today = self.now.replace(hour=0, minute=5)
        assert next_streak(4, earlier_today, self.now) == 4

    def test_same_day_with_zero_streak_becomes_one(self):
        assert next_streak(0, self.now, self.now) == 1

    def test_previous_day_extends_streak(self):
        yesterday_late = (self.now - timedelta(days=1)).replace(hour=23, minute=59)
        assert next_streak(4, yesterday_late, self.now) == 5

    def test_gap_resets_streak(self):
        assert next_streak(9, self.now - timedelta(days=2), self.now) == 1
