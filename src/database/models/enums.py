"""
Database Model Enums
====================

Lightweight enumerations for categorical columns. Columns store the enum
``value`` as a plain string so the schema stays portable across PostgreSQL
and SQLite; services convert at the boundary.
"""

from __future__ import annotations

import enum


class XpSource(str, enum.Enum):
    """What produced an XP transaction."""

    LESSON = "lesson"
    QUIZ = "quiz"
    LAB = "lab"
    ACHIEVEMENT = "achievement"
    MODULE = "module"


class RequirementType(str, enum.Enum):
    """
    Metric an achievement is unlocked by.

    Each value maps to a single integer read from the learner's profile or
    progress tables.
    """

    XP_TOTAL = "xp_total"
    LEVEL = "level"
    STREAK_DAYS = "streak_days"
    LABS_COMPLETED = "labs_completed"
    QUIZZES_COMPLETED = "quizzes_completed"
    LESSONS_COMPLETED = "lessons_completed"
    MODULES_COMPLETED = "modules_completed"
