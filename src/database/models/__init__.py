"""
Database Models Package
========================

SQLAlchemy ORM models for the Academy core, organized by domain.

All models:
- Are schema-only, with no business logic
- Use Mapped[] syntax with mapped_column()
- Compose IdMixin / TimestampMixin from ``src.core.database.base``
- Reference profiles by ``user_id`` with ON DELETE CASCADE

Domain Organization:
--------------------
- core: Profile
- progression: XP ledger, lab attempts, quiz completions, lesson/module progress
- rewards: Achievements
"""

from .core.profile import Profile
from .enums import RequirementType, XpSource
from .progression.lab_attempt import LabAttempt
from .progression.lesson_progress import LessonProgress, ModuleProgress
from .progression.quiz_completion import QuizCompletion
from .progression.xp_transaction import XpTransaction
from .rewards.achievement import Achievement, UserAchievement

__all__ = [
    # Core
    "Profile",
    # Progression
    "XpTransaction",
    "LabAttempt",
    "QuizCompletion",
    "LessonProgress",
    "ModuleProgress",
    # Rewards
    "Achievement",
    "UserAchievement",
    # Enums
    "XpSource",
    "RequirementType",
]
