"""Achievement catalogue and awarding."""

from .service import (
    AchievementRecord,
    AchievementService,
    AwardedAchievement,
    EarnedAchievementRecord,
)

__all__ = [
    "AchievementService",
    "AchievementRecord",
    "AwardedAchievement",
    "EarnedAchievementRecord",
]
