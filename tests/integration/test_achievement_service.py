"""
Integration Tests for AchievementService
=========================================

Purpose
-------
Verify achievement catalogue management and award evaluation.

Test Coverage
-------------
- Staff-only catalogue creation with unique names
- Awards for profile metrics and completion counts
- Each achievement is earned at most once
- Achievement XP can unlock further achievements in the same evaluation
"""

import pytest

from src.database.models import RequirementType, XpSource
from src.modules.shared.access import Actor, Role
from src.modules.shared.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

ALICE = Actor.student("alice")
GHOST = Actor.student("ghost")


@pytest.fixture
def master() -> Actor:
    return Actor.staff("root", role=Role.MASTER)


@pytest.mark.integration
@pytest.mark.database
class TestCatalogue:
    """Test create_achievement() and list_achievements()."""

    async def test_create_and_list(self, database, achievement_service, master):
        record = await achievement_service.create_achievement(
            master, "Lab Rat", RequirementType.LABS_COMPLETED, 3, xp_reward=20, icon="flask"
        )

        catalogue = await achievement_service.list_achievements()

        assert catalogue == [record]
        assert record.requirement_type == "labs_completed"
        assert record.is_active is True

    async def test_duplicate_name_rejected(self, database, achievement_service, master):
        await achievement_service.create_achievement(master, "Lab Rat", "labs_completed", 3)

        with pytest.raises(ValidationError) as exc_info:
            await achievement_service.create_achievement(master, "Lab Rat", "level", 2)

        assert exc_info.value.field == "name"

    async def test_students_cannot_create(self, database, achievement_service):
        with pytest.raises(PermissionDeniedError):
            await achievement_service.create_achievement(
                Actor.student("alice"), "Cheat", "xp_total", 1
            )

    async def test_unknown_requirement_type(self, database, achievement_service, master):
        with pytest.raises(ValidationError):
            await achievement_service.create_achievement(master, "Odd", "logins", 1)


@pytest.mark.integration
@pytest.mark.database
class TestEvaluateAchievements:
    """Test evaluate_achievements()."""

    async def test_awards_qualifying_achievements(
        self, make_profile, achievement_service, lab_service, master, recorded_events
    ):
        # Arrange
        await make_profile("alice")
        await achievement_service.create_achievement(master, "First Lab", "labs_completed", 1)
        await achievement_service.create_achievement(master, "Five Labs", "labs_completed", 5)
        await lab_service.submit_command("alice", "lab-1", "ls", ["ls"], xp_reward=0, actor=ALICE)
        recorded_events.clear()

        # Act
        awarded = await achievement_service.evaluate_achievements("alice", actor=ALICE)

        # Assert
        assert [a.name for a in awarded] == ["First Lab"]
        assert recorded_events.names() == ["achievement.awarded"]
        earned = await achievement_service.list_user_achievements("alice", actor=ALICE)
        assert [e.name for e in earned] == ["First Lab"]

    async def test_achievement_earned_once(
        self, make_profile, achievement_service, xp_service, master
    ):
        await make_profile("alice")
        await achievement_service.create_achievement(
            master, "Centurion", "xp_total", 100, xp_reward=10
        )
        await xp_service.grant_xp("alice", 100, XpSource.QUIZ, actor=ALICE)

        first = await achievement_service.evaluate_achievements("alice", actor=ALICE)
        second = await achievement_service.evaluate_achievements("alice", actor=ALICE)

        assert [a.xp_awarded for a in first] == [10]
        assert second == []
        assert await xp_service.get_ledger_total("alice", actor=ALICE) == 110

    async def test_reward_xp_unlocks_more(
        self, make_profile, achievement_service, quiz_service, profile_service, master
    ):
        # Arrange
        await make_profile("alice")
        await achievement_service.create_achievement(
            master, "Quizzer", "quizzes_completed", 1, xp_reward=50
        )
        await achievement_service.create_achievement(master, "Level Two", "level", 2)
        await quiz_service.complete_quiz("alice", "lesson-1", 1, 1, 0, actor=ALICE)

        # Act
        awarded = await achievement_service.evaluate_achievements("alice", actor=ALICE)

        # Assert
        assert [a.name for a in awarded] == ["Quizzer", "Level Two"]
        assert awarded[0].grant.leveled_up is True
        profile = await profile_service.get_profile("alice", actor=ALICE)
        assert (profile.xp, profile.level) == (50, 2)

    async def test_unknown_profile(self, database, achievement_service):
        with pytest.raises(NotFoundError):
            await achievement_service.evaluate_achievements("ghost", actor=GHOST)
