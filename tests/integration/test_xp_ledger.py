"""
Integration Tests for XpLedgerService
======================================

Purpose
-------
Exercise the XP ledger end to end: grants, cached profile totals, resets,
reconciliation and history queries.

Test Coverage
-------------
- Grants append one ledger row and update xp/level atomically
- Profile xp always equals the ledger sum
- Level-up events are published after commit
- Invalid amounts/sources, unknown profiles and unauthorized actors
- Staff-only reset wipes ledger and progress but keeps achievements
- Reconciliation repairs a drifted profile cache
- Newest-first, paged, source-filtered history
"""

import pytest
from sqlalchemy import update

from src.core.database import DatabaseService
from src.database.models import Profile, XpSource
from src.modules.shared.access import Actor, Role
from src.modules.shared.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

ALICE = Actor.student("alice")
GHOST = Actor.student("ghost")


# ============================================================================
# GRANT TESTS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestGrantXp:
    """Test grant_xp()."""

    async def test_grant_updates_profile_and_ledger(
        self, make_profile, xp_service, profile_service
    ):
        # Arrange
        await make_profile("alice")

        # Act
        result = await xp_service.grant_xp(
            "alice", 30, XpSource.LESSON, source_id="lesson-1", actor=ALICE
        )

        # Assert
        assert result.old_xp == 0
        assert result.new_xp == 30
        assert result.new_level == 1
        assert result.leveled_up is False
        profile = await profile_service.get_profile("alice", actor=ALICE)
        assert profile.xp == 30
        assert await xp_service.get_ledger_total("alice", actor=ALICE) == 30

    async def test_profile_xp_equals_ledger_sum(self, make_profile, xp_service, profile_service):
        await make_profile("alice")

        for amount, source in ((10, "lesson"), (25, "quiz"), (40, "lab"), (5, "module")):
            await xp_service.grant_xp("alice", amount, source, actor=ALICE)

        profile = await profile_service.get_profile("alice", actor=ALICE)
        assert profile.xp == 80
        assert await xp_service.get_ledger_total("alice", actor=ALICE) == 80
        assert profile.level == 2

    async def test_level_up_publishes_event(self, make_profile, xp_service, recorded_events):
        await make_profile("alice")
        recorded_events.clear()

        result = await xp_service.grant_xp("alice", 60, XpSource.QUIZ, actor=ALICE)

        assert result.leveled_up is True
        assert recorded_events.names() == ["xp.granted", "profile.leveled_up"]
        level_up = recorded_events.payloads("profile.leveled_up")[0]
        assert level_up == {"user_id": "alice", "old_level": 1, "new_level": 2, "xp": 60}

    async def test_grant_starts_streak(self, make_profile, xp_service, profile_service):
        await make_profile("alice")

        result = await xp_service.grant_xp("alice", 5, XpSource.LESSON, actor=ALICE)

        assert result.streak_days == 1
        profile = await profile_service.get_profile("alice", actor=ALICE)
        assert profile.last_activity_at is not None

    @pytest.mark.parametrize("amount", [0, -5, True, 2.5, "ten"])
    async def test_invalid_amount_rejected(self, make_profile, xp_service, amount):
        await make_profile("alice")

        with pytest.raises(ValidationError) as exc_info:
            await xp_service.grant_xp("alice", amount, XpSource.LESSON, actor=ALICE)

        assert exc_info.value.field == "amount"
        assert await xp_service.get_ledger_total("alice", actor=ALICE) == 0

    async def test_unknown_source_rejected(self, make_profile, xp_service):
        await make_profile("alice")

        with pytest.raises(ValidationError) as exc_info:
            await xp_service.grant_xp("alice", 10, "bonus", actor=ALICE)

        assert exc_info.value.field == "source"

    async def test_unknown_profile_raises_not_found(self, database, xp_service):
        with pytest.raises(NotFoundError):
            await xp_service.grant_xp("ghost", 10, XpSource.LESSON, actor=GHOST)

    async def test_student_cannot_grant_for_another_user(self, make_profile, xp_service):
        await make_profile("alice")
        await make_profile("bob")

        with pytest.raises(PermissionDeniedError):
            await xp_service.grant_xp(
                "alice", 10, XpSource.LESSON, actor=Actor.student("bob")
            )

        assert await xp_service.get_ledger_total("alice", actor=ALICE) == 0

    async def test_admin_grants_within_cohort(self, make_profile, xp_service):
        await make_profile("alice")
        admin = Actor.staff("instructor", cohort=["alice"])

        result = await xp_service.grant_xp("alice", 10, XpSource.LESSON, actor=admin)

        assert result.new_xp == 10


# ============================================================================
# RESET / RECONCILE TESTS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestResetProgress:
    """Test reset_progress()."""

    async def test_reset_clears_ledger_and_progress(
        self, make_profile, xp_service, lab_service, profile_service, recorded_events
    ):
        # Arrange
        await make_profile("alice")
        await lab_service.submit_command("alice", "lab-1", "ls", ["ls"], xp_reward=80, actor=ALICE)
        master = Actor.staff("root", role=Role.MASTER)
        recorded_events.clear()

        # Act
        result = await xp_service.reset_progress("alice", actor=master)

        # Assert
        assert result["previous_xp"] == 80
        assert result["previous_level"] == 2
        assert result["deleted"]["xp_transactions"] == 1
        assert result["deleted"]["lab_attempts"] == 1
        profile = await profile_service.get_profile("alice", actor=ALICE)
        assert (profile.xp, profile.level, profile.streak_days) == (0, 1, 0)
        assert await xp_service.get_ledger_total("alice", actor=ALICE) == 0
        assert await lab_service.get_attempt("alice", "lab-1", actor=ALICE) is None
        assert recorded_events.names() == ["progress.reset"]

    async def test_reset_keeps_earned_achievements(
        self, make_profile, xp_service, achievement_service
    ):
        await make_profile("alice")
        master = Actor.staff("root", role=Role.MASTER)
        await achievement_service.create_achievement(
            master, "First Steps", "xp_total", 10
        )
        await xp_service.grant_xp("alice", 10, XpSource.LESSON, actor=ALICE)
        await achievement_service.evaluate_achievements("alice", actor=ALICE)

        await xp_service.reset_progress("alice", actor=master)

        earned = await achievement_service.list_user_achievements("alice", actor=ALICE)
        assert [a.name for a in earned] == ["First Steps"]

    async def test_student_cannot_reset(self, make_profile, xp_service):
        await make_profile("alice")

        with pytest.raises(PermissionDeniedError):
            await xp_service.reset_progress("alice", actor=Actor.student("alice"))

    async def test_admin_outside_cohort_cannot_reset(self, make_profile, xp_service):
        await make_profile("alice")

        with pytest.raises(PermissionDeniedError):
            await xp_service.reset_progress(
                "alice", actor=Actor.staff("instructor", cohort=["bob"])
            )


@pytest.mark.integration
@pytest.mark.database
class TestReconcileProfile:
    """Test reconcile_profile()."""

    async def test_consistent_profile_is_untouched(self, make_profile, xp_service):
        await make_profile("alice")
        await xp_service.grant_xp("alice", 30, XpSource.LESSON, actor=ALICE)

        result = await xp_service.reconcile_profile(
            "alice", actor=Actor.staff("root", role=Role.MASTER)
        )

        assert result["corrected"] is False
        assert result["ledger_total"] == 30

    async def test_drifted_cache_is_rewritten(self, make_profile, xp_service, profile_service):
        # Arrange
        await make_profile("alice")
        await xp_service.grant_xp("alice", 30, XpSource.LESSON, actor=ALICE)
        async with DatabaseService.get_transaction() as session:
            await session.execute(
                update(Profile).where(Profile.user_id == "alice").values(xp=999, level=5)
            )

        # Act
        result = await xp_service.reconcile_profile(
            "alice", actor=Actor.staff("root", role=Role.MASTER)
        )

        # Assert
        assert result["corrected"] is True
        assert result["cached_xp"] == 999
        profile = await profile_service.get_profile("alice", actor=ALICE)
        assert (profile.xp, profile.level) == (30, 1)


# ============================================================================
# QUERY TESTS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestHistory:
    """Test get_history() and get_ledger_total()."""

    async def test_history_is_newest_first_and_paged(self, make_profile, xp_service):
        await make_profile("alice")
        for amount in (1, 2, 3, 4):
            await xp_service.grant_xp(
                "alice", amount, XpSource.LESSON, source_id=f"l-{amount}", actor=ALICE
            )

        first_page = await xp_service.get_history("alice", limit=2, actor=ALICE)
        second_page = await xp_service.get_history("alice", limit=2, offset=2, actor=ALICE)

        assert [row.amount for row in first_page] == [4, 3]
        assert [row.amount for row in second_page] == [2, 1]
        assert first_page[0].source is XpSource.LESSON
        assert first_page[0].source_id == "l-4"

    async def test_history_source_filter(self, make_profile, xp_service):
        await make_profile("alice")
        await xp_service.grant_xp("alice", 5, XpSource.LESSON, actor=ALICE)
        await xp_service.grant_xp("alice", 7, XpSource.QUIZ, actor=ALICE)

        rows = await xp_service.get_history("alice", source="quiz", actor=ALICE)

        assert [(row.amount, row.source) for row in rows] == [(7, XpSource.QUIZ)]

    async def test_history_page_size_is_capped(self, make_profile, xp_service):
        await make_profile("alice")

        with pytest.raises(ValidationError):
            await xp_service.get_history("alice", limit=10_000, actor=ALICE)

    async def test_ledger_total_for_unknown_profile(self, database, xp_service):
        with pytest.raises(NotFoundError):
            await xp_service.get_ledger_total("ghost", actor=GHOST)
