"""
Integration Tests for RankingService
=====================================

Purpose
-------
Verify global and windowed rankings over real ledger data.

Test Coverage
-------------
- Deterministic order: score desc, then earliest profile, then user id
- Zero-XP users are not ranked
- Windowed ranking only counts transactions inside the window
- rank_of(): rank, total, percentile and gap to the next rank
- Cohort restriction, including an empty cohort
- Limit validation
"""

from datetime import timedelta

import pytest
from sqlalchemy import update

from src.core.database import DatabaseService, utc_now
from src.database.models import Profile, XpSource, XpTransaction
from src.modules.shared.access import Actor
from src.modules.shared.exceptions import ValidationError


async def _grant(xp_service, user_id: str, amount: int) -> None:
    await xp_service.grant_xp(user_id, amount, XpSource.LESSON, actor=Actor.student(user_id))


async def _backdated_grant(user_id: str, amount: int, days_ago: int) -> None:
    """Ledger row outside any recent window, with the profile cache kept in step."""
    async with DatabaseService.get_transaction() as session:
        session.add(
            XpTransaction(
                user_id=user_id,
                amount=amount,
                source=XpSource.LESSON.value,
                created_at=utc_now() - timedelta(days=days_ago),
            )
        )
        await session.execute(
            update(Profile)
            .where(Profile.user_id == user_id)
            .values(xp=Profile.xp + amount)
        )


@pytest.mark.integration
@pytest.mark.database
class TestGlobalRanking:
    """Test global_ranking()."""

    async def test_orders_by_xp_then_signup(self, make_profile, xp_service, ranking_service):
        # Arrange
        await make_profile("u-a", "Ana")
        await make_profile("u-b", "Ben")
        await make_profile("u-c", "Cy")
        await _grant(xp_service, "u-a", 100)
        await _grant(xp_service, "u-b", 150)
        await _grant(xp_service, "u-c", 100)

        # Act
        entries = await ranking_service.global_ranking()

        # Assert
        assert [(e.rank, e.user_id, e.score) for e in entries] == [
            (1, "u-b", 150),
            (2, "u-a", 100),
            (3, "u-c", 100),
        ]
        assert entries[0].username == "Ben"

    async def test_repeated_queries_are_identical(self, make_profile, xp_service, ranking_service):
        for user_id in ("u-a", "u-b", "u-c", "u-d"):
            await make_profile(user_id)
            await _grant(xp_service, user_id, 50)

        first = await ranking_service.global_ranking()
        second = await ranking_service.global_ranking()

        assert first == second
        assert [e.user_id for e in first] == ["u-a", "u-b", "u-c", "u-d"]

    async def test_zero_xp_users_excluded(self, make_profile, xp_service, ranking_service):
        await make_profile("u-a")
        await make_profile("u-b")
        await _grant(xp_service, "u-a", 10)

        entries = await ranking_service.global_ranking()

        assert [e.user_id for e in entries] == ["u-a"]

    async def test_limit(self, make_profile, xp_service, ranking_service):
        for index, user_id in enumerate(("u-a", "u-b", "u-c"), start=1):
            await make_profile(user_id)
            await _grant(xp_service, user_id, index * 10)

        entries = await ranking_service.global_ranking(limit=2)

        assert [e.user_id for e in entries] == ["u-c", "u-b"]

    @pytest.mark.parametrize("limit", [0, -1, 100_000])
    async def test_invalid_limit(self, database, ranking_service, limit):
        with pytest.raises(ValidationError):
            await ranking_service.global_ranking(limit=limit)

    async def test_cohort_restricts_candidates(self, make_profile, xp_service, ranking_service):
        for user_id, amount in (("u-a", 30), ("u-b", 20), ("u-c", 10)):
            await make_profile(user_id)
            await _grant(xp_service, user_id, amount)

        entries = await ranking_service.global_ranking(user_ids=["u-b", "u-c"])

        assert [(e.rank, e.user_id) for e in entries] == [(1, "u-b"), (2, "u-c")]

    async def test_empty_cohort(self, make_profile, xp_service, ranking_service):
        await make_profile("u-a")
        await _grant(xp_service, "u-a", 30)

        assert await ranking_service.global_ranking(user_ids=[]) == []


@pytest.mark.integration
@pytest.mark.database
class TestWindowedRanking:
    """Test windowed_ranking()."""

    async def test_old_transactions_fall_outside_window(
        self, make_profile, xp_service, ranking_service
    ):
        # Arrange
        await make_profile("veteran")
        await make_profile("newcomer")
        await _backdated_grant("veteran", 500, days_ago=30)
        await _grant(xp_service, "newcomer", 20)

        # Act
        weekly = await ranking_service.windowed_ranking(window_days=7)
        overall = await ranking_service.global_ranking()

        # Assert
        assert [(e.user_id, e.score) for e in weekly] == [("newcomer", 20)]
        assert [e.user_id for e in overall] == ["veteran", "newcomer"]

    async def test_window_sums_only_recent_gains(self, make_profile, xp_service, ranking_service):
        await make_profile("u-a")
        await make_profile("u-b")
        await _backdated_grant("u-a", 1000, days_ago=10)
        await _grant(xp_service, "u-a", 5)
        await _grant(xp_service, "u-b", 40)

        weekly = await ranking_service.windowed_ranking(window_days=7)

        assert [(e.user_id, e.score) for e in weekly] == [("u-b", 40), ("u-a", 5)]

    async def test_wider_window_includes_older_rows(
        self, make_profile, xp_service, ranking_service
    ):
        await make_profile("u-a")
        await _backdated_grant("u-a", 70, days_ago=10)

        monthly = await ranking_service.windowed_ranking(window_days=30)

        assert [(e.user_id, e.score) for e in monthly] == [("u-a", 70)]

    async def test_invalid_window(self, database, ranking_service):
        with pytest.raises(ValidationError):
            await ranking_service.windowed_ranking(window_days=0)


@pytest.mark.integration
@pytest.mark.database
class TestRankOf:
    """Test rank_of()."""

    async def test_position_fields(self, make_profile, xp_service, ranking_service):
        # Arrange
        for user_id, amount in (("u-a", 300), ("u-b", 200), ("u-c", 120), ("u-d", 50)):
            await make_profile(user_id, user_id.upper())
            await _grant(xp_service, user_id, amount)

        # Act
        position = await ranking_service.rank_of("u-c")

        # Assert
        assert position.rank == 3
        assert position.total == 4
        assert position.percentile == 50
        assert position.score == 120
        assert position.next_user_id == "u-b"
        assert position.next_username == "U-B"
        assert position.xp_to_next_rank == 81

    async def test_leader_has_no_next_rank(self, make_profile, xp_service, ranking_service):
        await make_profile("u-a")
        await _grant(xp_service, "u-a", 10)

        position = await ranking_service.rank_of("u-a")

        assert (position.rank, position.total, position.percentile) == (1, 1, 100)
        assert position.next_user_id is None
        assert position.xp_to_next_rank is None

    async def test_unranked_user(self, make_profile, xp_service, ranking_service):
        await make_profile("u-a")
        await make_profile("u-b")
        await _grant(xp_service, "u-a", 10)

        position = await ranking_service.rank_of("u-b")

        assert position.is_ranked is False
        assert position.rank is None
        assert position.total == 1
        assert position.score == 0

    async def test_windowed_position(self, make_profile, xp_service, ranking_service):
        await make_profile("u-a")
        await make_profile("u-b")
        await _backdated_grant("u-a", 900, days_ago=20)
        await _grant(xp_service, "u-a", 10)
        await _grant(xp_service, "u-b", 30)

        position = await ranking_service.rank_of("u-a", window_days=7)

        assert position.rank == 2
        assert position.score == 10
        assert position.xp_to_next_rank == 21

    async def test_empty_cohort(self, make_profile, xp_service, ranking_service):
        await make_profile("u-a")
        await _grant(xp_service, "u-a", 10)

        position = await ranking_service.rank_of("u-a", user_ids=[])

        assert position.rank is None
        assert position.total == 0
