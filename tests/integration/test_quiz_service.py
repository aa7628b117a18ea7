"""
Integration Tests for QuizService
==================================

Purpose
-------
Verify quiz completion persistence and the grant-once reward policy.

Test Coverage
-------------
- First completion stores the result and grants the session XP
- Retakes overwrite score/xp_earned and bump attempts without granting
- Zero-XP sessions complete without a ledger row
- submit_session() summarizes an in-memory session and persists it
- submit_session() re-scores the recorded answers; forged totals pay nothing extra
- Out-of-range scores and mismatched sessions are rejected
"""

import pytest

from src.database.models import XpSource
from src.modules.quiz import QuizDefinition, QuizSessionState, run_session
from src.modules.shared.access import Actor
from src.modules.shared.exceptions import (
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)

ALICE = Actor.student("alice")
GHOST = Actor.student("ghost")


@pytest.fixture
def networking_quiz() -> QuizDefinition:
    return QuizDefinition.from_dict(
        {
            "lesson_id": "lesson-net",
            "questions": [
                {
                    "id": "q1",
                    "question": "Which port does HTTPS use?",
                    "xp_reward": 10,
                    "options": [
                        {"text": "80"},
                        {"text": "443", "is_correct": True},
                    ],
                },
                {
                    "id": "q2",
                    "question": "Which layer is IP?",
                    "xp_reward": 15,
                    "options": [
                        {"text": "Network", "is_correct": True},
                        {"text": "Session"},
                    ],
                },
                {
                    "id": "q3",
                    "question": "Default SSH port?",
                    "xp_reward": 5,
                    "options": [
                        {"text": "21"},
                        {"text": "22", "is_correct": True},
                    ],
                },
            ],
        }
    )


@pytest.mark.integration
@pytest.mark.database
class TestCompleteQuiz:
    """Test complete_quiz()."""

    async def test_first_completion_grants_xp(
        self, make_profile, quiz_service, xp_service, recorded_events
    ):
        # Arrange
        await make_profile("alice")
        recorded_events.clear()

        # Act
        result = await quiz_service.complete_quiz("alice", "lesson-1", 3, 4, 30, actor=ALICE)

        # Assert
        assert result.first_completion is True
        assert result.xp_granted == 30
        assert result.attempts == 1
        assert await xp_service.get_ledger_total("alice", actor=ALICE) == 30
        assert recorded_events.names() == ["quiz.completed", "xp.granted"]

        history = await xp_service.get_history("alice", actor=ALICE)
        assert [(row.source, row.source_id) for row in history] == [(XpSource.QUIZ, "lesson-1")]

    async def test_retake_updates_without_granting(self, make_profile, quiz_service, xp_service):
        await make_profile("alice")
        await quiz_service.complete_quiz("alice", "lesson-1", 1, 4, 10, actor=ALICE)

        retake = await quiz_service.complete_quiz("alice", "lesson-1", 4, 4, 40, actor=ALICE)

        assert retake.first_completion is False
        assert retake.xp_granted == 0
        assert retake.grant is None
        assert retake.attempts == 2
        assert await xp_service.get_ledger_total("alice", actor=ALICE) == 10

        stored = await quiz_service.get_completion("alice", "lesson-1", actor=ALICE)
        assert (stored.score, stored.total_questions, stored.xp_earned) == (4, 4, 40)
        assert stored.xp_granted == 10
        assert stored.attempts == 2

    async def test_zero_xp_completion_has_no_ledger_row(
        self, make_profile, quiz_service, xp_service
    ):
        await make_profile("alice")

        result = await quiz_service.complete_quiz("alice", "lesson-1", 0, 5, 0, actor=ALICE)

        assert result.first_completion is True
        assert result.grant is None
        assert await xp_service.get_history("alice", actor=ALICE) == []

    async def test_score_above_total_rejected(self, make_profile, quiz_service):
        await make_profile("alice")

        with pytest.raises(ValidationError) as exc_info:
            await quiz_service.complete_quiz("alice", "lesson-1", 6, 5, 10, actor=ALICE)

        assert exc_info.value.field == "score"

    async def test_zero_questions_rejected(self, make_profile, quiz_service):
        await make_profile("alice")

        with pytest.raises(ValidationError):
            await quiz_service.complete_quiz("alice", "lesson-1", 0, 0, 0, actor=ALICE)

    async def test_unknown_profile(self, database, quiz_service):
        with pytest.raises(NotFoundError):
            await quiz_service.complete_quiz("ghost", "lesson-1", 1, 1, 5, actor=GHOST)

    async def test_get_completion_when_never_taken(self, make_profile, quiz_service):
        await make_profile("alice")

        assert await quiz_service.get_completion("alice", "lesson-1", actor=ALICE) is None


@pytest.mark.integration
@pytest.mark.database
class TestSubmitSession:
    """Test submit_session()."""

    async def test_summary_is_persisted(
        self, make_profile, quiz_service, xp_service, networking_quiz
    ):
        # Arrange
        await make_profile("alice")
        state = run_session(networking_quiz, [1, 0, 0])

        # Act
        summary = await quiz_service.submit_session("alice", networking_quiz, state, actor=ALICE)

        # Assert
        assert summary["score"] == 2
        assert summary["total_questions"] == 3
        assert summary["xp_earned"] == 25
        assert summary["passed"] is False
        assert summary["xp_granted"] == 25
        assert summary["first_completion"] is True
        assert await xp_service.get_ledger_total("alice", actor=ALICE) == 25

    async def test_perfect_retake_passes_but_grants_nothing(
        self, make_profile, quiz_service, xp_service, networking_quiz
    ):
        await make_profile("alice")
        await quiz_service.submit_session(
            "alice", networking_quiz, run_session(networking_quiz, [0, 1, 0]), actor=ALICE
        )

        summary = await quiz_service.submit_session(
            "alice", networking_quiz, run_session(networking_quiz, [1, 0, 1]), actor=ALICE
        )

        assert summary["passed"] is True
        assert summary["percentage"] == 100.0
        assert summary["xp_granted"] == 0
        assert summary["attempts"] == 2
        assert await xp_service.get_ledger_total("alice", actor=ALICE) == 0

    async def test_unfinished_session_rejected(self, make_profile, quiz_service, networking_quiz):
        await make_profile("alice")
        state = run_session(networking_quiz, [1])

        with pytest.raises(InvalidOperationError):
            await quiz_service.submit_session("alice", networking_quiz, state, actor=ALICE)

        assert await quiz_service.get_completion("alice", "lesson-net", actor=ALICE) is None

    async def test_session_from_another_quiz_rejected(
        self, make_profile, quiz_service, networking_quiz
    ):
        await make_profile("alice")
        other = QuizDefinition.from_dict(
            {
                "lesson_id": "lesson-other",
                "questions": [{"id": "q1", "options": [{"text": "a", "is_correct": True}]}],
            }
        )

        with pytest.raises(ValidationError):
            await quiz_service.submit_session(
                "alice", networking_quiz, run_session(other, [0]), actor=ALICE
            )

    async def test_forged_totals_are_rescored(
        self, make_profile, quiz_service, xp_service, networking_quiz
    ):
        # Arrange: q1 wrong, q2 and q3 right -> 2 of 3, 20 XP
        await make_profile("alice")
        honest = run_session(networking_quiz, [0, 0, 1])
        forged = QuizSessionState(
            lesson_id=honest.lesson_id,
            question_index=honest.question_index,
            answers=honest.answers,
            score=3,
            session_xp=100000,
        )

        # Act
        summary = await quiz_service.submit_session("alice", networking_quiz, forged, actor=ALICE)

        # Assert
        assert summary["score"] == 2
        assert summary["xp_earned"] == 20
        assert summary["xp_granted"] == 20
        assert await xp_service.get_ledger_total("alice", actor=ALICE) == 20

    async def test_finished_state_without_answers_rejected(
        self, make_profile, quiz_service, xp_service, networking_quiz
    ):
        await make_profile("alice")
        forged = QuizSessionState(
            lesson_id="lesson-net", question_index=3, answers=(), score=3, session_xp=100000
        )

        with pytest.raises(InvalidOperationError):
            await quiz_service.submit_session("alice", networking_quiz, forged, actor=ALICE)

        assert await quiz_service.get_completion("alice", "lesson-net", actor=ALICE) is None
        assert await xp_service.get_ledger_total("alice", actor=ALICE) == 0
