"""
Pytest Configuration and Fixtures for Academy Core Tests
=========================================================

Purpose
-------
Centralized fixtures for the Academy test suite: database lifecycle, wired
services, event recording and mocks.

Responsibilities
----------------
- Point Config at an isolated test environment before ``src`` is imported
- SQLite (aiosqlite) database per test for fast integration tests
- PostgreSQL testcontainer for row-locking/concurrency tests
- Service construction with a real ConfigManager and EventBus
- Mock fixtures for unit tests

Architecture Notes
------------------
- Unit tests use pure functions or mocks (fast, isolated)
- Integration tests go through DatabaseService exactly like production code
- Each integration test gets a fresh database file (clean slate)
- The PostgreSQL container is session-scoped and skipped without Docker
"""

from __future__ import annotations

import os
import tempfile

# Config and logging read the environment at import time.
os.environ["ENVIRONMENT"] = "testing"
os.environ.setdefault("LOGS_DIR", tempfile.mkdtemp(prefix="academy-test-logs-"))
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Generator, List, Tuple  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from src.core.config import Config, ConfigManager  # noqa: E402
from src.core.database import DatabaseService  # noqa: E402
from src.core.event import EventBus  # noqa: E402
from src.core.logging.logger import get_logger  # noqa: E402
from src.modules.achievement import AchievementService  # noqa: E402
from src.modules.lab import LabEvaluationService  # noqa: E402
from src.modules.lesson import LessonProgressService  # noqa: E402
from src.modules.profile import ProfileService, ProfileSnapshot  # noqa: E402
from src.modules.quiz import QuizService  # noqa: E402
from src.modules.ranking import RankingService  # noqa: E402
from src.modules.xp import XpLedgerService  # noqa: E402

logger = get_logger(__name__)

RECORDED_EVENTS = (
    "profile.created",
    "profile.leveled_up",
    "xp.granted",
    "progress.reset",
    "lab.submitted",
    "lab.completed",
    "quiz.completed",
    "lesson.completed",
    "module.completed",
    "achievement.awarded",
)


# ============================================================================
# CONFIGURATION / EVENTS
# ============================================================================


@pytest.fixture
def config_manager() -> Generator[ConfigManager, None, None]:
    """ConfigManager over the repository's ``config/`` defaults."""
    manager = ConfigManager()
    yield manager
    manager.clear_overrides()


@pytest.fixture
def event_bus(config_manager: ConfigManager) -> EventBus:
    return EventBus(config_manager)


class EventRecorder:
    """Collects published (event_name, payload) pairs in publish order."""

    def __init__(self, bus: EventBus) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []
        for name in RECORDED_EVENTS:
            bus.subscribe(name, self._listener_for(name), identifier=f"recorder@{name}")

    def _listener_for(self, name: str) -> Callable[[Dict[str, Any]], Awaitable[None]]:
        async def record(payload: Dict[str, Any]) -> None:
            self.events.append((name, payload))

        return record

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def payloads(self, name: str) -> List[Dict[str, Any]]:
        return [payload for event_name, payload in self.events if event_name == name]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def recorded_events(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus)


# ============================================================================
# DATABASE FIXTURES (Integration Tests)
# ============================================================================


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch) -> AsyncGenerator[type, None]:
    """
    Fresh SQLite database behind DatabaseService.

    Scope: function (new database file per test, clean slate)
    """
    monkeypatch.setattr(
        Config, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'academy.db'}"
    )
    await DatabaseService.initialize()
    await DatabaseService.create_schema()

    yield DatabaseService

    await DatabaseService.shutdown()


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """
    Start PostgreSQL testcontainer for row-locking tests.

    Scope: session (container persists across all tests)
    Skipped when Docker is not available.
    """
    from testcontainers.postgres import PostgresContainer

    logger.info("Starting PostgreSQL testcontainer...")
    try:
        container = PostgresContainer(image="postgres:17-alpine", driver="asyncpg")
        container.start()
    except Exception as exc:  # docker missing or daemon unreachable
        pytest.skip(f"PostgreSQL testcontainer unavailable: {exc}")

    yield container

    logger.info("Stopping PostgreSQL testcontainer...")
    container.stop()


@pytest_asyncio.fixture
async def postgres_database(postgres_container, monkeypatch) -> AsyncGenerator[type, None]:
    """DatabaseService bound to the PostgreSQL container with a fresh schema."""
    monkeypatch.setattr(Config, "DATABASE_URL", postgres_container.get_connection_url())
    await DatabaseService.initialize()
    await DatabaseService.drop_schema()
    await DatabaseService.create_schema()

    yield DatabaseService

    await DatabaseService.drop_schema()
    await DatabaseService.shutdown()


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def profile_service(config_manager, event_bus) -> ProfileService:
    return ProfileService(config_manager, event_bus, get_logger("tests.profile"))


@pytest.fixture
def xp_service(config_manager, event_bus) -> XpLedgerService:
    return XpLedgerService(config_manager, event_bus, get_logger("tests.xp"))


@pytest.fixture
def lab_service(config_manager, event_bus) -> LabEvaluationService:
    return LabEvaluationService(config_manager, event_bus, get_logger("tests.lab"))


@pytest.fixture
def quiz_service(config_manager, event_bus) -> QuizService:
    return QuizService(config_manager, event_bus, get_logger("tests.quiz"))


@pytest.fixture
def lesson_service(config_manager, event_bus) -> LessonProgressService:
    return LessonProgressService(config_manager, event_bus, get_logger("tests.lesson"))


@pytest.fixture
def achievement_service(config_manager, event_bus) -> AchievementService:
    return AchievementService(config_manager, event_bus, get_logger("tests.achievement"))


@pytest.fixture
def ranking_service(config_manager, event_bus) -> RankingService:
    return RankingService(config_manager, event_bus, get_logger("tests.ranking"))


@pytest.fixture
def make_profile(
    database, profile_service: ProfileService
) -> Callable[..., Awaitable[ProfileSnapshot]]:
    """
    Factory creating learner profiles.

    Usage:
        alice = await make_profile("alice")
    """

    async def _make(user_id: str, username: str | None = None) -> ProfileSnapshot:
        return await profile_service.create_profile(user_id, username or user_id.title())

    return _make


# ============================================================================
# MOCK FIXTURES (Unit Tests)
# ============================================================================


@pytest.fixture
def mock_event_bus(mocker):
    """
    Mock EventBus for unit tests.

    Scope: function
    Uses: Unit tests that need to assert on event publishing
    """
    mock_bus = mocker.MagicMock()
    mock_bus.publish = mocker.AsyncMock(return_value=[])
    mock_bus.subscribe = mocker.MagicMock()
    return mock_bus


@pytest.fixture
def mock_config_manager(mocker):
    """
    Mock ConfigManager for unit tests.

    Scope: function
    Uses: Unit tests that need canned configuration values
    """
    mock_config = mocker.MagicMock()
    mock_config.get = mocker.MagicMock(side_effect=lambda key, default=None: default)
    mock_config.get_int = mocker.MagicMock(side_effect=lambda key, default: default)
    return mock_config
