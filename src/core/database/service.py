"""
Database Service (Academy)

Purpose
-------
Own the single async engine and hand out sessions. Every service write goes
through ``get_transaction()``, which commits on a clean exit and rolls back
on any exception, so a grant, its ledger row and its completion flag are
persisted together or not at all.

Engine settings
---------------
Read once from ``Config`` at ``initialize()``:

- ``DATABASE_URL`` (required). ``postgresql+asyncpg://`` in production,
  ``sqlite+aiosqlite://`` for local runs and the test suite.
- ``DATABASE_POOL_SIZE`` / ``DATABASE_MAX_OVERFLOW`` / ``DATABASE_POOL_RECYCLE``
  / ``DATABASE_POOL_TIMEOUT`` for the PostgreSQL pool. SQLite and the
  ``testing`` environment use ``NullPool``.
- ``DATABASE_STATEMENT_TIMEOUT_MS``, applied per transaction on PostgreSQL
  with ``SET LOCAL``.
- ``DATABASE_ECHO`` for SQL echo.

Locking
-------
Services lock the learner's profile row (``SELECT ... FOR UPDATE``) before
touching any of that learner's progress rows. SQLite ignores ``FOR UPDATE``
and serializes writers on its own.

Usage
-----
    async with DatabaseService.get_transaction() as session:
        profile = await session.get(Profile, pk, with_for_update=True)
        profile.streak_days = 0
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, QueuePool

from src.core.config.config import Config
from src.core.database.base import Base
from src.core.exceptions import DatabaseError
from src.core.logging.logger import get_logger
from src.modules.shared.exceptions import AcademyDomainException

logger = get_logger(__name__)


class DatabaseInitializationError(RuntimeError):
    """DATABASE_URL is missing or the engine could not be created."""


class DatabaseNotInitializedError(RuntimeError):
    """A session was requested before ``initialize()`` or after ``shutdown()``."""


@dataclass(frozen=True)
class _EngineSettings:
    url: str
    echo: bool
    pooled: bool
    pool_size: int
    max_overflow: int
    pool_recycle: int
    pool_timeout: int
    statement_timeout_ms: int

    @classmethod
    def from_config(cls) -> "_EngineSettings":
        url = getattr(Config, "DATABASE_URL", None)
        if not isinstance(url, str) or not url:
            raise DatabaseInitializationError("DATABASE_URL must be a non-empty string")

        return cls(
            url=url,
            echo=bool(Config.DATABASE_ECHO),
            pooled=not (Config.is_testing() or url.startswith("sqlite")),
            pool_size=int(Config.DATABASE_POOL_SIZE),
            max_overflow=int(Config.DATABASE_MAX_OVERFLOW),
            pool_recycle=int(Config.DATABASE_POOL_RECYCLE),
            pool_timeout=int(Config.DATABASE_POOL_TIMEOUT),
            statement_timeout_ms=int(Config.DATABASE_STATEMENT_TIMEOUT_MS),
        )

    @property
    def dialect(self) -> str:
        return self.url.split(":", 1)[0].split("+", 1)[0]

    @property
    def is_postgres(self) -> bool:
        return self.dialect in ("postgresql", "postgres")

    def engine_kwargs(self) -> Dict[str, Any]:
        if not self.pooled:
            return {"echo": self.echo, "poolclass": NullPool}
        return {
            "echo": self.echo,
            "poolclass": QueuePool,
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_recycle": self.pool_recycle,
            "pool_timeout": self.pool_timeout,
            "pool_pre_ping": True,
        }


class DatabaseService:
    """
    Process-wide engine holder.

    Public API
    ----------
    - initialize() / shutdown() / is_initialized()
    - create_schema() / drop_schema()
    - get_session() -> reads
    - get_transaction() -> writes (commit/rollback handled here)
    - health_check()
    """

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    _settings: Optional[_EngineSettings] = None
    _init_lock: asyncio.Lock = asyncio.Lock()

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @classmethod
    async def initialize(cls) -> None:
        """
        Create the engine and session factory. Safe to call repeatedly.

        Raises:
            DatabaseInitializationError: bad DATABASE_URL or engine failure
        """
        async with cls._init_lock:
            if cls._engine is not None:
                return

            try:
                settings = _EngineSettings.from_config()
                engine = create_async_engine(settings.url, **settings.engine_kwargs())
            except DatabaseInitializationError:
                logger.error("DATABASE_URL is not configured")
                raise
            except Exception as exc:
                logger.error(
                    "Database engine creation failed",
                    extra={"error_type": type(exc).__name__, "error": str(exc)},
                    exc_info=True,
                )
                raise DatabaseInitializationError(f"Engine creation failed: {exc}") from exc

            cls._engine = engine
            cls._session_factory = async_sessionmaker(engine, expire_on_commit=False)
            cls._settings = settings

            logger.info(
                "DatabaseService initialized",
                extra={"dialect": settings.dialect, "pooled": settings.pooled},
            )

    @classmethod
    async def shutdown(cls) -> None:
        """Dispose the engine. A no-op when not initialized."""
        async with cls._init_lock:
            engine = cls._engine
            if engine is None:
                return

            cls._engine = None
            cls._session_factory = None
            cls._settings = None

            await engine.dispose()
            logger.info("DatabaseService shut down")

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._engine is not None

    # ========================================================================
    # Schema
    # ========================================================================

    @classmethod
    async def create_schema(cls) -> None:
        await cls._run_metadata("create_schema", Base.metadata.create_all)

    @classmethod
    async def drop_schema(cls) -> None:
        await cls._run_metadata("drop_schema", Base.metadata.drop_all)

    @classmethod
    async def _run_metadata(cls, operation: str, action: Any) -> None:
        engine = cls._require_engine()

        # Models register their tables on Base.metadata when imported.
        import src.database.models  # noqa: F401

        try:
            async with engine.begin() as conn:
                await conn.run_sync(action)
        except SQLAlchemyError as exc:
            raise DatabaseError(operation, exc) from exc

        logger.info(
            f"Schema {operation} complete",
            extra={"operation": operation, "table_count": len(Base.metadata.tables)},
        )

    # ========================================================================
    # Health
    # ========================================================================

    @classmethod
    async def health_check(cls) -> bool:
        """``SELECT 1``; False when uninitialized or unreachable."""
        engine = cls._engine
        if engine is None:
            return False

        start = time.perf_counter()
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (OperationalError, DBAPIError) as exc:
            logger.warning(
                "Database health check failed",
                extra={"error_type": type(exc).__name__, "error": str(exc)},
            )
            return False

        logger.debug(
            "Database health check passed",
            extra={"duration_ms": round((time.perf_counter() - start) * 1000.0, 2)},
        )
        return True

    # ========================================================================
    # Sessions
    # ========================================================================

    @classmethod
    def _require_engine(cls) -> AsyncEngine:
        if cls._engine is None:
            raise DatabaseNotInitializedError(
                "DatabaseService.initialize() must run before the database is used"
            )
        return cls._engine

    @classmethod
    def _new_session(cls) -> AsyncSession:
        cls._require_engine()
        assert cls._session_factory is not None
        return cls._session_factory()

    @classmethod
    async def _apply_statement_timeout(cls, session: AsyncSession) -> None:
        settings = cls._settings
        if settings is not None and settings.is_postgres:
            await session.execute(
                text(f"SET LOCAL statement_timeout = {settings.statement_timeout_ms}")
            )

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Session for reads. Nothing is committed; maintenance code may still
        call ``session.commit()`` explicitly.

        Raises:
            DatabaseNotInitializedError: called before initialize()
        """
        async with cls._new_session() as session:
            await cls._apply_statement_timeout(session)
            yield session

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Session wrapped in one atomic transaction.

        Commits when the block exits normally. On an exception the
        transaction is rolled back and the exception re-raised: domain
        rejections are logged at INFO, anything else at ERROR with a
        traceback.

        Raises:
            DatabaseNotInitializedError: called before initialize()
        """
        start = time.perf_counter()
        async with cls._new_session() as session:
            try:
                await cls._apply_statement_timeout(session)
                yield session
                await session.commit()
            except AcademyDomainException as exc:
                await session.rollback()
                logger.info(
                    "Transaction rolled back: domain rejection",
                    extra={"error_code": exc.error_code, "error_type": type(exc).__name__},
                )
                raise
            except Exception as exc:
                await session.rollback()
                logger.error(
                    "Transaction rolled back: unexpected error",
                    extra={"error_type": type(exc).__name__, "error": str(exc)},
                    exc_info=True,
                )
                raise
            finally:
                logger.debug(
                    "Transaction finished",
                    extra={"duration_ms": round((time.perf_counter() - start) * 1000.0, 2)},
                )
