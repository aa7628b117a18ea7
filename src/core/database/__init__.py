"""Async engine, transactions and the declarative base for Academy models."""

from src.core.database.base import (
    Base,
    BigIntId,
    IdMixin,
    TimestampMixin,
    as_utc,
    utc_now,
)
from src.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "Base",
    "BigIntId",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
    "DatabaseService",
    "IdMixin",
    "TimestampMixin",
    "as_utc",
    "utc_now",
]
