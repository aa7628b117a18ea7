"""
Error base classes for Academy.

Every Academy error carries a stable ``error_code``, structured ``details``,
an ``ErrorSeverity`` for log routing and an ``is_retryable`` flag. Two
families derive from ``AcademyError``:

- infrastructure errors (here): configuration and database failures that
  need an engineer, not a learner-facing message;
- domain errors (``src.modules.shared.exceptions``): rule violations the
  caller can act on.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def alerts(self) -> bool:
        return self in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)


class AcademyError(Exception):
    """
    Common base. Subclasses set ``severity``/``retryable`` as class
    attributes and usually build ``error_code`` from their own fields.
    """

    severity: ErrorSeverity = ErrorSeverity.ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        **details: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or type(self).__name__
        self.details: Dict[str, Any] = details

    @property
    def is_retryable(self) -> bool:
        return self.retryable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": dict(self.details),
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class AcademyInfrastructureException(AcademyError):
    """Failure of the platform itself (database, configuration)."""


class ConfigurationError(AcademyInfrastructureException):
    """A tunable is missing or has the wrong shape."""

    severity = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Bad configuration value '{config_key}': {message}",
            error_code="CONFIG_ERROR",
            config_key=config_key,
            reason=message,
        )


class DatabaseError(AcademyInfrastructureException):
    """
    A schema or maintenance operation failed at the driver level.

    Request-path failures are not wrapped; they propagate as SQLAlchemy
    errors after ``DatabaseService.get_transaction`` rolls back.
    """

    retryable = True

    def __init__(self, operation: str, original_error: Exception) -> None:
        self.operation = operation
        self.original_error = original_error
        super().__init__(
            f"{operation} failed: {original_error}",
            error_code="DATABASE_ERROR",
            operation=operation,
            error_type=type(original_error).__name__,
        )
