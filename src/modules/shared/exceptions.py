"""
Domain errors raised by Academy services.

Services raise these for caller mistakes and rule violations; nothing here
means the platform is broken. ``DatabaseService.get_transaction`` rolls back
and logs them at INFO instead of ERROR.

``ConflictError`` is internal plumbing: a writer lost the race to create a
guarded row (lab attempt, quiz completion, earned achievement). Services
catch it and replay the operation once, which then sees the winner's row.
"""

from __future__ import annotations

from typing import Any, Optional

from src.core.exceptions import AcademyError, ErrorSeverity

__all__ = [
    "AcademyDomainException",
    "ConflictError",
    "ErrorSeverity",
    "InvalidOperationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ValidationError",
    "get_error_severity",
    "is_transient_error",
    "should_alert",
]


def _code(text: str) -> str:
    return text.upper().replace("-", "_").replace(" ", "_")


class AcademyDomainException(AcademyError):
    """Base for every caller-facing Academy error."""

    severity = ErrorSeverity.INFO


class ValidationError(AcademyDomainException):
    """Input rejected before any write took place."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"{field}: {message}",
            error_code=f"VALIDATION_{_code(field)}",
            field=field,
            validation_message=message,
        )


class NotFoundError(AcademyDomainException):
    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier
        suffix = f" '{identifier}'" if identifier is not None else ""
        super().__init__(
            f"No {resource_type}{suffix}",
            error_code=f"{_code(resource_type)}_NOT_FOUND",
            resource_type=resource_type,
            identifier=identifier,
        )


class ConflictError(AcademyDomainException):
    """A concurrent writer created the guarded row first."""

    severity = ErrorSeverity.DEBUG
    retryable = True

    def __init__(self, resource: str, identifier: Any, reason: str) -> None:
        self.resource = resource
        self.identifier = identifier
        self.reason = reason
        super().__init__(
            f"{resource} {identifier}: {reason}",
            error_code=f"{_code(resource)}_CONFLICT",
            resource=resource,
            identifier=identifier,
        )


class PermissionDeniedError(AcademyDomainException):
    """The actor may not perform ``action`` for the target learner."""

    severity = ErrorSeverity.WARNING

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"{action} denied: {reason}",
            error_code="PERMISSION_DENIED",
            action=action,
            reason=reason,
        )


class InvalidOperationError(AcademyDomainException):
    """
    Valid input, wrong moment: e.g. summarizing a quiz session that still
    has unanswered questions.
    """

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"Cannot {action}: {reason}",
            error_code=f"INVALID_{_code(action)}",
            action=action,
            reason=reason,
        )


def is_transient_error(exc: Exception) -> bool:
    return isinstance(exc, AcademyError) and exc.is_retryable


def get_error_severity(exc: Exception) -> ErrorSeverity:
    """Severity for log routing; foreign exceptions count as ERROR."""
    return exc.severity if isinstance(exc, AcademyError) else ErrorSeverity.ERROR


def should_alert(exc: Exception) -> bool:
    return get_error_severity(exc).alerts
