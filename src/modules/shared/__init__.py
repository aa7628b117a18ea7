"""
Academy Shared Module

Domain-level foundations used by every Academy module:
- Domain exceptions and error helpers
- Base service and repository patterns
- Progression constants and pure formulas
- Acting-user authorization helpers

Usage
-----
    from src.modules.shared import (
        BaseService,
        BaseRepository,
        NotFoundError,
        level_for_xp,
    )
"""

from __future__ import annotations

from .access import Actor, Role, can_act_for, ensure_can_act_for, ensure_staff
from .base_repository import BaseRepository
from .base_service import BaseService
from .exceptions import (
    AcademyDomainException,
    ConflictError,
    ErrorSeverity,
    InvalidOperationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    get_error_severity,
    is_transient_error,
    should_alert,
)
from .formulas import (
    level_for_xp,
    level_title,
    next_streak,
    progress_percent,
    xp_floor_for_level,
    xp_required_for_level,
    xp_to_next_level,
)

__all__ = [
    # Access
    "Actor",
    "Role",
    "can_act_for",
    "ensure_can_act_for",
    "ensure_staff",
    # Base patterns
    "BaseService",
    "BaseRepository",
    # Exceptions
    "AcademyDomainException",
    "ErrorSeverity",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "PermissionDeniedError",
    "InvalidOperationError",
    "is_transient_error",
    "get_error_severity",
    "should_alert",
    # Formulas
    "xp_required_for_level",
    "xp_floor_for_level",
    "level_for_xp",
    "progress_percent",
    "xp_to_next_level",
    "level_title",
    "next_streak",
]
