"""
Acting-user authorization checks.

The core never authenticates; callers hand it an already-verified ``Actor``.
These helpers only answer "may this actor act for that user?", using the
pre-resolved cohort the caller supplies. Tenant hierarchy is resolved
elsewhere.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Optional

from .exceptions import PermissionDeniedError


class Role(str, Enum):
    STUDENT = "student"
    ADMIN = "admin"
    MASTER = "master"


@dataclass(frozen=True)
class Actor:
    """
    The authenticated caller.

    ``cohort`` lists the user ids an admin (or scoped master) may manage.
    ``None`` means "no cohort supplied", which only a master can use to act
    globally.
    """

    user_id: str
    role: Role = Role.STUDENT
    cohort: Optional[FrozenSet[str]] = None

    @classmethod
    def student(cls, user_id: str) -> "Actor":
        return cls(user_id=user_id, role=Role.STUDENT)

    @classmethod
    def staff(
        cls,
        user_id: str,
        role: Role = Role.ADMIN,
        cohort: Optional[Iterable[str]] = None,
    ) -> "Actor":
        return cls(
            user_id=user_id,
            role=role,
            cohort=frozenset(cohort) if cohort is not None else None,
        )

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.ADMIN, Role.MASTER)


def can_act_for(actor: Actor, target_user_id: str) -> bool:
    if actor.user_id == target_user_id:
        return True
    if actor.role is Role.STUDENT:
        return False
    if actor.role is Role.MASTER and actor.cohort is None:
        return True
    return actor.cohort is not None and target_user_id in actor.cohort


def ensure_can_act_for(actor: Optional[Actor], target_user_id: str, action: str) -> None:
    """
    Raise PermissionDeniedError unless ``actor`` may act for ``target_user_id``.

    Students act only for themselves. Admins act for their cohort. Masters
    act for anyone unless a cohort narrows them. A missing actor is always
    denied.
    """
    if actor is None:
        raise PermissionDeniedError(action, "no acting user supplied")
    if not can_act_for(actor, target_user_id):
        raise PermissionDeniedError(
            action,
            f"user {actor.user_id} ({actor.role.value}) cannot act for {target_user_id}",
        )


def ensure_staff(actor: Optional[Actor], action: str) -> None:
    """Administrative operations require an admin or master actor."""
    if actor is None or not actor.is_staff:
        raise PermissionDeniedError(action, "administrative operation requires staff role")
