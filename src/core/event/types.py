"""Listener records and priorities for the Academy EventBus."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Union

EventPayload = dict[str, Any]

CallbackType = Union[
    Callable[[EventPayload], Any],
    Callable[[EventPayload], Awaitable[Any]],
]


class ListenerPriority(Enum):
    """
    Dispatch tier. Lower values run first.

    CRITICAL and HIGH listeners are awaited one at a time under a timeout,
    NORMAL listeners are awaited together, LOW listeners are not awaited.
    """

    CRITICAL = 0
    HIGH = 10
    NORMAL = 50
    LOW = 100

    @property
    def sequential(self) -> bool:
        return self.value < ListenerPriority.NORMAL.value


def describe_callback(callback: CallbackType, event_name: str) -> str:
    """``module.qualname@event``, the identifier used when none is supplied."""
    module = getattr(callback, "__module__", None) or "unknown"
    name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", "callback")
    return f"{module}.{name}@{event_name}"


@dataclass(slots=True, frozen=True)
class EventListener:
    callback: CallbackType
    priority: ListenerPriority
    identifier: str
    # Removed from the registry before its first run.
    once: bool = False

    @property
    def order(self) -> tuple[int, str]:
        return (self.priority.value, self.identifier)
