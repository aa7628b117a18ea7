"""Domain event bus. Services get an ``EventBus`` instance injected; there is no module-level bus."""

from .bus import EventBus, matches_pattern
from .types import CallbackType, EventListener, EventPayload, ListenerPriority

__all__ = [
    "CallbackType",
    "EventBus",
    "EventListener",
    "EventPayload",
    "ListenerPriority",
    "matches_pattern",
]
