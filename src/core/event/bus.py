"""
In-process publish/subscribe for Academy domain events.

Services publish facts such as ``xp.granted`` or ``lab.completed`` once their
transaction has committed. Listeners (achievement evaluation, notifications,
analytics) subscribe to an exact name or to a ``*`` pattern such as ``xp.*``
or ``*.completed``.

Dispatch order for one publish:

1. CRITICAL listeners, one at a time, each bounded by
   ``core.event.listener_timeout.critical_seconds``;
2. HIGH listeners, the same way, bounded by ``...high_seconds``;
3. NORMAL listeners, concurrently;
4. LOW listeners, scheduled as background tasks and not awaited.

A listener that raises or times out is logged and contributes ``None``.
The publisher never sees listener failures.
"""

from __future__ import annotations

import asyncio
import inspect
import re
from functools import lru_cache
from typing import Any, Optional

from src.core.config.manager import ConfigManager
from src.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
    describe_callback,
)
from src.core.logging.logger import LogContext, get_logger

logger = get_logger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 5.0


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


def matches_pattern(event_name: str, pattern: str) -> bool:
    """
    ``*`` matches any run of characters, dots included.

    >>> matches_pattern("xp.granted", "xp.*")
    True
    >>> matches_pattern("lab.completed", "*.completed")
    True
    """
    if "*" not in pattern:
        return event_name == pattern
    return _compile(pattern).fullmatch(event_name) is not None


class EventBus:
    """
    One bus per application; services receive it through their constructor.

    Meant for a single event loop. The registry is only mutated between
    awaits, so it needs no lock.
    """

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        *,
        critical_timeout_seconds: Optional[float] = None,
        high_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._config_manager = config_manager
        # pattern (exact name or wildcard) -> listeners in dispatch order
        self._registry: dict[str, list[EventListener]] = {}
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._timeouts = {
            ListenerPriority.CRITICAL: self._timeout_setting("critical", critical_timeout_seconds),
            ListenerPriority.HIGH: self._timeout_setting("high", high_timeout_seconds),
        }

    def _timeout_setting(self, tier: str, explicit: Optional[float]) -> float:
        if explicit is not None:
            return float(explicit)
        if self._config_manager is None:
            return _DEFAULT_TIMEOUT_SECONDS

        key = f"core.event.listener_timeout.{tier}_seconds"
        raw = self._config_manager.get(key, _DEFAULT_TIMEOUT_SECONDS)
        try:
            return float(raw)
        except (TypeError, ValueError):
            logger.warning(
                "Listener timeout is not a number; using default",
                extra={"config_key": key, "value": repr(raw)},
            )
            return _DEFAULT_TIMEOUT_SECONDS

    # ------------------------------------------------------------------ #
    # Registry
    # ------------------------------------------------------------------ #

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
        allow_duplicates: bool = False,
    ) -> str:
        """
        Register ``callback`` for an exact name or ``*`` pattern.

        Returns the listener identifier. Re-registering an identifier on the
        same pattern is a no-op unless ``allow_duplicates`` is set.

        Raises:
            ValueError: ``callback`` does not take exactly one argument
        """
        _check_arity(callback)
        listener = EventListener(
            callback=callback,
            priority=priority,
            identifier=identifier or describe_callback(callback, event_name),
            once=once,
        )

        bucket = self._registry.setdefault(event_name, [])
        if not allow_duplicates and any(lst.identifier == listener.identifier for lst in bucket):
            logger.warning(
                "Listener already subscribed",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )
            return listener.identifier

        bucket.append(listener)
        bucket.sort(key=lambda lst: lst.order)
        logger.debug(
            "Listener subscribed",
            extra={
                "event_name": event_name,
                "listener_id": listener.identifier,
                "priority": priority.name,
                "once": once,
            },
        )
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        bucket = self._registry.get(event_name, [])
        kept = [lst for lst in bucket if lst.identifier != identifier]
        if len(kept) == len(bucket):
            return False

        if kept:
            self._registry[event_name] = kept
        else:
            del self._registry[event_name]
        logger.debug(
            "Listener unsubscribed",
            extra={"event_name": event_name, "listener_id": identifier},
        )
        return True

    def clear(self) -> None:
        count = self.get_listener_count()
        self._registry.clear()
        logger.info("EventBus cleared", extra={"previous_listener_count": count})

    def _take_listeners(self, event_name: str) -> list[EventListener]:
        """Matching listeners in dispatch order; one-shot ones leave the registry."""
        matched: list[EventListener] = []
        for pattern in list(self._registry):
            if not matches_pattern(event_name, pattern):
                continue
            bucket = self._registry[pattern]
            matched.extend(bucket)
            remaining = [lst for lst in bucket if not lst.once]
            if remaining:
                self._registry[pattern] = remaining
            else:
                del self._registry[pattern]
        return sorted(matched, key=lambda lst: lst.order)

    # ------------------------------------------------------------------ #
    # Publishing
    # ------------------------------------------------------------------ #

    async def publish(self, event_name: str, data: EventPayload) -> list[Any]:
        """
        Deliver ``data`` to every matching listener.

        Returns the CRITICAL, HIGH and NORMAL results in that order. LOW
        listeners contribute nothing; await ``drain()`` to wait for them.
        """
        listeners = self._take_listeners(event_name)
        logger.debug(
            "Publishing event",
            extra={
                "event_name": event_name,
                "listener_count": len(listeners),
                "payload_keys": sorted(data),
            },
        )
        if not listeners:
            return []

        with LogContext(event_name=event_name):
            return await self._dispatch(event_name, data, listeners)

    async def _dispatch(
        self, event_name: str, data: EventPayload, listeners: list[EventListener]
    ) -> list[Any]:
        results: list[Any] = []
        concurrent: list[EventListener] = []

        for listener in listeners:
            if listener.priority.sequential:
                results.append(await self._invoke_bounded(listener, event_name, data))
            elif listener.priority is ListenerPriority.NORMAL:
                concurrent.append(listener)
            else:
                self._spawn(listener, event_name, data)

        if concurrent:
            results.extend(
                await asyncio.gather(*(self._invoke(lst, event_name, data) for lst in concurrent))
            )
        return results

    def _spawn(self, listener: EventListener, event_name: str, data: EventPayload) -> None:
        task = asyncio.get_running_loop().create_task(
            self._invoke(listener, event_name, data),
            name=f"event:{event_name}:{listener.identifier}",
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _invoke_bounded(
        self, listener: EventListener, event_name: str, data: EventPayload
    ) -> Any:
        timeout = self._timeouts[listener.priority]
        if timeout <= 0:
            return await self._invoke(listener, event_name, data)
        try:
            return await asyncio.wait_for(self._invoke(listener, event_name, data), timeout)
        except asyncio.TimeoutError:
            logger.error(
                "Listener timed out",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "timeout_seconds": timeout,
                },
            )
            return None

    async def _invoke(self, listener: EventListener, event_name: str, data: EventPayload) -> Any:
        """Run one listener; plain functions run on the default executor."""
        try:
            if inspect.iscoroutinefunction(listener.callback):
                return await listener.callback(data)
            return await asyncio.get_running_loop().run_in_executor(
                None, listener.callback, data
            )
        except Exception as exc:
            logger.error(
                "Listener failed",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
                exc_info=True,
            )
            return None

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        """All listeners, or those a publish of ``event_name`` would reach."""
        return sum(
            len(bucket)
            for pattern, bucket in self._registry.items()
            if event_name is None or matches_pattern(event_name, pattern)
        )

    def get_all_events(self) -> list[str]:
        return sorted(self._registry)

    def get_background_task_count(self) -> int:
        return len(self._background_tasks)

    async def drain(self) -> None:
        """Wait for scheduled LOW listeners."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)


def _check_arity(callback: CallbackType) -> None:
    try:
        params = inspect.signature(callback).parameters
    except (TypeError, ValueError):
        return
    if len(params) != 1:
        name = getattr(callback, "__qualname__", None) or repr(callback)
        raise ValueError(
            f"Listener '{name}' must take exactly one payload argument, takes {len(params)}"
        )
