"""
Common plumbing for Academy domain services.

A service validates its inputs, checks the acting user, runs its writes
inside ``DatabaseService.get_transaction()`` and, once that block has
committed, publishes domain events. This base holds the injected
collaborators and the small helpers every service repeats; transactions
and sessions stay with ``DatabaseService``.

    class LabService(BaseService):
        def __init__(self, config_manager, event_bus, logger, ledger):
            super().__init__(config_manager, event_bus, logger)
            self._ledger = ledger
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from src.core.exceptions import ConfigurationError

from .access import Actor, ensure_can_act_for, ensure_staff

if TYPE_CHECKING:
    from logging import Logger

    from src.core.config.manager import ConfigManager
    from src.core.event.bus import EventBus


class BaseService:
    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger

    # -------------------------------------------------------------------------
    # Tunables
    # -------------------------------------------------------------------------

    def get_config(self, key: str, default: Optional[Any] = None) -> Any:
        return self._config.get(key, default)

    def get_int_config(self, key: str, default: int) -> int:
        """
        Integer tunable.

        Raises:
            ConfigurationError: the YAML value is not an integer
        """
        raw = self._config.get(key, default)
        if isinstance(raw, bool):
            raise ConfigurationError(key, f"Expected an integer, got {raw!r}")
        try:
            return int(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(key, f"Expected an integer, got {raw!r}") from exc

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    def authorize(self, actor: Actor, target_user_id: str, action: str) -> None:
        ensure_can_act_for(actor, target_user_id, action)

    def authorize_staff(self, actor: Actor, target_user_id: str, action: str) -> None:
        ensure_staff(actor, action)
        ensure_can_act_for(actor, target_user_id, action)

    # -------------------------------------------------------------------------
    # Events and logging
    # -------------------------------------------------------------------------

    async def emit_event(self, event_type: str, data: Dict[str, Any]) -> None:
        """Publish after commit only; listeners must never see rolled-back state."""
        await self._events.publish(event_type, dict(data))

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(
            f"{type(self).__name__}.{operation}",
            extra={"operation": operation, **context},
        )
