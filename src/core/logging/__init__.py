"""
Structured logging for Academy: a queue-backed pipeline with JSON and
console sinks, plus ``LogContext`` for binding learner/request fields.
"""

from src.core.logging.logger import (
    JSONFormatter,
    LogContext,
    clear_log_context,
    get_log_context,
    get_logger,
    get_logging_health,
    set_log_context,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "get_logger",
    "LogContext",
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    "JSONFormatter",
    "setup_logging",
    "shutdown_logging",
    "get_logging_health",
]
