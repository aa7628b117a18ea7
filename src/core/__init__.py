"""
Core infrastructure layer for Academy.

Subsystems
----------
- ``src.core.config``: static ``Config`` and YAML-backed ``ConfigManager``
- ``src.core.logging``: structured logging and ``LogContext``
- ``src.core.database``: async engine, sessions, transactions, ORM base
- ``src.core.event``: in-process ``EventBus``
- ``src.core.validation``: ``InputValidator``
- ``src.core.exceptions``: infrastructure exception hierarchy

Import submodules directly; this package performs no re-exports so that
importing one subsystem never drags in the others.
"""
