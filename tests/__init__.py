"""
Academy Core test suite.

- tests/unit/: pure functions and mocked collaborators, no I/O
- tests/integration/: services against SQLite (aiosqlite), plus PostgreSQL
  via testcontainers for row-locking behaviour

Select with markers: ``pytest -m unit``, ``pytest -m "integration and not postgres"``.
Tests follow Arrange / Act / Assert.
"""
