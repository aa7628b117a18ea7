"""
Academy configuration.

Two layers:

- ``Config``: process settings from the environment (and ``.env``), read at
  import. Database URL and pool, environment name, logging switches.
- ``ConfigManager``: learning-design tunables from ``config/*.yaml`` with
  dot-path reads and in-process overrides. Lab limits, ranking windows,
  level titles.

    from src.core.config import Config, ConfigManager

    url = Config.DATABASE_URL
    window_days = ConfigManager().get_int("ranking.window_days", 7)
"""

from src.core.config.config import Config, Environment
from src.core.config.manager import ConfigManager

__all__ = ["Config", "ConfigManager", "Environment"]
