"""
ConfigManager: learning-design tunables read from YAML.

Every ``*.yaml`` / ``*.yml`` file under ``Config.CONFIG_DIR`` is loaded in
path order and deep-merged into one tree, so later files refine earlier
ones. Values are addressed with dot paths (``ranking.window_days``,
``labs.max_command_length``). In-process overrides, keyed by the full dot
path, shadow the YAML tree until ``clear_overrides()``.

Process settings such as the database URL belong to ``Config``, not here.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, MutableMapping, Optional

import yaml

from src.core.config.config import Config
from src.core.logging.logger import get_logger

logger = get_logger(__name__)

_UNSET = object()


def _yaml_files(directory: Path) -> Iterator[Path]:
    yield from sorted(
        path
        for path in directory.rglob("*")
        if path.suffix in (".yaml", ".yml") and path.is_file()
    )


def _merge_into(target: MutableMapping[str, Any], source: Mapping[str, Any]) -> None:
    for key, value in source.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _merge_into(existing, value)
        else:
            target[key] = copy.deepcopy(value)


def _lookup(tree: Mapping[str, Any], dotted: str) -> Any:
    node: Any = tree
    for part in dotted.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return _UNSET
        node = node[part]
    return node


class ConfigManager:
    """
    >>> config = ConfigManager(overrides={"ranking.window_days": 14})
    >>> config.get("ranking.window_days")
    14
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._config_dir = Path(config_dir if config_dir is not None else Config.CONFIG_DIR)
        self._tree: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = dict(overrides or {})
        self._load()

    def _load(self) -> None:
        tree: Dict[str, Any] = {}
        if not self._config_dir.is_dir():
            logger.warning(
                "Config directory missing; only code defaults apply",
                extra={"config_dir": str(self._config_dir)},
            )
            self._tree = tree
            return

        files: List[str] = []
        for path in _yaml_files(self._config_dir):
            document = yaml.safe_load(path.read_text(encoding="utf-8"))
            if document is None:
                continue
            if not isinstance(document, Mapping):
                logger.warning(
                    "Skipping YAML file whose top level is not a mapping",
                    extra={"config_file": str(path)},
                )
                continue
            _merge_into(tree, document)
            files.append(path.name)

        self._tree = tree
        logger.debug(
            "Tunables loaded",
            extra={"config_dir": str(self._config_dir), "files": files},
        )

    def reload(self) -> None:
        """Re-read the YAML files. Overrides survive."""
        self._load()
        logger.info("Tunables reloaded", extra={"override_count": len(self._overrides)})

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def get(self, key: str, default: Any = None) -> Any:
        """Override, else YAML value, else ``default`` (also for explicit nulls)."""
        if key in self._overrides:
            return self._overrides[key]
        value = _lookup(self._tree, key)
        return default if value is _UNSET or value is None else value

    def get_int(self, key: str, default: int) -> int:
        raw = self.get(key, default)
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning(
                "Tunable is not an integer; using default",
                extra={"config_key": key, "value": repr(raw), "default_value": default},
            )
            return default

    def get_all_keys(self) -> List[str]:
        """Top-level sections present in the YAML tree."""
        return sorted(self._tree)

    # ------------------------------------------------------------------ #
    # Overrides
    # ------------------------------------------------------------------ #

    def set_override(self, key: str, value: Any) -> None:
        self._overrides[key] = value
        logger.debug("Tunable overridden", extra={"config_key": key})

    def clear_overrides(self) -> None:
        self._overrides.clear()
