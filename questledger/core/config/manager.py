"""
ConfigManager: YAML-backed gameplay tunables for questledger.

Purpose
-------
- Provide hierarchical, dot-notation access to tunable values such as the
  large-reward threshold, vault capacity curve and lobby staleness window.
- Back configuration with built-in defaults, YAML files from the config
  directory, and in-process overrides (highest precedence).

Responsibilities
----------------
- Load and deep-merge every `*.yaml` / `*.yml` file under `Config.CONFIG_DIR`
  (the `catalog/` subdirectory is skipped; it belongs to the catalog loader).
- Serve reads from an in-memory cache with hit/miss metrics.
- Allow overrides for hot balance changes and tests.

Key Design Decisions
--------------------
- YAML is the single source for **defaults**; overrides live in memory only.
- Built-in defaults guarantee every key the services read has a value even
  when no YAML is present.
- Classmethod singleton, same access pattern as `Config`.
"""

from __future__ import annotations

import copy
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, MutableMapping, Optional

import yaml

from questledger.core.config.config import Config
from questledger.core.logging.logger import get_logger

logger = get_logger(__name__)


class ConfigManagerError(RuntimeError):
    """Raised when YAML configuration cannot be loaded."""


__all__ = ["ConfigManager", "ConfigManagerError"]


_BUILTIN_DEFAULTS: Dict[str, Any] = {
    "progression": {
        "always_eligible_chapters": [1, 2],
    },
    "rewards": {
        "large_reward_threshold": 100,
        "item_aliases": {
            "captain-helmet": "captains-helmet",
        },
    },
    "vault": {
        "base_capacity": 1000,
        "capacity_per_level": 350,
        "capacity_per_level_sq": 50,
    },
    "lobby": {
        "default_max_players": 4,
        "stale_minutes": 10,
        "player_defaults": {
            "level": 1,
            "xp": 0,
            "health": 100,
            "max_health": 100,
            "shield_strength": 0,
            "max_shield_strength": 0,
        },
    },
}


@dataclass
class ConfigManagerMetrics:
    gets: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    yaml_files_loaded: int = 0
    overrides_set: int = 0
    total_get_time_ms: float = 0.0


class ConfigManager:
    """
    Dot-notation access to merged gameplay configuration.

    Examples
    --------
    >>> ConfigManager.get("lobby.stale_minutes")
    10
    >>> ConfigManager.set_override("rewards.large_reward_threshold", 50)
    """

    _defaults: Dict[str, Any] = {}
    _cache: Dict[str, Any] = {}
    _overrides: Dict[str, Any] = {}
    _initialized: bool = False
    _config_dir: Optional[Path] = None
    _metrics: ConfigManagerMetrics = ConfigManagerMetrics()

    # =========================================================================
    # YAML LOADING & DEFAULTS
    # =========================================================================

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: MutableMapping[str, Any],
    ) -> None:
        """Recursively merge `source` into `target` (in-place)."""
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                ConfigManager._deep_merge_dict(target[key], value)  # type: ignore[index]
            else:
                target[key] = copy.deepcopy(value)

    @classmethod
    def _load_yaml_configs(cls, config_dir: Path) -> None:
        """
        Load all YAML files from `config_dir` into `_defaults`.

        The catalog subdirectory is skipped. Unreadable files raise
        ConfigManagerError; a missing directory falls back to built-ins.
        """
        if not config_dir.exists():
            logger.warning(
                "Config directory not found; using built-in defaults only",
                extra={"config_dir": str(config_dir)},
            )
            return

        yaml_files = sorted(
            path
            for pattern in ("*.yaml", "*.yml")
            for path in config_dir.rglob(pattern)
            if "catalog" not in path.relative_to(config_dir).parts
        )

        for yaml_file in yaml_files:
            try:
                with yaml_file.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle)
            except (OSError, yaml.YAMLError) as exc:
                logger.error(
                    "Failed to load YAML config",
                    extra={
                        "file": str(yaml_file),
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                raise ConfigManagerError(f"Invalid config file {yaml_file}: {exc}") from exc

            if isinstance(data, dict):
                cls._deep_merge_dict(cls._defaults, data)
                cls._metrics.yaml_files_loaded += 1
                logger.debug(
                    "Loaded YAML config",
                    extra={"file": str(yaml_file.relative_to(config_dir))},
                )
            elif data is not None:
                logger.warning(
                    "Ignoring non-dict YAML root object",
                    extra={
                        "file": str(yaml_file.relative_to(config_dir)),
                        "root_type": type(data).__name__,
                    },
                )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @classmethod
    def initialize(cls, config_dir: Optional[Path] = None) -> None:
        """Load built-in defaults and YAML files. Safe to call repeatedly."""
        cls._config_dir = Path(config_dir) if config_dir else Path(Config.CONFIG_DIR)
        cls._defaults = copy.deepcopy(_BUILTIN_DEFAULTS)
        cls._load_yaml_configs(cls._config_dir)
        cls._rebuild_cache()
        cls._initialized = True

        logger.info(
            "ConfigManager initialized",
            extra={
                "config_dir": str(cls._config_dir),
                "yaml_files_loaded": cls._metrics.yaml_files_loaded,
                "top_level_keys": sorted(cls._cache.keys()),
            },
        )

    @classmethod
    def reset(cls) -> None:
        """Drop overrides, metrics and cached state."""
        cls._defaults = {}
        cls._cache = {}
        cls._overrides = {}
        cls._initialized = False
        cls._metrics = ConfigManagerMetrics()

    @classmethod
    def _rebuild_cache(cls) -> None:
        cache = copy.deepcopy(cls._defaults)
        for dotted, value in cls._overrides.items():
            node = cache
            *parents, leaf = dotted.split(".")
            for part in parents:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child
            node[leaf] = copy.deepcopy(value)
        cls._cache = cache

    # =========================================================================
    # READ / WRITE API
    # =========================================================================

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Retrieve a configuration value by dot-notation path.

        Lazily initializes from the configured directory on first access.
        """
        start_time = time.perf_counter()
        cls._metrics.gets += 1

        if not cls._initialized:
            cls.initialize()

        try:
            value: Any = cls._cache
            for part in key.split("."):
                if not isinstance(value, dict) or part not in value:
                    cls._metrics.cache_misses += 1
                    return default
                value = value[part]

            cls._metrics.cache_hits += 1
            return copy.deepcopy(value) if isinstance(value, (dict, list)) else value
        finally:
            cls._metrics.total_get_time_ms += (time.perf_counter() - start_time) * 1000

    @classmethod
    def set_override(cls, key: str, value: Any) -> None:
        """Override a single dotted key in memory."""
        if not cls._initialized:
            cls.initialize()
        cls._overrides[key] = value
        cls._metrics.overrides_set += 1
        cls._rebuild_cache()
        logger.info("Configuration override applied", extra={"config_key": key})

    @classmethod
    def clear_overrides(cls) -> None:
        cls._overrides = {}
        cls._rebuild_cache()

    @classmethod
    def get_all_keys(cls) -> List[str]:
        """Return all top-level configuration keys currently in cache."""
        if not cls._initialized:
            cls.initialize()
        return sorted(cls._cache.keys())

    @classmethod
    def get_metrics(cls) -> Dict[str, Any]:
        return asdict(cls._metrics)
