"""User configuration and the composition root.

Settings live in a YAML file (`$VALOT_CONFIG`, else
`<CONFIG_DIR>/config.yaml`). Every key is optional:

    database_path: ~/.local/share/valot/valot.db
    backup_dir: ~/Documents/valot
    log_level: WARNING
    providers:
      archive: ~/old/valot-2023.db

`VALOT_DB_PATH` overrides `database_path`. `build_registry` turns a
loaded config into a ready `ProviderRegistry` with `local` active.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from . import global_config as g
from .providers.registry import DEFAULT_PROVIDER_NAME, ProviderRegistry

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "VALOT_CONFIG"
DB_PATH_ENV_VAR = "VALOT_DB_PATH"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_KNOWN_KEYS = frozenset({"database_path", "backup_dir", "log_level", "providers"})


class ConfigError(ValueError):
    """Raised when the configuration file is unreadable or malformed."""


@dataclass
class AppConfig:
    database_path: Path = field(default_factory=lambda: g.DEFAULT_DB_PATH)
    backup_dir: Path = field(default_factory=lambda: g.BACKUP_DIR)
    log_level: str = "WARNING"
    providers: dict[str, Path] = field(default_factory=dict)
    source: Path | None = None


def config_path() -> Path:
    """Return the configuration file location."""
    override = os.environ.get(CONFIG_ENV_VAR)
    return Path(override).expanduser() if override else g.CONFIG_FILE


def _as_path(value: Any, key: str) -> Path:
    if not isinstance(value, (str, os.PathLike)) or not str(value).strip():
        raise ConfigError(f"{key} must be a non-empty path, got {value!r}")
    return Path(os.path.expandvars(str(value))).expanduser()


def _parse(data: dict[str, Any], source: Path | None) -> AppConfig:
    unknown = set(data) - _KNOWN_KEYS
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))

    config = AppConfig(source=source)
    if data.get("database_path") is not None:
        config.database_path = _as_path(data["database_path"], "database_path")
    if data.get("backup_dir") is not None:
        config.backup_dir = _as_path(data["backup_dir"], "backup_dir")
    if data.get("log_level") is not None:
        level = str(data["log_level"]).upper()
        if level not in _LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(_LOG_LEVELS)}, got {level!r}")
        config.log_level = level

    providers = data.get("providers") or {}
    if not isinstance(providers, dict):
        raise ConfigError("providers must be a mapping of name -> database path")
    for name, path in providers.items():
        if str(name) == DEFAULT_PROVIDER_NAME:
            raise ConfigError(f"Provider name {DEFAULT_PROVIDER_NAME!r} is reserved")
        config.providers[str(name)] = _as_path(path, f"providers.{name}")
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from YAML, falling back to defaults.

    Args:
        path: Explicit config file. Defaults to `config_path()`.

    Returns:
        AppConfig. A missing file gives the defaults.

    Raises:
        ConfigError: If the file cannot be read or parsed, or a value is invalid.
    """
    resolved = path or config_path()
    data: dict[str, Any] = {}
    if resolved.exists():
        try:
            with open(resolved, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Cannot read config {resolved}: {exc}") from exc
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"Config {resolved} must contain a mapping")
        data = loaded or {}
        logger.debug("Loaded config from %s", resolved)

    config = _parse(data, resolved if resolved.exists() else None)

    env_db = os.environ.get(DB_PATH_ENV_VAR)
    if env_db:
        config.database_path = _as_path(env_db, DB_PATH_ENV_VAR)
    return config


def save_config(config: AppConfig, path: Path | None = None) -> Path:
    """Write the configuration as YAML and return the file path."""
    resolved = path or config_path()
    data = {
        "database_path": str(config.database_path),
        "backup_dir": str(config.backup_dir),
        "log_level": config.log_level,
        "providers": {name: str(p) for name, p in config.providers.items()},
    }
    resolved.parent.mkdir(parents=True, exist_ok=True)
    with open(resolved, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    return resolved


def build_registry(config: AppConfig, *, activate: bool = True) -> ProviderRegistry:
    """Register `local` plus the configured providers.

    Args:
        config: Loaded configuration.
        activate: Switch to `local` before returning (initializes the database).

    Raises:
        ProviderSwitchError: If `local` cannot be opened.
    """
    registry = ProviderRegistry()
    registry.register_local_database(DEFAULT_PROVIDER_NAME, config.database_path)
    for name, path in config.providers.items():
        registry.register_local_database(name, path)
    if activate:
        registry.switch_to(DEFAULT_PROVIDER_NAME)
    return registry
