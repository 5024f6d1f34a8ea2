"""Configuration loading for igdmap.

Settings are layered: model defaults, then the first TOML file found, then
``IGDMAP_*`` environment variables. The merged result is validated into a
:class:`~igdmap.models.Config`.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import toml
from pydantic import ValidationError

from igdmap.exceptions import ConfigurationError
from igdmap.models import Config

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "igdmap.toml"

# Environment variable -> dotted config path
ENV_MAPPINGS: dict[str, str] = {
    # Discovery
    "IGDMAP_MULTICAST_ADDRESS": "discovery.multicast_address",
    "IGDMAP_MULTICAST_PORT": "discovery.multicast_port",
    "IGDMAP_SEARCH_TARGET": "discovery.search_target",
    "IGDMAP_ACCEPTED_SERVICES": "discovery.accepted_services",
    "IGDMAP_DISCOVERY_TIMEOUT": "discovery.timeout",
    "IGDMAP_INTERFACES": "discovery.interfaces",
    "IGDMAP_MULTICAST_TTL": "discovery.multicast_ttl",
    "IGDMAP_UNIQUE_LOCATIONS": "discovery.unique_locations",
    # HTTP
    "IGDMAP_HTTP_TIMEOUT": "http.request_timeout",
    # Mapping defaults
    "IGDMAP_MAPPING_DESCRIPTION": "mapping.description",
    "IGDMAP_MAPPING_PROTOCOL": "mapping.protocol",
    "IGDMAP_MAPPING_TTL": "mapping.ttl",
    "IGDMAP_MAPPING_PORT_SCAN": "mapping.port_scan",
    "IGDMAP_MAPPING_PORT_SCAN_TIMEOUT": "mapping.port_scan_timeout",
    "IGDMAP_INTERNAL_HOST": "mapping.internal_host",
    # Observability
    "IGDMAP_LOG_LEVEL": "observability.log_level",
    "IGDMAP_LOG_FILE": "observability.log_file",
    "IGDMAP_STRUCTURED_LOGGING": "observability.structured_logging",
}

# Comma-separated list values
LIST_PATHS = frozenset({"discovery.accepted_services", "discovery.interfaces"})

# Values that must not be coerced even when they look numeric or boolean
STRING_PATHS = frozenset(
    {
        "discovery.multicast_address",
        "discovery.search_target",
        "mapping.description",
        "mapping.internal_host",
        "observability.log_file",
    }
)

_TRUE_WORDS = frozenset({"true", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "no", "off"})


def default_search_paths() -> list[Path]:
    """Locations checked, in order, when no config file is given."""
    home = Path.home()
    return [
        Path.cwd() / CONFIG_FILENAME,
        home / ".config" / "igdmap" / CONFIG_FILENAME,
        home / f".{CONFIG_FILENAME}",
    ]


def coerce_env_value(raw: str, path: str) -> Any:
    """Convert an environment string to the type its config path expects.

    Pydantic does the final validation; this only turns list, boolean and
    numeric spellings into values TOML would have produced.
    """
    if path in LIST_PATHS:
        return [item.strip() for item in raw.split(",") if item.strip()]
    if path in STRING_PATHS:
        return raw

    word = raw.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    for number in (int, float):
        try:
            return number(raw)
        except ValueError:
            continue
    return raw


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` updated with ``override``, merging nested tables."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def env_overrides(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Collect ``IGDMAP_*`` settings into a nested config table."""
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for env_name, path in ENV_MAPPINGS.items():
        raw = environ.get(env_name)
        if raw is None:
            continue
        *sections, leaf = path.split(".")
        table = overrides
        for section in sections:
            table = table.setdefault(section, {})
        table[leaf] = coerce_env_value(raw, path)
    return overrides


class ConfigManager:
    """Loads and validates the igdmap configuration."""

    def __init__(self, config_file: str | Path | None = None):
        """Initialize configuration manager.

        Args:
            config_file: TOML file to load. If None, the default search
                paths are tried and the first existing file is used.

        Raises:
            ConfigurationError: unreadable file or invalid settings

        """
        if config_file:
            self.config_file: Path | None = Path(config_file)
        else:
            self.config_file = next((p for p in default_search_paths() if p.is_file()), None)
        self.config = self._load()

    def _read_file(self) -> dict[str, Any]:
        if self.config_file is None or not self.config_file.exists():
            return {}
        try:
            return toml.loads(self.config_file.read_text(encoding="utf-8"))
        except (OSError, toml.TomlDecodeError) as e:
            msg = f"Failed to load config file {self.config_file}: {e}"
            raise ConfigurationError(msg, {"path": str(self.config_file)}) from e

    def _load(self) -> Config:
        data = deep_merge(self._read_file(), env_overrides())
        try:
            return Config.model_validate(data)
        except ValidationError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def export(self, fmt: str = "toml") -> str:
        """Serialize the active configuration.

        Args:
            fmt: "toml" or "json"

        Raises:
            ConfigurationError: unsupported format

        """
        data = self.config.model_dump(mode="json", exclude_none=True)
        fmt = fmt.lower()
        if fmt == "toml":
            return toml.dumps(data)
        if fmt == "json":
            return json.dumps(data, indent=2)
        msg = f"Unsupported export format: {fmt}"
        raise ConfigurationError(msg)


_manager: ConfigManager | None = None


def get_config() -> Config:
    """Return the process-wide configuration, loading it on first use."""
    global _manager
    if _manager is None:
        _manager = ConfigManager()
    return _manager.config


def init_config(config_file: str | Path | None = None) -> ConfigManager:
    """(Re)load the process-wide configuration."""
    global _manager
    _manager = ConfigManager(config_file)
    logger.debug("Loaded configuration from %s", _manager.config_file or "defaults")
    return _manager


def set_config(new_config: Config) -> None:
    """Replace the process-wide configuration."""
    global _manager
    if _manager is None:
        _manager = ConfigManager()
    _manager.config = new_config


def reset_config() -> None:
    """Drop the process-wide configuration so the next access reloads it."""
    global _manager
    _manager = None
