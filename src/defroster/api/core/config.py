"""
Configuration Management

Loads and saves the engine configuration. Settings live in a JSON file in the
user's config directory and can be overridden per process with environment
variables.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import deal

from defroster.api.core.constants import DEFAULT_FETCH_TIMEOUT_SECONDS, DEFAULT_RADIUS_MILES, MAX_RADIUS_MILES
from defroster.api.core.exceptions import InvalidConfigurationError


logger = logging.getLogger(__name__)


__all__ = [
    "ENV_OVERRIDES",
    "DefrosterConfig",
    "get_config_dir",
    "get_config_path",
    "load_config",
    "save_config",
]


@dataclass
class DefrosterConfig:
    """Runtime settings for the engine and CLI."""

    server_db_url: str
    client_db_url: str
    push_relay_url: str | None = None
    fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS
    notification_radius_miles: float = DEFAULT_RADIUS_MILES

    def validate(self) -> None:
        """Raise InvalidConfigurationError when a setting is out of range."""
        if not self.server_db_url or not self.client_db_url:
            raise InvalidConfigurationError("Both server_db_url and client_db_url are required")
        if self.fetch_timeout_seconds <= 0:
            raise InvalidConfigurationError("fetch_timeout_seconds must be positive")
        if not 0 < self.notification_radius_miles <= MAX_RADIUS_MILES:
            raise InvalidConfigurationError(f"notification_radius_miles must be in (0, {MAX_RADIUS_MILES}]")


# Environment variable -> (field name, parser)
ENV_OVERRIDES: dict[str, tuple[str, type]] = {
    "DEFROSTER_SERVER_DB_URL": ("server_db_url", str),
    "DEFROSTER_CLIENT_DB_URL": ("client_db_url", str),
    "DEFROSTER_PUSH_RELAY_URL": ("push_relay_url", str),
    "DEFROSTER_FETCH_TIMEOUT_SECONDS": ("fetch_timeout_seconds", float),
    "DEFROSTER_NOTIFICATION_RADIUS_MILES": ("notification_radius_miles", float),
}


def get_config_dir() -> Path:
    """Get the user config directory, creating it if needed."""
    config_dir = Path.home() / ".config" / "defroster"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_path() -> Path:
    """Get path to the engine config file."""
    return get_config_dir() / "config.json"


def _default_config(config_dir: Path) -> DefrosterConfig:
    return DefrosterConfig(
        server_db_url=f"sqlite+aiosqlite:///{config_dir / 'server.db'}",
        client_db_url=f"sqlite+aiosqlite:///{config_dir / 'client.db'}",
    )


def _apply_env_overrides(config: DefrosterConfig) -> None:
    for env_name, (field_name, parser) in ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None or raw == "":
            continue
        try:
            setattr(config, field_name, parser(raw))
        except ValueError as e:
            raise InvalidConfigurationError(f"{env_name}={raw!r} is not a valid {parser.__name__}") from e
        logger.debug(f"Config override from {env_name}")


def _parse_file_value(key: str, value: Any, parser: type, config_path: Path) -> Any:
    if value is None and key == "push_relay_url":
        return None
    # JSON numbers for numeric fields, strings for the rest; bool is an int subclass
    if isinstance(value, bool) or (parser is str) != isinstance(value, str):
        raise InvalidConfigurationError(f"{key} in {config_path} must be a {parser.__name__}, got {value!r}")
    try:
        return parser(value)
    except (TypeError, ValueError) as e:
        raise InvalidConfigurationError(f"{key} in {config_path} is not a valid {parser.__name__}: {value!r}") from e


@deal.post(lambda result: result is not None, message="Config must be returned")
def load_config(path: Path | None = None) -> DefrosterConfig:
    """
    Load configuration from file, falling back to defaults.

    Args:
        path: Config file to read (default: ~/.config/defroster/config.json)

    Returns:
        Validated configuration with environment overrides applied

    Raises:
        InvalidConfigurationError: If the file or an override is invalid
    """
    config_path = path or get_config_path()
    config = _default_config(config_path.parent)

    if config_path.exists():
        try:
            with config_path.open() as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise InvalidConfigurationError(f"Cannot read config file {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise InvalidConfigurationError(f"Config file {config_path} must contain a JSON object")

        parsers = {field_name: parser for field_name, parser in ENV_OVERRIDES.values()}
        for key, value in data.items():
            if key in parsers:
                setattr(config, key, _parse_file_value(key, value, parsers[key], config_path))
            else:
                logger.warning(f"Ignoring unknown config key '{key}' in {config_path}")
    else:
        logger.debug(f"No config file at {config_path}, using defaults")

    _apply_env_overrides(config)
    config.validate()
    return config


@deal.post(lambda result: result is None, message="Save must complete")
def save_config(config: DefrosterConfig, path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to persist
        path: Destination (default: ~/.config/defroster/config.json)
    """
    config.validate()
    config_path = path or get_config_path()
    with config_path.open("w") as f:
        json.dump(asdict(config), f, indent=2)

    logger.debug(f"Config saved to {config_path}")
