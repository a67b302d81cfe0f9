"""
Turntable client configuration system.

Priority order (highest to lowest):
1. Command-line arguments
2. Environment variables
3. Configuration file (YAML)
4. Default values
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)


DEFAULT_HOST = "chat1.turntable.fm"

# Valid log levels
VALID_LOG_LEVELS = {"debug", "info", "warning", "error"}

# Environment variable mappings
ENV_MAPPINGS = {
    # Account and room
    "TURNTABLE_HOST": ("turntable", "host"),
    "TURNTABLE_USER_ID": ("turntable", "user_id"),
    "TURNTABLE_USER_AUTH": ("turntable", "user_auth"),
    "TURNTABLE_ROOM_ID": ("turntable", "room_id"),
    # Session
    "TURNTABLE_PRESENCE_INTERVAL": ("session", "presence_interval"),
    # Logging
    "TURNTABLE_LOG_LEVEL": ("logging", "level"),
    "TURNTABLE_DEBUG": ("logging", "debug"),
}

_FLOAT_ENV_VARS = {"TURNTABLE_PRESENCE_INTERVAL"}
_BOOL_ENV_VARS = {"TURNTABLE_DEBUG"}


class ConfigError(Exception):
    """Configuration error."""

    pass


@dataclass
class TurntableConfig:
    """Account and room configuration."""

    host: str = DEFAULT_HOST
    user_id: str = ""
    user_auth: str = ""
    room_id: str = ""


@dataclass
class SessionConfig:
    """Session keep-alive configuration."""

    presence_interval: float = 10.0  # seconds


@dataclass
class SearchConfig:
    """Song search wait configuration."""

    timeout: float = 5.0  # seconds
    poll_interval: float = 0.1  # seconds


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    debug: bool = False  # Trace raw frames


@dataclass
class Config:
    """Complete client configuration."""

    turntable: TurntableConfig = field(default_factory=TurntableConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def validate_config(config: Config) -> None:
    """
    Validate configuration.

    Raises:
        ConfigError: If configuration is invalid
    """
    errors = []

    # Account
    if not config.turntable.host:
        errors.append("Turntable host is required")
    if not config.turntable.user_id:
        errors.append("Turntable user_id is required")
    if not config.turntable.user_auth:
        errors.append("Turntable user_auth is required")
    if not config.turntable.room_id:
        errors.append("Turntable room_id is required")

    # Timing
    if config.session.presence_interval <= 0:
        errors.append(f"Invalid presence_interval: {config.session.presence_interval}")
    if config.search.timeout <= 0:
        errors.append(f"Invalid search timeout: {config.search.timeout}")
    if config.search.poll_interval <= 0:
        errors.append(f"Invalid search poll_interval: {config.search.poll_interval}")

    # Logging
    if config.logging.level.lower() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid log level: {config.logging.level}. "
            f"Valid values: {sorted(VALID_LOG_LEVELS)}"
        )

    if errors:
        raise ConfigError("Configuration validation failed:\n  - " + "\n  - ".join(errors))


def load_yaml_config(path: Path) -> dict:
    """
    Load configuration from YAML file.

    Args:
        path: Path to YAML file

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    if not path.exists():
        logger.debug(f"Config file not found: {path}")
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
            return data if data else {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML config: {e}")
    except IOError as e:
        raise ConfigError(f"Error reading config file: {e}")


def _set_nested(d: dict, path: tuple, value: Any) -> None:
    """Set a nested dictionary value using a path tuple."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def load_env_config() -> dict:
    """
    Load configuration from environment variables.

    Returns:
        Configuration dictionary with values from environment
    """
    result: dict = {}

    for env_var, path in ENV_MAPPINGS.items():
        value: Any = os.environ.get(env_var)
        if value is None:
            continue

        if env_var in _FLOAT_ENV_VARS:
            try:
                value = float(value)
            except ValueError:
                logger.warning(f"Invalid number for {env_var}: {value}")
                continue
        elif env_var in _BOOL_ENV_VARS:
            value = value.lower() in ("true", "1", "yes", "on")

        _set_nested(result, path, value)

    return result


def _deep_merge(base: dict, override: dict) -> None:
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def merge_configs(*configs: dict) -> dict:
    """
    Deep merge multiple configuration dictionaries.
    Later configs override earlier ones.
    """
    result: dict = {}
    for config in configs:
        _deep_merge(result, config)
    return result


def dict_to_config(d: dict) -> Config:
    """Convert a dictionary to Config dataclass."""
    config = Config()

    if "turntable" in d:
        t = d["turntable"]
        config.turntable.host = t.get("host", config.turntable.host)
        config.turntable.user_id = str(t.get("user_id", config.turntable.user_id))
        config.turntable.user_auth = str(t.get("user_auth", config.turntable.user_auth))
        config.turntable.room_id = str(t.get("room_id", config.turntable.room_id))

    if "session" in d:
        s = d["session"]
        config.session.presence_interval = float(
            s.get("presence_interval", config.session.presence_interval)
        )

    if "search" in d:
        s = d["search"]
        config.search.timeout = float(s.get("timeout", config.search.timeout))
        config.search.poll_interval = float(s.get("poll_interval", config.search.poll_interval))

    if "logging" in d:
        lg = d["logging"]
        config.logging.level = lg.get("level", config.logging.level)
        config.logging.debug = bool(lg.get("debug", config.logging.debug))

    return config


def load_config(
    config_path: Optional[Path] = None,
    cli_args: Optional[dict] = None,
) -> Config:
    """
    Load configuration from all sources.

    Args:
        config_path: Path to YAML config file
        cli_args: Dictionary of CLI arguments

    Returns:
        Merged Config object

    Raises:
        ConfigError: If configuration is invalid
    """
    configs = []

    if config_path:
        file_config = load_yaml_config(config_path)
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {config_path}")

    env_config = load_env_config()
    if env_config:
        configs.append(env_config)
        logger.debug("Loaded config from environment variables")

    if cli_args:
        configs.append(cli_args)
        logger.debug("Loaded config from CLI arguments")

    merged = merge_configs(*configs) if configs else {}

    # Convert to Config object (fills in defaults)
    try:
        config = dict_to_config(merged)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")

    validate_config(config)

    return config
