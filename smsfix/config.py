"""
Settings for the timestamp fixer.

Values come from the environment (optionally seeded from a .env file, see
env.py) and are validated once, when they are loaded. A bad value stops the
program before the watcher starts instead of producing garbage timestamps.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .logger import get_logger

OFFSET_AUTOMATIC = "automatic"
OFFSET_PHONE = "phone"
OFFSET_MANUAL = "manual"
OFFSET_METHODS = (OFFSET_AUTOMATIC, OFFSET_PHONE, OFFSET_MANUAL)

DEFAULT_MAGIC = 337
DEFAULT_DB_PATH = "data/sms.db"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Raised when a configuration value cannot be used."""
    pass


@dataclass(frozen=True)
class FixSettings:
    """User policy for how a message timestamp is adjusted."""

    offset_method: str = OFFSET_AUTOMATIC
    offset_hours: int = 0
    cdma: bool = False
    magic: int = DEFAULT_MAGIC

    def __post_init__(self):
        if not 0 <= self.magic < 1000:
            raise ConfigError(f"magic must be between 0 and 999, got {self.magic}")


@dataclass(frozen=True)
class AppConfig:
    """Everything the CLI needs to run the watcher."""

    db_path: Path
    settings: FixSettings
    log_level: str = "INFO"
    poll_interval: float = 1.0
    mark_existing: bool = True


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except (ValueError, AttributeError):
        raise ConfigError(f"Invalid configuration: {name} must be an integer, got {raw!r}")


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"Invalid configuration: {name} must be a boolean, got {raw!r}")


def _parse_level(raw: str) -> str:
    level = raw.strip().upper()
    if level not in LOG_LEVELS:
        raise ConfigError(f"Invalid configuration: SMSFIX_LOG_LEVEL must be one of {LOG_LEVELS}, got {raw!r}")
    return level


def _parse_method(raw: str) -> str:
    method = raw.strip().lower()
    if method not in OFFSET_METHODS:
        # anything that is not automatic or phone behaves as a manual offset
        get_logger().warning(
            "Unknown offset method, using manual offset",
            offset_method=raw,
        )
        return OFFSET_MANUAL
    return method


def load_settings(environ: Optional[Mapping[str, str]] = None) -> FixSettings:
    """
    Read the fix policy from environment variables.

    Args:
        environ: Mapping to read from (default: os.environ)

    Returns:
        FixSettings

    Raises:
        ConfigError: If a value is malformed
    """
    env = os.environ if environ is None else environ
    return FixSettings(
        offset_method=_parse_method(env.get("SMSFIX_OFFSET_METHOD", OFFSET_AUTOMATIC)),
        offset_hours=_parse_int("SMSFIX_OFFSET_HOURS", env.get("SMSFIX_OFFSET_HOURS", "0")),
        cdma=_parse_bool("SMSFIX_CDMA", env.get("SMSFIX_CDMA", "false")),
        magic=_parse_int("SMSFIX_MAGIC", env.get("SMSFIX_MAGIC", str(DEFAULT_MAGIC))),
    )


def load_config(environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Read the full application config, settings included."""
    env = os.environ if environ is None else environ
    raw_interval = env.get("SMSFIX_POLL_INTERVAL", "1.0")
    try:
        poll_interval = float(raw_interval)
    except ValueError:
        raise ConfigError(
            f"Invalid configuration: SMSFIX_POLL_INTERVAL must be a number, got {raw_interval!r}"
        )
    if poll_interval <= 0:
        raise ConfigError("Invalid configuration: SMSFIX_POLL_INTERVAL must be positive")

    return AppConfig(
        db_path=Path(env.get("SMSFIX_DB", DEFAULT_DB_PATH)),
        settings=load_settings(env),
        log_level=_parse_level(env.get("SMSFIX_LOG_LEVEL", "INFO")),
        poll_interval=poll_interval,
        mark_existing=_parse_bool("SMSFIX_MARK_EXISTING", env.get("SMSFIX_MARK_EXISTING", "true")),
    )
