"""
VeraBot - Configuration Module
==============================

Centralized configuration management with environment variable validation.

DESIGN:
    Single source of truth for all settings, loaded from environment
    variables at startup (main.py loads .env first).

    Key patterns:
    - Singleton via get_config() ensures one Config instance
    - Validation happens once at load time, not on every access
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from verabot.core.constants import (
    DB_IDLE_TIMEOUT,
    MAX_GUILD_CONNECTIONS,
    REMINDER_CHECK_INTERVAL,
    SQLITE_BUSY_TIMEOUT,
)
from verabot.core.logger import logger, NY_TZ


# =============================================================================
# Configuration Dataclass
# =============================================================================

@dataclass
class Config:
    """
    Bot configuration loaded from environment variables.

    Attributes:
        discord_token: Discord bot authentication token.
        data_dir: Root directory for the root and per-guild databases.
        db_max_connections: Open guild handles kept before LRU eviction.
        db_idle_timeout: Seconds of inactivity before a handle is closed.
        sqlite_busy_timeout: SQLite busy timeout in milliseconds.
        reminder_check_interval: Seconds between reminder sweeps.
        error_webhook_url: Optional webhook for error alerts.
    """

    # -------------------------------------------------------------------------
    # Required
    # -------------------------------------------------------------------------

    discord_token: str

    # -------------------------------------------------------------------------
    # Optional: Storage
    # -------------------------------------------------------------------------

    data_dir: Path = Path("data")
    db_max_connections: int = MAX_GUILD_CONNECTIONS
    db_idle_timeout: int = DB_IDLE_TIMEOUT
    sqlite_busy_timeout: int = SQLITE_BUSY_TIMEOUT

    # -------------------------------------------------------------------------
    # Optional: Scheduler
    # -------------------------------------------------------------------------

    reminder_check_interval: int = REMINDER_CHECK_INTERVAL

    # -------------------------------------------------------------------------
    # Optional: Webhooks
    # -------------------------------------------------------------------------

    error_webhook_url: Optional[str] = None


# =============================================================================
# Validation
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def _parse_int_with_default(
    value: Optional[str],
    default: int,
    name: str,
    min_val: Optional[int] = None,
    max_val: Optional[int] = None,
) -> int:
    """
    Parse optional integer with default and range clamping.

    Args:
        value: String value from environment variable.
        default: Default value if not set or invalid.
        name: Variable name for warning messages.
        min_val: Minimum allowed value (inclusive).
        max_val: Maximum allowed value (inclusive).

    Returns:
        Parsed integer within valid range, or default.
    """
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning(f"Config {name}='{value}' invalid, using default {default}")
        return default
    if min_val is not None and parsed < min_val:
        logger.warning(f"Config {name}={parsed} below min {min_val}, using {min_val}")
        return min_val
    if max_val is not None and parsed > max_val:
        logger.warning(f"Config {name}={parsed} above max {max_val}, using {max_val}")
        return max_val
    return parsed


def _validate_url(value: Optional[str], name: str) -> Optional[str]:
    """Return the URL if it looks like http(s), otherwise None."""
    if not value:
        return None
    if not value.startswith(("https://", "http://")):
        logger.warning(f"Config {name} invalid URL format, ignoring")
        return None
    return value


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config() -> Config:
    """
    Load and validate configuration from environment variables.

    Returns:
        Validated Config object.

    Raises:
        ConfigValidationError: If a required variable is missing.
    """
    discord_token = os.getenv("DISCORD_TOKEN")
    if not discord_token:
        raise ConfigValidationError("Missing required environment variables: DISCORD_TOKEN")

    return Config(
        discord_token=discord_token,
        data_dir=Path(os.getenv("DATA_DIR") or "data"),
        db_max_connections=_parse_int_with_default(
            os.getenv("DB_MAX_CONNECTIONS"), MAX_GUILD_CONNECTIONS, "DB_MAX_CONNECTIONS",
            min_val=1, max_val=1000,
        ),
        db_idle_timeout=_parse_int_with_default(
            os.getenv("DB_IDLE_TIMEOUT"), DB_IDLE_TIMEOUT, "DB_IDLE_TIMEOUT",
            min_val=0, max_val=86400,
        ),
        sqlite_busy_timeout=_parse_int_with_default(
            os.getenv("SQLITE_BUSY_TIMEOUT"), SQLITE_BUSY_TIMEOUT, "SQLITE_BUSY_TIMEOUT",
            min_val=0, max_val=60000,
        ),
        reminder_check_interval=_parse_int_with_default(
            os.getenv("REMINDER_CHECK_INTERVAL"), REMINDER_CHECK_INTERVAL, "REMINDER_CHECK_INTERVAL",
            min_val=5, max_val=3600,
        ),
        error_webhook_url=_validate_url(os.getenv("ERROR_WEBHOOK_URL"), "ERROR_WEBHOOK_URL"),
    )


_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global Config instance, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Drop the cached Config so the next get_config() reloads it."""
    global _config
    _config = None


def validate_and_log_config() -> Config:
    """Load config and log a summary of it."""
    config = get_config()
    logger.tree("Configuration Loaded", [
        ("Data Dir", str(config.data_dir)),
        ("Max Connections", str(config.db_max_connections)),
        ("Idle Timeout", f"{config.db_idle_timeout}s"),
        ("Reminder Interval", f"{config.reminder_check_interval}s"),
        ("Error Webhook", "Enabled" if config.error_webhook_url else "Disabled"),
    ], emoji="⚙️")
    return config


__all__ = [
    "Config",
    "ConfigValidationError",
    "NY_TZ",
    "get_config",
    "load_config",
    "reset_config",
    "validate_and_log_config",
]
