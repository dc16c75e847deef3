"""
VeraBot - Core Package
======================

Configuration, logging and guild database management.

DESIGN:
    Core modules expose global instances for consistent state:
    - get_config() returns the same Config instance
    - get_guild_db() returns the same GuildDatabaseManager
    - logger is a global TreeLogger instance
"""

from .config import (
    Config,
    ConfigValidationError,
    NY_TZ,
    get_config,
)

from .database import GuildDatabaseManager, get_guild_db

from .logger import logger, TreeLogger


__all__ = [
    # Config
    "Config",
    "ConfigValidationError",
    "NY_TZ",
    "get_config",
    # Database
    "GuildDatabaseManager",
    "get_guild_db",
    # Logger
    "logger",
    "TreeLogger",
]
