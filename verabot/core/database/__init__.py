"""
VeraBot - Database Module
=========================

Guild-isolated SQLite storage: one database file per guild, opened
lazily, migrated on open and cached until closed.
"""

from verabot.core.database.errors import (
    GuildDatabaseError,
    OpenError,
    MigrationError,
    QueryError,
)
from verabot.core.database.handle import GuildDatabaseHandle, _safe_json_loads, like_pattern
from verabot.core.database.manager import (
    GuildDatabaseManager,
    get_guild_db,
    set_guild_db,
    normalize_guild_id,
)
from verabot.core.database.migrations import needs_migration, run_migrations
from verabot.core.database.models import (
    QuoteRecord,
    QuoteRatingSummary,
    ReminderRecord,
    ReminderAssignmentRecord,
    ReminderNotificationRecord,
    CommunicationRecord,
    TableCount,
)

__all__ = [
    # Main interface
    "GuildDatabaseManager",
    "GuildDatabaseHandle",
    "get_guild_db",
    "set_guild_db",
    "normalize_guild_id",

    # Migrations
    "needs_migration",
    "run_migrations",

    # Errors
    "GuildDatabaseError",
    "OpenError",
    "MigrationError",
    "QueryError",

    # Helpers
    "_safe_json_loads",
    "like_pattern",

    # Type definitions
    "QuoteRecord",
    "QuoteRatingSummary",
    "ReminderRecord",
    "ReminderAssignmentRecord",
    "ReminderNotificationRecord",
    "CommunicationRecord",
    "TableCount",
]
