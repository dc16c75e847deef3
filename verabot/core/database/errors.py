"""
VeraBot - Database Errors
=========================

Exception types raised by the guild database layer.

"Not found" is never an error: reads return None or an empty list.
"""

from pathlib import Path
from typing import Optional, Union


class GuildDatabaseError(Exception):
    """Base class for guild database failures."""
    pass


class OpenError(GuildDatabaseError):
    """A guild database file could not be opened or initialized."""

    def __init__(self, path: Union[str, Path], reason: str = "") -> None:
        self.path = Path(path)
        self.reason = reason
        message = f"Could not open database at {self.path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class MigrationError(GuildDatabaseError):
    """A schema upgrade failed. Logged, never fatal to opening."""
    pass


class QueryError(GuildDatabaseError):
    """A SQL statement failed against a guild database."""

    def __init__(
        self,
        message: str,
        guild_id: Optional[str] = None,
        query: Optional[str] = None,
    ) -> None:
        self.guild_id = guild_id
        self.query = query
        super().__init__(message)

    @property
    def missing_table(self) -> bool:
        """True when the statement failed because a table does not exist."""
        return "no such table" in str(self).lower()


__all__ = ["GuildDatabaseError", "OpenError", "MigrationError", "QueryError"]
