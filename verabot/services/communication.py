"""
VeraBot - Communication Service
===============================

Per-guild record of which users accept direct messages from the bot.

Each user has at most one row per guild (userId is unique). Opting in or
out is a single upsert, so concurrent calls for one user never leave
duplicates behind.
"""

import asyncio
import json
from typing import Any, Dict, List, Mapping, Optional

from verabot.core.database import (
    CommunicationRecord,
    GuildDatabaseManager,
    _safe_json_loads,
    get_guild_db,
)
from verabot.core.database.manager import GuildId
from verabot.core.logger import logger
from verabot.utils.time_format import utc_now_iso


def _require_user(user_id: Any) -> str:
    if user_id is None or isinstance(user_id, bool) or not str(user_id).strip():
        raise ValueError("User ID is required")
    return str(user_id).strip()


class CommunicationService:
    """Opt-in state and messaging preferences per guild member."""

    def __init__(self, db: Optional[GuildDatabaseManager] = None) -> None:
        self.db = db or get_guild_db()

    # =========================================================================
    # Opt In / Out
    # =========================================================================

    async def _set_opt_in(self, guild_id: GuildId, user_id: GuildId, opted_in: bool) -> bool:
        user = _require_user(user_id)
        handle = await self.db.get_guild_database(guild_id)

        def _upsert():
            now = utc_now_iso()
            handle.execute(
                """INSERT INTO user_communications (userId, opted_in, preferences, createdAt, updatedAt)
                   VALUES (?, ?, '{}', ?, ?)
                   ON CONFLICT(userId) DO UPDATE SET
                       opted_in = excluded.opted_in,
                       updatedAt = excluded.updatedAt""",
                (user, int(opted_in), now, now)
            )
            return True

        result = await asyncio.to_thread(_upsert)

        logger.tree("User Opted In" if opted_in else "User Opted Out", [
            ("Guild", handle.guild_id),
            ("User", user),
        ], emoji="📬" if opted_in else "📭")

        return result

    async def opt_in(self, guild_id: GuildId, user_id: GuildId) -> bool:
        """Allow the bot to DM this user. Creates the row if needed."""
        return await self._set_opt_in(guild_id, user_id, True)

    async def opt_out(self, guild_id: GuildId, user_id: GuildId) -> bool:
        """Stop DMs to this user. Creates the row if needed."""
        return await self._set_opt_in(guild_id, user_id, False)

    async def is_opted_in(self, guild_id: GuildId, user_id: GuildId) -> bool:
        user = _require_user(user_id)
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            row = handle.fetchone(
                "SELECT opted_in FROM user_communications WHERE userId = ? LIMIT 1",
                (user,)
            )
            return bool(row and row["opted_in"])

        return await asyncio.to_thread(_get)

    async def get_status(self, guild_id: GuildId, user_id: GuildId) -> CommunicationRecord:
        """
        Communication state of one user.

        A user with no row is reported as not opted in, with no timestamps.
        """
        user = _require_user(user_id)
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            row = handle.fetchone(
                """SELECT userId, opted_in, preferences, createdAt, updatedAt
                   FROM user_communications WHERE userId = ? LIMIT 1""",
                (user,)
            )
            if row is None:
                return {
                    "userId": user,
                    "opted_in": False,
                    "preferences": {},
                    "createdAt": None,
                    "updatedAt": None,
                }
            return {
                "userId": row["userId"],
                "opted_in": bool(row["opted_in"]),
                "preferences": _safe_json_loads(row["preferences"]),
                "createdAt": row["createdAt"],
                "updatedAt": row["updatedAt"],
            }

        return await asyncio.to_thread(_get)

    # =========================================================================
    # Preferences
    # =========================================================================

    async def set_preferences(
        self,
        guild_id: GuildId,
        user_id: GuildId,
        preferences: Mapping[str, Any],
    ) -> bool:
        """Replace a user's preferences. Opt-in state is left unchanged."""
        user = _require_user(user_id)
        if not isinstance(preferences, Mapping):
            raise ValueError("Preferences must be a mapping")
        payload = json.dumps(dict(preferences))
        handle = await self.db.get_guild_database(guild_id)

        def _upsert():
            now = utc_now_iso()
            handle.execute(
                """INSERT INTO user_communications (userId, opted_in, preferences, createdAt, updatedAt)
                   VALUES (?, 0, ?, ?, ?)
                   ON CONFLICT(userId) DO UPDATE SET
                       preferences = excluded.preferences,
                       updatedAt = excluded.updatedAt""",
                (user, payload, now, now)
            )
            return True

        return await asyncio.to_thread(_upsert)

    async def get_preferences(self, guild_id: GuildId, user_id: GuildId) -> Dict[str, Any]:
        user = _require_user(user_id)
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            row = handle.fetchone(
                "SELECT preferences FROM user_communications WHERE userId = ? LIMIT 1",
                (user,)
            )
            return _safe_json_loads(row["preferences"]) if row else {}

        return await asyncio.to_thread(_get)

    # =========================================================================
    # Guild-Level Operations
    # =========================================================================

    async def get_opted_in_users(self, guild_id: GuildId) -> List[str]:
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            rows = handle.fetchall(
                "SELECT userId FROM user_communications WHERE opted_in = 1 ORDER BY userId"
            )
            return [row["userId"] for row in rows]

        return await asyncio.to_thread(_get)

    async def get_guild_communication_stats(self, guild_id: GuildId) -> Dict[str, int]:
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            row = handle.fetchone(
                """SELECT
                       COUNT(*) AS total,
                       SUM(CASE WHEN opted_in = 1 THEN 1 ELSE 0 END) AS opted_in,
                       SUM(CASE WHEN opted_in = 1 THEN 0 ELSE 1 END) AS opted_out
                   FROM user_communications"""
            )
            return {
                "total": row["total"] or 0,
                "opted_in": row["opted_in"] or 0,
                "opted_out": row["opted_out"] or 0,
            }

        return await asyncio.to_thread(_get)

    async def delete_guild_communications(self, guild_id: GuildId) -> int:
        """Remove every communication record of a guild. Returns rows removed."""
        handle = await self.db.get_guild_database(guild_id)

        def _delete():
            return handle.execute("DELETE FROM user_communications").rowcount

        removed = await asyncio.to_thread(_delete)

        logger.tree("Guild Communications Deleted", [
            ("Guild", handle.guild_id),
            ("Removed", str(removed)),
        ], emoji="🗑️")

        return removed


__all__ = ["CommunicationService"]
