"""
VeraBot - Guild Database Manager
================================

Opens, caches, migrates and closes one SQLite database per guild.

DESIGN:
    One file per guild at <data_dir>/guilds/<guild_id>/quotes.db, plus the
    shared bot-wide file <data_dir>/quotes.db for guild id "root".

    The cache is only mutated on the event loop. Opening runs on a worker
    thread behind a per-guild asyncio.Lock, so concurrent first accesses
    for one guild share a single connection.
"""

import asyncio
import re
import shutil
import sqlite3
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Tuple, Union

from verabot.core.constants import (
    DB_FILENAME,
    DB_IDLE_TIMEOUT,
    GUILDS_DIR_NAME,
    IDLE_REAPER_INTERVAL,
    MAX_GUILD_CONNECTIONS,
    ROOT_GUILD_ID,
    SQLITE_BUSY_TIMEOUT,
)
from verabot.core.database.errors import MigrationError, OpenError
from verabot.core.database.handle import GuildDatabaseHandle, connect
from verabot.core.database.migrations import needs_migration, run_migrations
from verabot.core.database.schema import init_schema
from verabot.core.logger import logger


GuildId = Union[str, int]

# Guild ids become directory names
_SAFE_GUILD_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def normalize_guild_id(guild_id: GuildId) -> str:
    """
    Convert a guild id to the string used as cache key and directory name.

    Raises:
        ValueError: If the id is empty or not a single safe path component.
    """
    if guild_id is None or isinstance(guild_id, bool):
        raise ValueError("Guild ID is required")
    key = str(guild_id).strip()
    if not key:
        raise ValueError("Guild ID is required")
    if not _SAFE_GUILD_ID.match(key):
        raise ValueError(f"Invalid guild ID: {key!r}")
    return key


# =============================================================================
# Guild Database Manager
# =============================================================================

class GuildDatabaseManager:
    """
    Cache of open guild database handles.

    Attributes:
        data_dir: Root data directory.
        guilds_dir: Directory holding one subdirectory per guild.
        max_connections: Open handles kept before LRU eviction.
        idle_timeout: Seconds of inactivity before the reaper closes a handle.
        open_count: Number of connections opened by this manager.
        migration_count: Number of opens that applied a migration.
    """

    def __init__(
        self,
        data_dir: Union[str, Path] = "data",
        max_connections: int = MAX_GUILD_CONNECTIONS,
        idle_timeout: float = DB_IDLE_TIMEOUT,
        busy_timeout: int = SQLITE_BUSY_TIMEOUT,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.guilds_dir = self.data_dir / GUILDS_DIR_NAME
        self.max_connections = max(1, max_connections)
        self.idle_timeout = idle_timeout
        self.busy_timeout = busy_timeout

        self._connections: Dict[str, GuildDatabaseHandle] = {}
        self._open_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._reaper_task: Optional[asyncio.Task] = None

        self.open_count = 0
        self.migration_count = 0

    # =========================================================================
    # Paths
    # =========================================================================

    def resolve_path(self, guild_id: GuildId) -> Path:
        """Database file path for a guild (or the shared root file)."""
        key = normalize_guild_id(guild_id)
        if key == ROOT_GUILD_ID:
            return self.data_dir / DB_FILENAME
        return self.guilds_dir / key / DB_FILENAME

    def guild_dir(self, guild_id: GuildId) -> Path:
        """Directory holding a guild's database files."""
        return self.guilds_dir / normalize_guild_id(guild_id)

    # =========================================================================
    # Cache Access
    # =========================================================================

    @asynccontextmanager
    async def _guild_lock(self, key: str) -> AsyncIterator[None]:
        """
        Hold a guild's open lock.

        The lock is dropped once nobody holds or waits on it and the guild
        has no cached handle, so closed guilds leave nothing behind.
        """
        lock = self._open_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._open_locks[key] = lock
        self._lock_users[key] = self._lock_users.get(key, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                self._forget_lock(key)

    def _forget_lock(self, key: str) -> None:
        if key not in self._connections and key not in self._lock_users:
            self._open_locks.pop(key, None)

    def is_open(self, guild_id: GuildId) -> bool:
        return normalize_guild_id(guild_id) in self._connections

    @property
    def open_guilds(self) -> List[str]:
        return list(self._connections)

    async def get_guild_database(self, guild_id: GuildId) -> GuildDatabaseHandle:
        """
        Get the open handle for a guild, opening it on first access.

        Args:
            guild_id: Discord guild ID, or "root" for the shared database.

        Returns:
            Cached GuildDatabaseHandle.

        Raises:
            ValueError: If the guild id is missing or unsafe.
            OpenError: If the database cannot be opened.
        """
        key = normalize_guild_id(guild_id)

        handle = self._connections.get(key)
        if handle is not None and not handle.closed:
            handle.touch()
            return handle

        async with self._guild_lock(key):
            handle = self._connections.get(key)
            if handle is not None and not handle.closed:
                handle.touch()
                return handle

            while len(self._connections) >= self.max_connections:
                await self._evict_least_recent()

            handle, migrated = await asyncio.to_thread(self._open, key)
            self._connections[key] = handle
            self.open_count += 1
            if migrated:
                self.migration_count += 1

        return handle

    get_database = get_guild_database

    def _open(self, key: str) -> Tuple[GuildDatabaseHandle, bool]:
        """
        Open, migrate and initialize one database. Runs on a worker thread.

        Returns:
            The new handle and whether a migration was applied.
        """
        path = self.resolve_path(key)
        existed = path.exists()

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OpenError(path, str(e)) from e

        conn = connect(path, self.busy_timeout)

        migrated = self._migrate(key, conn)

        try:
            init_schema(conn)
        except sqlite3.Error as e:
            conn.close()
            logger.error("Guild Schema Init Failed", [
                ("Guild", key),
                ("Path", str(path)),
                ("Error", str(e)[:100]),
            ])
            raise OpenError(path, str(e)) from e

        logger.tree("Guild Database Opened", [
            ("Guild", key),
            ("Path", str(path)),
            ("State", "Existing" if existed else "Created"),
        ], emoji="🗄️")

        return GuildDatabaseHandle(key, path, conn), migrated

    def _migrate(self, key: str, conn: sqlite3.Connection) -> bool:
        """Run pending migrations; failures are logged, never raised."""
        try:
            if not needs_migration(conn):
                return False
            applied = run_migrations(conn)
        except (MigrationError, sqlite3.Error) as e:
            logger.error("Guild Migration Failed", [
                ("Guild", key),
                ("Error", str(e)[:100]),
            ])
            return False

        if applied:
            logger.tree("Guild Database Migrated", [
                ("Guild", key),
                ("Steps", ", ".join(applied)),
            ], emoji="🔧")
        return bool(applied)

    # =========================================================================
    # Closing
    # =========================================================================

    async def _close_handle(self, handle: GuildDatabaseHandle) -> None:
        await asyncio.to_thread(handle.close)
        logger.debug(f"Guild database closed: {handle.guild_id}")

    async def close_guild_database(self, guild_id: GuildId) -> None:
        """Close and evict one handle. No-op if the guild is not open."""
        key = normalize_guild_id(guild_id)
        handle = self._connections.pop(key, None)
        if handle is None:
            return
        self._forget_lock(key)
        await self._close_handle(handle)

    async def close_all_connections(self) -> None:
        """Close every cached handle and clear the cache."""
        handles = list(self._connections.values())
        self._connections.clear()
        for key in list(self._open_locks):
            self._forget_lock(key)
        for handle in handles:
            await self._close_handle(handle)

        if handles:
            logger.tree("Guild Databases Closed", [
                ("Closed", str(len(handles))),
            ], emoji="🔒")

    async def _evict_least_recent(self) -> None:
        key = min(self._connections, key=lambda k: self._connections[k].last_used)
        handle = self._connections.pop(key)
        self._forget_lock(key)
        logger.tree("Guild Database Evicted", [
            ("Guild", key),
            ("Reason", f"Connection limit ({self.max_connections})"),
        ], emoji="♻️")
        await self._close_handle(handle)

    async def prune_idle_connections(self) -> int:
        """
        Close handles unused for longer than idle_timeout.

        Returns:
            Number of handles closed.
        """
        if self.idle_timeout <= 0:
            return 0

        cutoff = time.monotonic() - self.idle_timeout
        idle = [k for k, h in self._connections.items() if h.last_used < cutoff]
        for key in idle:
            handle = self._connections.get(key)
            # Used again while an earlier close was awaited
            if handle is None or handle.last_used >= cutoff:
                continue
            del self._connections[key]
            self._forget_lock(key)
            await self._close_handle(handle)

        if idle:
            logger.tree("Idle Guild Databases Closed", [
                ("Closed", str(len(idle))),
                ("Still Open", str(len(self._connections))),
            ], emoji="💤")
        return len(idle)

    # =========================================================================
    # Guild Data Deletion
    # =========================================================================

    async def delete_guild_data(self, guild_id: GuildId) -> bool:
        """
        Permanently delete a guild's database directory.

        Closes the guild's handle first to release the file. Holds the
        guild's open lock so no concurrent access recreates it mid-delete.

        Returns:
            True if a directory was removed, False if none existed.

        Raises:
            ValueError: For the shared "root" database.
            OSError: If the directory cannot be removed.
        """
        key = normalize_guild_id(guild_id)
        if key == ROOT_GUILD_ID:
            raise ValueError("The root database cannot be deleted as guild data")

        guild_dir = self.guild_dir(key)

        async with self._guild_lock(key):
            handle = self._connections.pop(key, None)
            if handle is not None:
                await self._close_handle(handle)

            if not guild_dir.exists():
                return False

            try:
                await asyncio.to_thread(shutil.rmtree, guild_dir)
            except OSError as e:
                logger.error("Guild Data Deletion Failed", [
                    ("Guild", key),
                    ("Path", str(guild_dir)),
                    ("Error", str(e)[:100]),
                ])
                raise

        logger.tree("Guild Data Deleted", [
            ("Guild", key),
            ("Path", str(guild_dir)),
        ], emoji="🗑️")
        return True

    # =========================================================================
    # Inventory
    # =========================================================================

    def list_guild_databases(self) -> List[str]:
        """Guild ids that have a database directory on disk."""
        if not self.guilds_dir.exists():
            return []
        return sorted(p.name for p in self.guilds_dir.iterdir() if p.is_dir())

    def get_guild_database_size(self, guild_id: GuildId) -> int:
        """Size of a guild's database file in bytes, 0 if absent."""
        path = self.resolve_path(guild_id)
        try:
            return path.stat().st_size
        except FileNotFoundError:
            return 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the idle reaper background task."""
        if self._reaper_task and not self._reaper_task.done():
            self._reaper_task.cancel()

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._reaper_task = asyncio.create_task(self._reaper_loop())

        logger.tree("Guild Database Manager Started", [
            ("Data Dir", str(self.data_dir)),
            ("Max Connections", str(self.max_connections)),
            ("Idle Timeout", f"{self.idle_timeout}s"),
        ], emoji="🗄️")

    async def stop(self) -> None:
        """Stop the reaper and close every handle."""
        if self._reaper_task and not self._reaper_task.done():
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
        self._reaper_task = None

        await self.close_all_connections()

    async def _reaper_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(IDLE_REAPER_INTERVAL)
                await self.prune_idle_connections()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Idle Reaper Error", [
                    ("Error", str(e)[:100]),
                ])


# =============================================================================
# Global Instance
# =============================================================================

_manager: Optional[GuildDatabaseManager] = None


def get_guild_db() -> GuildDatabaseManager:
    """Get the global guild database manager, built from configuration."""
    global _manager
    if _manager is None:
        from verabot.core.config import get_config

        config = get_config()
        _manager = GuildDatabaseManager(
            data_dir=config.data_dir,
            max_connections=config.db_max_connections,
            idle_timeout=config.db_idle_timeout,
            busy_timeout=config.sqlite_busy_timeout,
        )
    return _manager


def set_guild_db(manager: Optional[GuildDatabaseManager]) -> None:
    """Replace the global manager (tests, alternative data roots)."""
    global _manager
    _manager = manager


__all__ = [
    "GuildDatabaseManager",
    "get_guild_db",
    "set_guild_db",
    "normalize_guild_id",
]
