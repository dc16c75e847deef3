"""
VeraBot - Guild Database Handle
===============================

One open connection to a guild's SQLite file.

DESIGN:
    Handles are owned by GuildDatabaseManager. Services borrow them and
    run their SQL on a worker thread (asyncio.to_thread); the handle
    serializes statements on its connection with a threading lock.
"""

import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from verabot.core.constants import DB_CONNECTION_TIMEOUT, SQLITE_BUSY_TIMEOUT
from verabot.core.database.errors import OpenError, QueryError
from verabot.core.logger import logger


# =============================================================================
# Helper Functions
# =============================================================================

def _safe_json_loads(value: Optional[str], default: Any = None) -> Any:
    """Parse JSON, returning default on empty or corrupted input."""
    fallback = default if default is not None else {}
    if not value:
        return fallback
    try:
        return json.loads(value)
    except (json.JSONDecodeError, ValueError):
        logger.warning(f"Corrupted JSON in database: {value[:50]}")
        return fallback


def like_pattern(text: str) -> str:
    """
    Substring LIKE pattern with %, _ and \\ matched literally.

    Use with `LIKE ? ESCAPE '\\'`.
    """
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def connect(path: Path, busy_timeout: int = SQLITE_BUSY_TIMEOUT) -> sqlite3.Connection:
    """
    Open a SQLite connection with the pragmas every guild database uses.

    Raises:
        OpenError: If the file cannot be opened or is not a database.
    """
    conn = None
    try:
        conn = sqlite3.connect(
            str(path),
            check_same_thread=False,
            timeout=DB_CONNECTION_TIMEOUT,
        )
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA busy_timeout={int(busy_timeout)}")
        conn.row_factory = sqlite3.Row
        return conn
    except sqlite3.Error as e:
        if conn is not None:
            conn.close()
        raise OpenError(path, str(e)) from e


# =============================================================================
# Guild Database Handle
# =============================================================================

class GuildDatabaseHandle:
    """
    Thread-safe wrapper around one guild's sqlite3 connection.

    Attributes:
        guild_id: Normalized guild identifier ("root" for the shared file).
        path: Database file path.
        opened_at: Monotonic time the handle was opened.
        last_used: Monotonic time of the last cache hit or statement.
    """

    def __init__(self, guild_id: str, path: Path, conn: sqlite3.Connection) -> None:
        self.guild_id = guild_id
        self.path = path
        self._conn: Optional[sqlite3.Connection] = conn
        self._lock = threading.Lock()
        self.opened_at = time.monotonic()
        self.last_used = self.opened_at

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<GuildDatabaseHandle guild={self.guild_id} {state}>"

    @property
    def closed(self) -> bool:
        return self._conn is None

    @property
    def connection(self) -> sqlite3.Connection:
        """The underlying connection. Raises QueryError once closed."""
        if self._conn is None:
            raise QueryError("Database handle is closed", guild_id=self.guild_id)
        return self._conn

    def touch(self) -> None:
        self.last_used = time.monotonic()

    # =========================================================================
    # Execution
    # =========================================================================

    def _run(
        self,
        query: str,
        params: Tuple,
        commit: bool,
        fetch: Optional[Callable[[sqlite3.Cursor], Any]] = None,
    ) -> Any:
        """Run one statement and read its rows while holding the lock."""
        with self._lock:
            conn = self.connection
            self.touch()
            try:
                cursor = conn.cursor()
                cursor.execute(query, params)
                result = fetch(cursor) if fetch else cursor
                if commit:
                    conn.commit()
                return result
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.rollback()
                raise QueryError(str(e), guild_id=self.guild_id, query=query) from e

    def execute(
        self,
        query: str,
        params: Tuple = (),
        commit: bool = True,
    ) -> sqlite3.Cursor:
        """Execute a query with thread safety."""
        return self._run(query, params, commit)

    def fetchone(self, query: str, params: Tuple = ()) -> Optional[sqlite3.Row]:
        """Execute query and fetch one result."""
        return self._run(query, params, False, sqlite3.Cursor.fetchone)

    def fetchall(self, query: str, params: Tuple = ()) -> List[sqlite3.Row]:
        """Execute query and fetch all results."""
        return self._run(query, params, False, sqlite3.Cursor.fetchall)

    def close(self) -> None:
        """Close the connection. Waits for an in-flight statement."""
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.close()
            except sqlite3.Error as e:
                logger.warning("Guild Database Close Failed", [
                    ("Guild", self.guild_id),
                    ("Error", str(e)[:100]),
                ])
            finally:
                self._conn = None

    # =========================================================================
    # Transaction Support
    # =========================================================================

    class Transaction:
        """
        Context manager for atomic statements on one handle.

        Usage:
            with handle.transaction() as tx:
                tx.execute("DELETE FROM quote_tags WHERE quoteId = ?", (qid,))
                tx.execute("DELETE FROM quotes WHERE id = ?", (qid,))
            # Commits on success, rolls back on exception
        """

        def __init__(self, handle: "GuildDatabaseHandle"):
            self._handle = handle
            self._cursor: Optional[sqlite3.Cursor] = None

        def __enter__(self) -> "GuildDatabaseHandle.Transaction":
            self._handle._lock.acquire()
            try:
                conn = self._handle.connection
                if conn.in_transaction:
                    conn.commit()
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                self._handle._lock.release()
                raise QueryError(str(e), guild_id=self._handle.guild_id, query="BEGIN IMMEDIATE") from e
            except QueryError:
                self._handle._lock.release()
                raise
            self._handle.touch()
            self._cursor = conn.cursor()
            return self

        def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
            conn = self._handle.connection
            try:
                if exc_type is None:
                    try:
                        conn.commit()
                    except sqlite3.Error as e:
                        conn.rollback()
                        raise QueryError(str(e), guild_id=self._handle.guild_id, query="COMMIT") from e
                else:
                    conn.rollback()
                    logger.warning("Guild Transaction Rolled Back", [
                        ("Guild", self._handle.guild_id),
                        ("Error", str(exc_val)[:100] if exc_val else "Unknown"),
                    ])
            finally:
                self._handle._lock.release()
            return False

        def execute(self, query: str, params: Tuple = ()) -> sqlite3.Cursor:
            """Execute a query within this transaction."""
            try:
                self._cursor.execute(query, params)
            except sqlite3.Error as e:
                raise QueryError(str(e), guild_id=self._handle.guild_id, query=query) from e
            return self._cursor

        def fetchone(self) -> Optional[sqlite3.Row]:
            """Fetch one result from the last query."""
            return self._cursor.fetchone() if self._cursor else None

        def fetchall(self) -> List[sqlite3.Row]:
            """Fetch all results from the last query."""
            return self._cursor.fetchall() if self._cursor else []

        @property
        def lastrowid(self) -> int:
            return self._cursor.lastrowid if self._cursor else 0

        @property
        def rowcount(self) -> int:
            return self._cursor.rowcount if self._cursor else 0

    def transaction(self) -> "GuildDatabaseHandle.Transaction":
        """Create a new transaction context manager."""
        return self.Transaction(self)


__all__ = ["GuildDatabaseHandle", "connect", "_safe_json_loads"]
