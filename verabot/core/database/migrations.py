"""
VeraBot - Schema Migrations
===========================

Upgrades guild databases written by older releases.

DESIGN:
    Deployed files have no version table, so the outdated shape is
    detected from the database's own metadata (sqlite_master DDL and
    PRAGMA table_info). A missing table counts as already migrated.

    Known legacy shapes of user_communications:
    - opted_in / preferences columns missing
    - userId uniqueness declared at table level (UNIQUE(userId) or a
      composite such as UNIQUE(userId, guildId)) instead of on the column
"""

import re
import sqlite3
from typing import List, Optional, Set

from verabot.core.database.errors import MigrationError
from verabot.core.database.schema import USER_COMMUNICATIONS_DDL


TABLE = "user_communications"
REBUILD_TABLE = f"{TABLE}_new"

# Columns ALTERed into old files, with the DDL that adds them
MISSING_COLUMNS = (
    ("opted_in", "opted_in INTEGER DEFAULT 0"),
    ("preferences", "preferences TEXT DEFAULT '{}'"),
)

# Columns the rebuilt table copies when the old table has them
REBUILD_COLUMNS = ("id", "userId", "opted_in", "preferences", "createdAt", "updatedAt")

# userId followed by its type/constraints up to the next comma or paren
_COLUMN_UNIQUE_RE = re.compile(r"\buserId\b[^,()]*\bUNIQUE\b", re.IGNORECASE)


# =============================================================================
# Detection
# =============================================================================

def _table_sql(conn: sqlite3.Connection, table: str) -> Optional[str]:
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,)
    ).fetchone()
    return row[0] if row else None


def _columns(conn: sqlite3.Connection, table: str) -> Set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}


def has_column_level_unique(conn: sqlite3.Connection) -> bool:
    """True if user_communications declares userId UNIQUE on the column."""
    sql = _table_sql(conn, TABLE)
    return bool(sql and _COLUMN_UNIQUE_RE.search(sql))


def missing_columns(conn: sqlite3.Connection) -> List[str]:
    """Columns of the current shape that user_communications lacks."""
    if _table_sql(conn, TABLE) is None:
        return []
    existing = _columns(conn, TABLE)
    return [name for name, _ in MISSING_COLUMNS if name not in existing]


def needs_migration(conn: sqlite3.Connection) -> bool:
    """
    Decide from metadata alone whether the database needs upgrading.

    Pure read: never modifies the database.

    Returns:
        False for a fresh database (table absent) or one already in the
        current shape, True otherwise.
    """
    if _table_sql(conn, TABLE) is None:
        return False
    return bool(missing_columns(conn)) or not has_column_level_unique(conn)


# =============================================================================
# Upgrade
# =============================================================================

def _add_missing_columns(conn: sqlite3.Connection) -> List[str]:
    applied = []
    existing = _columns(conn, TABLE)
    for name, ddl in MISSING_COLUMNS:
        if name in existing:
            continue
        conn.execute(f"ALTER TABLE {TABLE} ADD COLUMN {ddl}")
        applied.append(f"add_column:{name}")
    conn.commit()
    return applied


def _rebuild_unique(conn: sqlite3.Connection) -> None:
    """
    Recreate user_communications with userId unique at the column level.

    Old files may hold one row per (userId, guildId); the newest row per
    userId is kept.
    """
    old_columns = _columns(conn, TABLE)
    if "userId" not in old_columns:
        raise MigrationError(f"{TABLE} has no userId column")

    copied = [col for col in REBUILD_COLUMNS if col in old_columns]
    column_list = ", ".join(copied)

    if conn.in_transaction:
        conn.commit()
    conn.execute("BEGIN IMMEDIATE")
    try:
        conn.execute(f"DROP TABLE IF EXISTS {REBUILD_TABLE}")
        conn.execute(USER_COMMUNICATIONS_DDL.format(name=REBUILD_TABLE))
        conn.execute(
            f"""INSERT INTO {REBUILD_TABLE} ({column_list})
                SELECT {column_list} FROM {TABLE}
                WHERE id IN (SELECT MAX(id) FROM {TABLE} GROUP BY userId)"""
        )
        conn.execute(f"DROP TABLE {TABLE}")
        conn.execute(f"ALTER TABLE {REBUILD_TABLE} RENAME TO {TABLE}")
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise


def run_migrations(conn: sqlite3.Connection) -> List[str]:
    """
    Bring user_communications to the current shape.

    Idempotent: returns an empty list when there is nothing to do,
    including when the table does not exist.

    Returns:
        Names of the steps applied, in order.

    Raises:
        MigrationError: If a step fails.
    """
    if not needs_migration(conn):
        return []

    applied: List[str] = []
    try:
        applied.extend(_add_missing_columns(conn))
        if not has_column_level_unique(conn):
            _rebuild_unique(conn)
            applied.append("rebuild_unique:userId")
    except sqlite3.Error as e:
        raise MigrationError(f"Migrating {TABLE} failed: {e}") from e

    return applied


__all__ = [
    "needs_migration",
    "run_migrations",
    "missing_columns",
    "has_column_level_unique",
]
