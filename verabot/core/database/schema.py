"""
VeraBot - Database Schema Module
================================

Table definitions for every guild database.

DESIGN:
    Tables are created if not exist, allowing safe restarts and opening
    of files written by older releases. Column names match the files
    already deployed.
"""

import sqlite3


# -----------------------------------------------------------------------------
# Current shape of user_communications (userId unique at the column level)
# -----------------------------------------------------------------------------

USER_COMMUNICATIONS_DDL = """
    CREATE TABLE IF NOT EXISTS {name} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        userId TEXT NOT NULL UNIQUE,
        opted_in INTEGER DEFAULT 0,
        preferences TEXT DEFAULT '{{}}',
        createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
        updatedAt DATETIME DEFAULT CURRENT_TIMESTAMP
    )
"""

TABLES = (
    # -------------------------------------------------------------------------
    # Quotes
    # -------------------------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS quotes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        text TEXT NOT NULL,
        author TEXT NOT NULL DEFAULT 'Anonymous',
        addedAt TEXT NOT NULL,
        category TEXT DEFAULT 'General',
        averageRating REAL DEFAULT 0,
        ratingCount INTEGER DEFAULT 0,
        createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
        updatedAt DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tags (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        description TEXT,
        createdAt DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quote_tags (
        quoteId INTEGER NOT NULL,
        tagId INTEGER NOT NULL,
        PRIMARY KEY (quoteId, tagId),
        FOREIGN KEY (quoteId) REFERENCES quotes(id) ON DELETE CASCADE,
        FOREIGN KEY (tagId) REFERENCES tags(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quote_ratings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        quoteId INTEGER NOT NULL,
        userId TEXT NOT NULL,
        rating INTEGER NOT NULL CHECK(rating >= 1 AND rating <= 5),
        createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(quoteId, userId),
        FOREIGN KEY (quoteId) REFERENCES quotes(id) ON DELETE CASCADE
    )
    """,

    # -------------------------------------------------------------------------
    # Reminders
    # -------------------------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS reminders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        subject TEXT NOT NULL,
        category TEXT DEFAULT 'General',
        when_datetime TEXT NOT NULL,
        content TEXT,
        link TEXT,
        image TEXT,
        notificationTime TEXT,
        status TEXT DEFAULT 'active',
        notification_method TEXT DEFAULT 'dm',
        createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
        updatedAt DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reminder_assignments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        reminderId INTEGER NOT NULL,
        assigneeType TEXT NOT NULL,
        assigneeId TEXT NOT NULL,
        createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (reminderId) REFERENCES reminders(id) ON DELETE CASCADE,
        UNIQUE(reminderId, assigneeType, assigneeId)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reminder_notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        reminderId INTEGER NOT NULL,
        assigneeId TEXT NOT NULL,
        notifiedAt TEXT,
        readAt TEXT,
        status TEXT DEFAULT 'pending',
        error TEXT,
        createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (reminderId) REFERENCES reminders(id) ON DELETE CASCADE
    )
    """,

    # -------------------------------------------------------------------------
    # User communication preferences
    # -------------------------------------------------------------------------
    USER_COMMUNICATIONS_DDL.format(name="user_communications"),
)

INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_quotes_addedAt ON quotes(addedAt)",
    "CREATE INDEX IF NOT EXISTS idx_quotes_category ON quotes(category)",
    "CREATE INDEX IF NOT EXISTS idx_quotes_author ON quotes(author)",
    "CREATE INDEX IF NOT EXISTS idx_reminders_status ON reminders(status)",
    "CREATE INDEX IF NOT EXISTS idx_reminders_when ON reminders(when_datetime)",
    "CREATE INDEX IF NOT EXISTS idx_reminder_assignments_reminderId ON reminder_assignments(reminderId)",
    "CREATE INDEX IF NOT EXISTS idx_reminder_notifications_reminderId ON reminder_notifications(reminderId)",
    "CREATE INDEX IF NOT EXISTS idx_reminder_notifications_assigneeId ON reminder_notifications(assigneeId)",
)

# Columns added after the first release; ALTERed into older files
LATE_COLUMNS = {
    "reminder_notifications": ["error TEXT"],
}


def init_schema(conn: sqlite3.Connection) -> None:
    """
    Create every table and index that does not exist yet.

    Raises:
        sqlite3.Error: On any failure; the caller treats it as an open error.
    """
    cursor = conn.cursor()

    for ddl in TABLES:
        cursor.execute(ddl)

    for table, columns in LATE_COLUMNS.items():
        existing = {row[1] for row in cursor.execute(f"PRAGMA table_info({table})")}
        for col in columns:
            if col.split()[0] not in existing:
                cursor.execute(f"ALTER TABLE {table} ADD COLUMN {col}")

    for ddl in INDEXES:
        cursor.execute(ddl)

    conn.commit()


__all__ = ["init_schema", "TABLES", "INDEXES", "USER_COMMUNICATIONS_DDL"]
