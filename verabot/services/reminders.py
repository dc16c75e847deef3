"""
VeraBot - Reminder Service
==========================

Guild-scoped reminders, their assignees and delivery attempts.

Reminders are soft-deleted by default (status "deleted") so history and
notification records survive. Times are stored as UTC ISO strings and
compared as text.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from verabot.core.constants import (
    ASSIGNEE_TYPES,
    DEFAULT_REMINDER_CATEGORY,
    NOTIFICATION_FAILED,
    NOTIFICATION_METHOD_DM,
    NOTIFICATION_METHODS,
    NOTIFICATION_SENT,
    NOTIFICATION_SKIPPED,
    REMINDER_CATEGORY_MAX_LENGTH,
    REMINDER_CONTENT_MAX_LENGTH,
    REMINDER_STATUS_ACTIVE,
    REMINDER_STATUS_COMPLETED,
    REMINDER_STATUS_DELETED,
    REMINDER_STATUSES,
    REMINDER_SUBJECT_MAX_LENGTH,
    REMINDER_SUBJECT_MIN_LENGTH,
    REMINDER_URL_MAX_LENGTH,
)
from verabot.core.database import (
    GuildDatabaseManager,
    QueryError,
    ReminderAssignmentRecord,
    ReminderNotificationRecord,
    ReminderRecord,
    TableCount,
    get_guild_db,
    like_pattern,
)
from verabot.core.database.manager import GuildId
from verabot.core.logger import logger
from verabot.utils.time_format import to_iso, utc_now_iso


Timestamp = Union[str, datetime]

NOTIFICATION_STATUSES = (NOTIFICATION_SENT, NOTIFICATION_FAILED, NOTIFICATION_SKIPPED)

# Update keys accepted by update_reminder, mapped to their column
UPDATABLE_FIELDS = {
    "subject": "subject",
    "category": "category",
    "when": "when_datetime",
    "when_datetime": "when_datetime",
    "content": "content",
    "link": "link",
    "image": "image",
    "notification_time": "notificationTime",
    "notificationTime": "notificationTime",
    "status": "status",
    "notification_method": "notification_method",
}


# =============================================================================
# Validation
# =============================================================================

def _require_id(value: Any, name: str = "Reminder ID") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    return value


def _validate_subject(subject: Any) -> str:
    if not isinstance(subject, str):
        raise ValueError("Subject is required")
    subject = subject.strip()
    if not REMINDER_SUBJECT_MIN_LENGTH <= len(subject) <= REMINDER_SUBJECT_MAX_LENGTH:
        raise ValueError(
            f"Subject must be {REMINDER_SUBJECT_MIN_LENGTH}-{REMINDER_SUBJECT_MAX_LENGTH} characters"
        )
    return subject


def _validate_length(value: Optional[str], limit: int, name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{name} must be text")
    if len(value) > limit:
        raise ValueError(f"{name} must be at most {limit} characters")
    return value


def _validate_choice(value: str, choices: tuple, name: str) -> str:
    if value not in choices:
        raise ValueError(f"{name} must be one of: {', '.join(choices)}")
    return value


def _validate_time(value: Timestamp, name: str) -> str:
    if value is None:
        raise ValueError(f"{name} is required")
    try:
        return to_iso(value)
    except (AttributeError, TypeError, ValueError) as e:
        raise ValueError(f"{name} is not a valid ISO-8601 timestamp") from e


def _validate_field(column: str, value: Any) -> Any:
    """Validate one update value for its column."""
    if column == "subject":
        return _validate_subject(value)
    if column == "category":
        return _validate_length(value, REMINDER_CATEGORY_MAX_LENGTH, "Category") or DEFAULT_REMINDER_CATEGORY
    if column == "content":
        return _validate_length(value, REMINDER_CONTENT_MAX_LENGTH, "Content")
    if column in ("link", "image"):
        return _validate_length(value, REMINDER_URL_MAX_LENGTH, column.capitalize())
    if column == "when_datetime":
        return _validate_time(value, "Reminder time")
    if column == "notificationTime":
        return None if value is None else _validate_time(value, "Notification time")
    if column == "status":
        return _validate_choice(value, REMINDER_STATUSES, "Status")
    if column == "notification_method":
        return _validate_choice(value, NOTIFICATION_METHODS, "Notification method")
    raise ValueError(f"Field cannot be updated: {column}")


# =============================================================================
# Reminder Service
# =============================================================================

class ReminderService:
    """Reminder storage for every guild."""

    def __init__(self, db: Optional[GuildDatabaseManager] = None) -> None:
        self.db = db or get_guild_db()

    # =========================================================================
    # Reminders
    # =========================================================================

    async def create_reminder(
        self,
        guild_id: GuildId,
        subject: str,
        when: Timestamp,
        category: str = DEFAULT_REMINDER_CATEGORY,
        content: Optional[str] = None,
        link: Optional[str] = None,
        image: Optional[str] = None,
        notification_time: Optional[Timestamp] = None,
        notification_method: str = NOTIFICATION_METHOD_DM,
    ) -> int:
        """
        Create an active reminder.

        Args:
            guild_id: Owning guild.
            subject: 3-200 characters.
            when: Due time (datetime or ISO string, stored as UTC).
            category: Up to 50 characters.
            content: Optional body, up to 2000 characters.
            link: Optional URL.
            image: Optional image URL.
            notification_time: When to notify; defaults to the due time.
            notification_method: "dm" or "channel".

        Returns:
            ID of the new reminder.
        """
        subject = _validate_subject(subject)
        when_iso = _validate_time(when, "Reminder time")
        notify_iso = _validate_time(notification_time, "Notification time") if notification_time else when_iso
        category = _validate_length(category, REMINDER_CATEGORY_MAX_LENGTH, "Category") or DEFAULT_REMINDER_CATEGORY
        content = _validate_length(content, REMINDER_CONTENT_MAX_LENGTH, "Content")
        link = _validate_length(link, REMINDER_URL_MAX_LENGTH, "Link")
        image = _validate_length(image, REMINDER_URL_MAX_LENGTH, "Image")
        _validate_choice(notification_method, NOTIFICATION_METHODS, "Notification method")

        handle = await self.db.get_guild_database(guild_id)

        def _create():
            now = utc_now_iso()
            cursor = handle.execute(
                """INSERT INTO reminders
                   (subject, category, when_datetime, content, link, image,
                    notificationTime, status, notification_method, createdAt, updatedAt)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (subject, category, when_iso, content, link, image,
                 notify_iso, REMINDER_STATUS_ACTIVE, notification_method, now, now)
            )
            return cursor.lastrowid

        reminder_id = await asyncio.to_thread(_create)

        logger.tree("Reminder Created", [
            ("Guild", handle.guild_id),
            ("Reminder ID", str(reminder_id)),
            ("Subject", subject[:50]),
            ("When", when_iso),
        ], emoji="⏰")

        return reminder_id

    async def get_reminder_by_id(self, guild_id: GuildId, reminder_id: int) -> Optional[ReminderRecord]:
        _require_id(reminder_id)
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            row = handle.fetchone("SELECT * FROM reminders WHERE id = ?", (reminder_id,))
            return dict(row) if row else None

        return await asyncio.to_thread(_get)

    async def update_reminder(
        self,
        guild_id: GuildId,
        reminder_id: int,
        updates: Mapping[str, Any],
    ) -> bool:
        """
        Update selected fields of a reminder.

        Only known fields are accepted; "when" is an alias of
        "when_datetime".

        Returns:
            True if the reminder existed.

        Raises:
            ValueError: On an unknown field, an invalid value or no fields.
        """
        _require_id(reminder_id)
        if not updates:
            raise ValueError("No fields to update")

        columns: Dict[str, Any] = {}
        for key, value in updates.items():
            column = UPDATABLE_FIELDS.get(key)
            if column is None:
                raise ValueError(f"Field cannot be updated: {key}")
            columns[column] = _validate_field(column, value)

        handle = await self.db.get_guild_database(guild_id)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        params = tuple(columns.values()) + (utc_now_iso(), reminder_id)

        def _update():
            cursor = handle.execute(
                f"UPDATE reminders SET {assignments}, updatedAt = ? WHERE id = ?",
                params
            )
            return cursor.rowcount > 0

        updated = await asyncio.to_thread(_update)

        if updated:
            logger.tree("Reminder Updated", [
                ("Guild", handle.guild_id),
                ("Reminder ID", str(reminder_id)),
                ("Fields", ", ".join(columns)),
            ], emoji="✏️")

        return updated

    async def delete_reminder(self, guild_id: GuildId, reminder_id: int, hard: bool = False) -> bool:
        """
        Delete a reminder.

        A soft delete sets status "deleted" and keeps the row. A hard delete
        removes the row with its assignments and notification records.

        Returns:
            True if the reminder existed.
        """
        _require_id(reminder_id)
        handle = await self.db.get_guild_database(guild_id)

        def _soft_delete():
            cursor = handle.execute(
                "UPDATE reminders SET status = ?, updatedAt = ? WHERE id = ?",
                (REMINDER_STATUS_DELETED, utc_now_iso(), reminder_id)
            )
            return cursor.rowcount > 0

        def _hard_delete():
            with handle.transaction() as tx:
                tx.execute("DELETE FROM reminder_notifications WHERE reminderId = ?", (reminder_id,))
                tx.execute("DELETE FROM reminder_assignments WHERE reminderId = ?", (reminder_id,))
                tx.execute("DELETE FROM reminders WHERE id = ?", (reminder_id,))
                return tx.rowcount > 0

        deleted = await asyncio.to_thread(_hard_delete if hard else _soft_delete)

        if deleted:
            logger.tree("Reminder Deleted", [
                ("Guild", handle.guild_id),
                ("Reminder ID", str(reminder_id)),
                ("Mode", "Hard" if hard else "Soft"),
            ], emoji="🗑️")

        return deleted

    async def get_all_reminders(
        self,
        guild_id: GuildId,
        status: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[ReminderRecord]:
        """Reminders ordered by due time, optionally filtered."""
        conditions = []
        params: List[Any] = []
        if status is not None:
            conditions.append("status = ?")
            params.append(_validate_choice(status, REMINDER_STATUSES, "Status"))
        if category is not None:
            conditions.append("category = ?")
            params.append(category)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            rows = handle.fetchall(
                f"SELECT * FROM reminders {where} ORDER BY when_datetime ASC, id ASC",
                tuple(params)
            )
            return [dict(row) for row in rows]

        return await asyncio.to_thread(_get)

    async def search_reminders(self, guild_id: GuildId, query: str) -> List[ReminderRecord]:
        """Reminders whose subject, category or content contains the query."""
        if not isinstance(query, str) or not query.strip():
            raise ValueError("Search query is required")
        handle = await self.db.get_guild_database(guild_id)
        pattern = like_pattern(query)

        def _search():
            rows = handle.fetchall(
                """SELECT * FROM reminders
                   WHERE subject LIKE ? ESCAPE '\\'
                      OR category LIKE ? ESCAPE '\\'
                      OR content LIKE ? ESCAPE '\\'
                   ORDER BY when_datetime ASC, id ASC""",
                (pattern, pattern, pattern)
            )
            return [dict(row) for row in rows]

        return await asyncio.to_thread(_search)

    # =========================================================================
    # Counts & Statistics
    # =========================================================================

    async def count_reminders(self, guild_id: GuildId, status: Optional[str] = None) -> TableCount:
        """
        Count reminders, optionally by status.

        A guild database without a reminders table reports
        TableCount(0, table_present=False).
        """
        if status is not None:
            _validate_choice(status, REMINDER_STATUSES, "Status")
        handle = await self.db.get_guild_database(guild_id)

        def _count():
            if status is None:
                row = handle.fetchone("SELECT COUNT(*) AS count FROM reminders")
            else:
                row = handle.fetchone("SELECT COUNT(*) AS count FROM reminders WHERE status = ?", (status,))
            return row["count"] if row else 0

        try:
            count = await asyncio.to_thread(_count)
        except QueryError as e:
            if not e.missing_table:
                raise
            return TableCount(0, table_present=False)

        return TableCount(count)

    async def get_guild_reminder_stats(self, guild_id: GuildId) -> Dict[str, int]:
        """Totals per status and number of categories; zeros without a table."""
        handle = await self.db.get_guild_database(guild_id)

        def _stats():
            return handle.fetchone(
                """SELECT
                       COUNT(*) AS total,
                       SUM(CASE WHEN status = ? THEN 1 ELSE 0 END) AS active,
                       SUM(CASE WHEN status = ? THEN 1 ELSE 0 END) AS completed,
                       SUM(CASE WHEN status = ? THEN 1 ELSE 0 END) AS deleted,
                       COUNT(DISTINCT category) AS categories
                   FROM reminders""",
                (REMINDER_STATUS_ACTIVE, REMINDER_STATUS_COMPLETED, REMINDER_STATUS_DELETED)
            )

        try:
            row = await asyncio.to_thread(_stats)
        except QueryError as e:
            if not e.missing_table:
                raise
            row = None

        keys = ("total", "active", "completed", "deleted", "categories")
        return {key: (row[key] or 0) if row else 0 for key in keys}

    # =========================================================================
    # Assignments
    # =========================================================================

    async def add_reminder_assignment(
        self,
        guild_id: GuildId,
        reminder_id: int,
        assignee_type: str,
        assignee_id: GuildId,
    ) -> Optional[int]:
        """
        Assign a reminder to a user or role.

        Assigning the same target twice returns the existing assignment.

        Returns:
            Assignment ID, or None if the reminder does not exist.
        """
        _require_id(reminder_id)
        _validate_choice(assignee_type, ASSIGNEE_TYPES, "Assignee type")
        if assignee_id is None or not str(assignee_id).strip():
            raise ValueError("Assignee ID is required")
        assignee_id = str(assignee_id)
        handle = await self.db.get_guild_database(guild_id)

        def _add():
            with handle.transaction() as tx:
                tx.execute("SELECT 1 FROM reminders WHERE id = ?", (reminder_id,))
                if tx.fetchone() is None:
                    return None
                tx.execute(
                    """INSERT OR IGNORE INTO reminder_assignments
                       (reminderId, assigneeType, assigneeId, createdAt)
                       VALUES (?, ?, ?, ?)""",
                    (reminder_id, assignee_type, assignee_id, utc_now_iso())
                )
                tx.execute(
                    """SELECT id FROM reminder_assignments
                       WHERE reminderId = ? AND assigneeType = ? AND assigneeId = ?""",
                    (reminder_id, assignee_type, assignee_id)
                )
                return tx.fetchone()["id"]

        return await asyncio.to_thread(_add)

    async def get_reminder_assignments(
        self,
        guild_id: GuildId,
        reminder_id: int,
    ) -> List[ReminderAssignmentRecord]:
        _require_id(reminder_id)
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            rows = handle.fetchall(
                "SELECT * FROM reminder_assignments WHERE reminderId = ? ORDER BY id",
                (reminder_id,)
            )
            return [dict(row) for row in rows]

        return await asyncio.to_thread(_get)

    # =========================================================================
    # Notifications
    # =========================================================================

    async def get_reminders_for_notification(
        self,
        guild_id: GuildId,
        now: Optional[Timestamp] = None,
    ) -> List[ReminderRecord]:
        """Active reminders whose notification time has passed."""
        cutoff = _validate_time(now, "Current time") if now is not None else utc_now_iso()
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            rows = handle.fetchall(
                """SELECT * FROM reminders
                   WHERE status = ?
                     AND COALESCE(notificationTime, when_datetime) <= ?
                   ORDER BY when_datetime ASC, id ASC""",
                (REMINDER_STATUS_ACTIVE, cutoff)
            )
            return [dict(row) for row in rows]

        return await asyncio.to_thread(_get)

    async def record_notification(
        self,
        guild_id: GuildId,
        reminder_id: int,
        assignee_id: GuildId,
        status: str,
        error: Optional[str] = None,
    ) -> int:
        """Record one delivery attempt. Returns the notification record ID."""
        _require_id(reminder_id)
        _validate_choice(status, NOTIFICATION_STATUSES, "Notification status")
        handle = await self.db.get_guild_database(guild_id)

        def _record():
            now = utc_now_iso()
            cursor = handle.execute(
                """INSERT INTO reminder_notifications
                   (reminderId, assigneeId, notifiedAt, status, error, createdAt)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (reminder_id, str(assignee_id), now if status == NOTIFICATION_SENT else None,
                 status, error, now)
            )
            return cursor.lastrowid

        return await asyncio.to_thread(_record)

    async def get_reminder_notifications(
        self,
        guild_id: GuildId,
        reminder_id: int,
    ) -> List[ReminderNotificationRecord]:
        _require_id(reminder_id)
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            rows = handle.fetchall(
                "SELECT * FROM reminder_notifications WHERE reminderId = ? ORDER BY id",
                (reminder_id,)
            )
            return [dict(row) for row in rows]

        return await asyncio.to_thread(_get)

    # =========================================================================
    # Guild-Level Operations
    # =========================================================================

    async def delete_guild_reminders(self, guild_id: GuildId) -> int:
        """
        Remove every reminder of a guild with its dependents.

        Returns:
            Number of reminders removed.
        """
        handle = await self.db.get_guild_database(guild_id)

        def _delete():
            with handle.transaction() as tx:
                tx.execute("DELETE FROM reminder_notifications")
                tx.execute("DELETE FROM reminder_assignments")
                tx.execute("DELETE FROM reminders")
                return tx.rowcount

        removed = await asyncio.to_thread(_delete)

        logger.tree("Guild Reminders Deleted", [
            ("Guild", handle.guild_id),
            ("Removed", str(removed)),
        ], emoji="🗑️")

        return removed


__all__ = ["ReminderService", "UPDATABLE_FIELDS"]
