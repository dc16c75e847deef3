"""
VeraBot - Reminder Service Tests
================================

Tests for reminders, assignments and notification records.
"""

from datetime import datetime, timedelta, timezone

import pytest

from verabot.core.database import TableCount

from conftest import GUILD_A, GUILD_B


FUTURE = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
PAST = datetime(2020, 1, 1, 12, 0, tzinfo=timezone.utc)


async def _drop_reminder_tables(guild_db, guild_id):
    """Simulate a guild file created before reminders existed."""
    handle = await guild_db.get_guild_database(guild_id)
    handle.execute("DROP TABLE reminder_notifications")
    handle.execute("DROP TABLE reminder_assignments")
    handle.execute("DROP TABLE reminders")


class TestCreateAndRead:
    """Tests for creating and reading reminders."""

    @pytest.mark.asyncio
    async def test_create_reminder(self, reminder_service):
        reminder_id = await reminder_service.create_reminder(
            GUILD_A, "Team sync", FUTURE, category="Meeting", content="Weekly sync"
        )

        reminder = await reminder_service.get_reminder_by_id(GUILD_A, reminder_id)

        assert reminder["subject"] == "Team sync"
        assert reminder["category"] == "Meeting"
        assert reminder["status"] == "active"
        assert reminder["notification_method"] == "dm"
        assert reminder["when_datetime"] == "2030-01-01T12:00:00.000000+00:00"
        assert reminder["notificationTime"] == reminder["when_datetime"]

    @pytest.mark.asyncio
    async def test_iso_string_time_normalized(self, reminder_service):
        reminder_id = await reminder_service.create_reminder(GUILD_A, "String time", "2030-01-01T12:00:00Z")
        reminder = await reminder_service.get_reminder_by_id(GUILD_A, reminder_id)
        assert reminder["when_datetime"] == "2030-01-01T12:00:00.000000+00:00"

    @pytest.mark.asyncio
    async def test_missing_reminder_returns_none(self, reminder_service):
        assert await reminder_service.get_reminder_by_id(GUILD_A, 404) is None
        assert await reminder_service.get_reminder_assignments(GUILD_A, 404) == []

    @pytest.mark.asyncio
    async def test_reminders_isolated_per_guild(self, reminder_service):
        await reminder_service.create_reminder(GUILD_A, "Only in A", FUTURE)
        assert await reminder_service.get_all_reminders(GUILD_B) == []

    @pytest.mark.asyncio
    async def test_filters_and_order(self, reminder_service):
        later = await reminder_service.create_reminder(GUILD_A, "Later", FUTURE, category="Task")
        sooner = await reminder_service.create_reminder(GUILD_A, "Sooner", PAST, category="Event")

        all_reminders = await reminder_service.get_all_reminders(GUILD_A)
        assert [r["id"] for r in all_reminders] == [sooner, later]

        tasks = await reminder_service.get_all_reminders(GUILD_A, category="Task")
        assert [r["id"] for r in tasks] == [later]

    @pytest.mark.asyncio
    async def test_search(self, reminder_service):
        await reminder_service.create_reminder(GUILD_A, "Dentist", FUTURE, content="Bring x-rays")
        await reminder_service.create_reminder(GUILD_A, "Groceries", FUTURE, category="Errands")

        assert len(await reminder_service.search_reminders(GUILD_A, "x-ray")) == 1
        assert len(await reminder_service.search_reminders(GUILD_A, "errand")) == 1
        assert await reminder_service.search_reminders(GUILD_A, "nothing") == []

    @pytest.mark.asyncio
    async def test_search_wildcards_are_literal(self, reminder_service):
        await reminder_service.create_reminder(GUILD_A, "Pay 50% deposit", FUTURE)
        await reminder_service.create_reminder(GUILD_A, "Rename my_file", FUTURE)
        await reminder_service.create_reminder(GUILD_A, "Call home", FUTURE)

        percent = await reminder_service.search_reminders(GUILD_A, "%")
        underscore = await reminder_service.search_reminders(GUILD_A, "_")

        assert [r["subject"] for r in percent] == ["Pay 50% deposit"]
        assert [r["subject"] for r in underscore] == ["Rename my_file"]


class TestValidation:
    """Tests for rejected reminder input."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("subject", ["", "ab", "x" * 201])
    async def test_subject_length(self, reminder_service, subject):
        with pytest.raises(ValueError):
            await reminder_service.create_reminder(GUILD_A, subject, FUTURE)

    @pytest.mark.asyncio
    async def test_content_and_url_limits(self, reminder_service):
        with pytest.raises(ValueError):
            await reminder_service.create_reminder(GUILD_A, "Valid", FUTURE, content="x" * 2001)
        with pytest.raises(ValueError):
            await reminder_service.create_reminder(GUILD_A, "Valid", FUTURE, link="https://" + "x" * 500)
        with pytest.raises(ValueError):
            await reminder_service.create_reminder(GUILD_A, "Valid", FUTURE, category="c" * 51)

    @pytest.mark.asyncio
    async def test_bad_time_and_method(self, reminder_service):
        with pytest.raises(ValueError):
            await reminder_service.create_reminder(GUILD_A, "Valid", "not a date")
        with pytest.raises(ValueError):
            await reminder_service.create_reminder(GUILD_A, "Valid", FUTURE, notification_method="pigeon")

    @pytest.mark.asyncio
    async def test_bad_assignee_type(self, reminder_service):
        reminder_id = await reminder_service.create_reminder(GUILD_A, "Valid", FUTURE)
        with pytest.raises(ValueError):
            await reminder_service.add_reminder_assignment(GUILD_A, reminder_id, "channel", "42")


class TestUpdate:
    """Tests for update_reminder."""

    @pytest.mark.asyncio
    async def test_update_fields(self, reminder_service):
        reminder_id = await reminder_service.create_reminder(GUILD_A, "Original", FUTURE)

        updated = await reminder_service.update_reminder(
            GUILD_A, reminder_id, {"subject": "Renamed", "when": PAST, "status": "completed"}
        )

        assert updated is True
        reminder = await reminder_service.get_reminder_by_id(GUILD_A, reminder_id)
        assert reminder["subject"] == "Renamed"
        assert reminder["when_datetime"] == "2020-01-01T12:00:00.000000+00:00"
        assert reminder["status"] == "completed"

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, reminder_service):
        reminder_id = await reminder_service.create_reminder(GUILD_A, "Original", FUTURE)
        with pytest.raises(ValueError):
            await reminder_service.update_reminder(GUILD_A, reminder_id, {"id": 5})
        with pytest.raises(ValueError):
            await reminder_service.update_reminder(GUILD_A, reminder_id, {"subject; DROP TABLE reminders": "x"})

    @pytest.mark.asyncio
    async def test_update_missing_reminder(self, reminder_service):
        assert await reminder_service.update_reminder(GUILD_A, 404, {"subject": "Nobody"}) is False


class TestDelete:
    """Tests for soft and hard deletes."""

    @pytest.mark.asyncio
    async def test_hard_delete_removes_assignments(self, reminder_service):
        """Hard-deleting a reminder leaves no assignments behind."""
        reminder_id = await reminder_service.create_reminder("guild-2", "Team sync", FUTURE)
        await reminder_service.add_reminder_assignment("guild-2", reminder_id, "user", "42")

        assert await reminder_service.delete_reminder("guild-2", reminder_id, hard=True) is True

        assert await reminder_service.get_reminder_by_id("guild-2", reminder_id) is None
        assert await reminder_service.get_reminder_assignments("guild-2", reminder_id) == []

    @pytest.mark.asyncio
    async def test_hard_delete_removes_notifications(self, reminder_service):
        reminder_id = await reminder_service.create_reminder(GUILD_A, "Team sync", PAST)
        await reminder_service.record_notification(GUILD_A, reminder_id, "42", "sent")

        await reminder_service.delete_reminder(GUILD_A, reminder_id, hard=True)

        assert await reminder_service.get_reminder_notifications(GUILD_A, reminder_id) == []

    @pytest.mark.asyncio
    async def test_soft_delete_keeps_row(self, reminder_service):
        reminder_id = await reminder_service.create_reminder(GUILD_A, "Soft", FUTURE)
        await reminder_service.add_reminder_assignment(GUILD_A, reminder_id, "role", "777")

        assert await reminder_service.delete_reminder(GUILD_A, reminder_id) is True

        reminder = await reminder_service.get_reminder_by_id(GUILD_A, reminder_id)
        assert reminder["status"] == "deleted"
        assert len(await reminder_service.get_reminder_assignments(GUILD_A, reminder_id)) == 1

    @pytest.mark.asyncio
    async def test_delete_missing(self, reminder_service):
        assert await reminder_service.delete_reminder(GUILD_A, 404) is False
        assert await reminder_service.delete_reminder(GUILD_A, 404, hard=True) is False

    @pytest.mark.asyncio
    async def test_delete_guild_reminders(self, reminder_service):
        first = await reminder_service.create_reminder(GUILD_A, "One", FUTURE)
        await reminder_service.create_reminder(GUILD_A, "Two", FUTURE)
        await reminder_service.add_reminder_assignment(GUILD_A, first, "user", "42")

        assert await reminder_service.delete_guild_reminders(GUILD_A) == 2
        assert await reminder_service.get_all_reminders(GUILD_A) == []
        assert await reminder_service.get_reminder_assignments(GUILD_A, first) == []


class TestAssignments:
    """Tests for reminder assignments."""

    @pytest.mark.asyncio
    async def test_duplicate_assignment_returns_existing(self, reminder_service):
        reminder_id = await reminder_service.create_reminder(GUILD_A, "Assign", FUTURE)

        first = await reminder_service.add_reminder_assignment(GUILD_A, reminder_id, "user", 42)
        second = await reminder_service.add_reminder_assignment(GUILD_A, reminder_id, "user", "42")

        assert first == second
        assignments = await reminder_service.get_reminder_assignments(GUILD_A, reminder_id)
        assert [(a["assigneeType"], a["assigneeId"]) for a in assignments] == [("user", "42")]

    @pytest.mark.asyncio
    async def test_assignment_to_missing_reminder(self, reminder_service):
        assert await reminder_service.add_reminder_assignment(GUILD_A, 404, "user", "42") is None


class TestCountsAndStats:
    """Tests for counts and aggregate statistics."""

    @pytest.mark.asyncio
    async def test_count_reminders(self, reminder_service):
        first = await reminder_service.create_reminder(GUILD_A, "One", FUTURE)
        await reminder_service.create_reminder(GUILD_A, "Two", FUTURE)
        await reminder_service.delete_reminder(GUILD_A, first)

        assert await reminder_service.count_reminders(GUILD_A) == TableCount(2)
        assert await reminder_service.count_reminders(GUILD_A, status="active") == TableCount(1)

    @pytest.mark.asyncio
    async def test_count_without_table(self, guild_db, reminder_service):
        """A guild that predates reminders counts zero, not an error."""
        await _drop_reminder_tables(guild_db, GUILD_A)

        result = await reminder_service.count_reminders(GUILD_A)

        assert result == TableCount(0, table_present=False)

    @pytest.mark.asyncio
    async def test_stats(self, reminder_service):
        first = await reminder_service.create_reminder(GUILD_A, "One", FUTURE, category="Task")
        second = await reminder_service.create_reminder(GUILD_A, "Two", FUTURE, category="Event")
        await reminder_service.create_reminder(GUILD_A, "Three", FUTURE, category="Task")
        await reminder_service.update_reminder(GUILD_A, first, {"status": "completed"})
        await reminder_service.delete_reminder(GUILD_A, second)

        stats = await reminder_service.get_guild_reminder_stats(GUILD_A)

        assert stats == {"total": 3, "active": 1, "completed": 1, "deleted": 1, "categories": 2}

    @pytest.mark.asyncio
    async def test_stats_without_table(self, guild_db, reminder_service):
        await _drop_reminder_tables(guild_db, GUILD_A)

        stats = await reminder_service.get_guild_reminder_stats(GUILD_A)

        assert stats == {"total": 0, "active": 0, "completed": 0, "deleted": 0, "categories": 0}


class TestNotifications:
    """Tests for due reminders and delivery records."""

    @pytest.mark.asyncio
    async def test_due_reminders(self, reminder_service):
        due = await reminder_service.create_reminder(GUILD_A, "Overdue", PAST)
        await reminder_service.create_reminder(GUILD_A, "Not yet", FUTURE)
        done = await reminder_service.create_reminder(GUILD_A, "Finished", PAST)
        await reminder_service.update_reminder(GUILD_A, done, {"status": "completed"})

        results = await reminder_service.get_reminders_for_notification(GUILD_A)

        assert [r["id"] for r in results] == [due]

    @pytest.mark.asyncio
    async def test_notification_time_wins_over_due_time(self, reminder_service):
        """A reminder is due once its notification time has passed."""
        reminder_id = await reminder_service.create_reminder(
            GUILD_A, "Heads up", FUTURE, notification_time=FUTURE - timedelta(days=1)
        )

        before = await reminder_service.get_reminders_for_notification(GUILD_A, now=FUTURE - timedelta(days=2))
        after = await reminder_service.get_reminders_for_notification(GUILD_A, now=FUTURE - timedelta(hours=1))

        assert before == []
        assert [r["id"] for r in after] == [reminder_id]

    @pytest.mark.asyncio
    async def test_record_notification(self, reminder_service):
        reminder_id = await reminder_service.create_reminder(GUILD_A, "Notify", PAST)

        await reminder_service.record_notification(GUILD_A, reminder_id, "42", "sent")
        await reminder_service.record_notification(GUILD_A, reminder_id, "43", "failed", "DMs disabled")

        records = await reminder_service.get_reminder_notifications(GUILD_A, reminder_id)

        assert [(r["assigneeId"], r["status"], r["error"]) for r in records] == [
            ("42", "sent", None),
            ("43", "failed", "DMs disabled"),
        ]
        assert records[0]["notifiedAt"] is not None
        assert records[1]["notifiedAt"] is None

    @pytest.mark.asyncio
    async def test_record_rejects_unknown_status(self, reminder_service):
        reminder_id = await reminder_service.create_reminder(GUILD_A, "Notify", PAST)
        with pytest.raises(ValueError):
            await reminder_service.record_notification(GUILD_A, reminder_id, "42", "pending")
