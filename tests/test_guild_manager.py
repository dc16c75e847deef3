"""
VeraBot - Guild Database Manager Tests
======================================

Tests for opening, caching, evicting and deleting guild databases.
"""

import asyncio

import pytest

from verabot.core.database import (
    GuildDatabaseManager,
    OpenError,
    QueryError,
    normalize_guild_id,
)

from conftest import GUILD_A, GUILD_B


class TestGuildIdNormalization:
    """Tests for guild id validation."""

    def test_int_and_str_ids_match(self):
        """Integer ids normalize to the same key as their string form."""
        assert normalize_guild_id(123) == "123"
        assert normalize_guild_id(" 123 ") == "123"

    @pytest.mark.parametrize("bad_id", ["", "   ", None, "../evil", "a/b", "a\\b", True])
    def test_rejects_unsafe_ids(self, bad_id):
        """Empty ids and ids that are not a single path component are rejected."""
        with pytest.raises(ValueError):
            normalize_guild_id(bad_id)

    def test_resolve_path_layout(self, guild_db, data_dir):
        """Guild files live under guilds/<id>/, root in the data dir."""
        assert guild_db.resolve_path("root") == data_dir / "quotes.db"
        assert guild_db.resolve_path(GUILD_A) == data_dir / "guilds" / GUILD_A / "quotes.db"


class TestCacheReuse:
    """Tests for handle caching."""

    @pytest.mark.asyncio
    async def test_first_open_creates_file(self, guild_db, data_dir):
        """Opening a new guild creates its directory and database file."""
        handle = await guild_db.get_guild_database("guild-1")

        assert (data_dir / "guilds" / "guild-1" / "quotes.db").exists()
        assert handle.guild_id == "guild-1"
        assert guild_db.open_count == 1
        assert guild_db.migration_count == 0

    @pytest.mark.asyncio
    async def test_sequential_opens_share_handle(self, guild_db):
        """Two sequential calls return the same handle and connection."""
        first = await guild_db.get_guild_database(GUILD_A)
        second = await guild_db.get_database(int(GUILD_A))

        assert first is second
        assert first.connection is second.connection
        assert guild_db.open_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_first_access_opens_once(self, guild_db):
        """Concurrent first accesses for one guild share a single open."""
        handles = await asyncio.gather(
            *(guild_db.get_guild_database(GUILD_A) for _ in range(10))
        )

        assert all(h is handles[0] for h in handles)
        assert guild_db.open_count == 1

    @pytest.mark.asyncio
    async def test_guilds_get_separate_handles(self, guild_db):
        """Different guilds get different files."""
        a = await guild_db.get_guild_database(GUILD_A)
        b = await guild_db.get_guild_database(GUILD_B)

        assert a is not b
        assert a.path != b.path
        assert set(guild_db.open_guilds) == {GUILD_A, GUILD_B}

    @pytest.mark.asyncio
    async def test_root_database(self, guild_db, data_dir):
        """The root id opens the shared bot-wide file."""
        handle = await guild_db.get_guild_database("root")
        assert handle.path == data_dir / "quotes.db"


class TestOpenFailures:
    """Tests for open errors."""

    @pytest.mark.asyncio
    async def test_unwritable_directory_raises_open_error(self, guild_db, data_dir):
        """A guilds path that is a file cannot hold guild directories."""
        data_dir.mkdir(parents=True)
        (data_dir / "guilds").write_text("not a directory")

        with pytest.raises(OpenError) as exc_info:
            await guild_db.get_guild_database(GUILD_A)

        assert exc_info.value.path == data_dir / "guilds" / GUILD_A / "quotes.db"
        assert not guild_db.is_open(GUILD_A)

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_open_error(self, guild_db):
        """A file that is not a SQLite database is reported and not cached."""
        path = guild_db.resolve_path(GUILD_A)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"this is not a sqlite database" * 100)

        with pytest.raises(OpenError):
            await guild_db.get_guild_database(GUILD_A)

        assert not guild_db.is_open(GUILD_A)
        assert guild_db.open_count == 0

    @pytest.mark.asyncio
    async def test_invalid_id_never_touches_disk(self, guild_db, data_dir):
        """Path traversal ids are rejected before any directory is created."""
        with pytest.raises(ValueError):
            await guild_db.get_guild_database("../outside")

        assert not (data_dir / "outside").exists()


class TestClosing:
    """Tests for closing, eviction and idle pruning."""

    @pytest.mark.asyncio
    async def test_close_guild_database(self, guild_db):
        """Closing evicts the handle; the next access reopens."""
        handle = await guild_db.get_guild_database(GUILD_A)
        await guild_db.close_guild_database(GUILD_A)

        assert handle.closed
        assert not guild_db.is_open(GUILD_A)

        reopened = await guild_db.get_guild_database(GUILD_A)
        assert reopened is not handle
        assert guild_db.open_count == 2

    @pytest.mark.asyncio
    async def test_close_unopened_guild_is_noop(self, guild_db):
        """Closing a guild that was never opened does nothing."""
        await guild_db.close_guild_database(GUILD_B)
        assert guild_db.open_guilds == []

    @pytest.mark.asyncio
    async def test_closed_handle_rejects_queries(self, guild_db):
        """A closed handle raises QueryError instead of touching sqlite."""
        handle = await guild_db.get_guild_database(GUILD_A)
        await guild_db.close_all_connections()

        with pytest.raises(QueryError):
            handle.fetchone("SELECT 1")

    @pytest.mark.asyncio
    async def test_least_recently_used_is_evicted(self, data_dir):
        """At the connection limit the least recently used handle is closed."""
        manager = GuildDatabaseManager(data_dir=data_dir, max_connections=2)
        try:
            a = await manager.get_guild_database("guild-a")
            b = await manager.get_guild_database("guild-b")
            a.last_used += 100
            b.last_used -= 100

            await manager.get_guild_database("guild-c")

            assert b.closed
            assert not a.closed
            assert set(manager.open_guilds) == {"guild-a", "guild-c"}
        finally:
            await manager.close_all_connections()

    @pytest.mark.asyncio
    async def test_prune_idle_connections(self, data_dir):
        """Handles idle past the timeout are closed, recent ones kept."""
        manager = GuildDatabaseManager(data_dir=data_dir, idle_timeout=60)
        try:
            idle = await manager.get_guild_database("guild-idle")
            busy = await manager.get_guild_database("guild-busy")
            idle.last_used -= 120

            closed = await manager.prune_idle_connections()

            assert closed == 1
            assert idle.closed
            assert not busy.closed
            assert manager.open_guilds == ["guild-busy"]
        finally:
            await manager.close_all_connections()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, data_dir):
        """stop() cancels the reaper and closes every handle."""
        manager = GuildDatabaseManager(data_dir=data_dir)
        await manager.start()
        handle = await manager.get_guild_database(GUILD_A)

        await manager.stop()

        assert handle.closed
        assert manager.open_guilds == []
        assert manager._reaper_task is None


class TestOpenLocks:
    """Tests for per-guild open locks."""

    @pytest.mark.asyncio
    async def test_lock_kept_while_open(self, guild_db):
        await asyncio.gather(*(guild_db.get_guild_database(GUILD_A) for _ in range(5)))

        assert set(guild_db._open_locks) == {GUILD_A}
        assert guild_db._lock_users == {}

    @pytest.mark.asyncio
    async def test_lock_dropped_on_close(self, guild_db):
        await guild_db.get_guild_database(GUILD_A)
        await guild_db.get_guild_database(GUILD_B)

        await guild_db.close_guild_database(GUILD_A)
        assert set(guild_db._open_locks) == {GUILD_B}

        await guild_db.close_all_connections()
        assert guild_db._open_locks == {}

    @pytest.mark.asyncio
    async def test_lock_dropped_on_delete(self, guild_db):
        await guild_db.get_guild_database(GUILD_A)

        await guild_db.delete_guild_data(GUILD_A)
        await guild_db.delete_guild_data("guild-never-opened")

        assert guild_db._open_locks == {}
        assert guild_db._lock_users == {}

    @pytest.mark.asyncio
    async def test_lock_dropped_on_evict_and_prune(self, data_dir):
        manager = GuildDatabaseManager(data_dir=data_dir, max_connections=1, idle_timeout=60)
        try:
            first = await manager.get_guild_database("guild-a")
            await manager.get_guild_database("guild-b")

            assert first.closed
            assert set(manager._open_locks) == {"guild-b"}

            manager._connections["guild-b"].last_used -= 120
            await manager.prune_idle_connections()

            assert manager._open_locks == {}
        finally:
            await manager.close_all_connections()

    @pytest.mark.asyncio
    async def test_failed_open_leaves_no_lock(self, guild_db, data_dir):
        path = guild_db.resolve_path(GUILD_A)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"not a sqlite database" * 100)

        with pytest.raises(OpenError):
            await guild_db.get_guild_database(GUILD_A)

        assert guild_db._open_locks == {}


class TestGuildDataDeletion:
    """Tests for deleting a guild's data."""

    @pytest.mark.asyncio
    async def test_delete_removes_directory(self, guild_db, quote_service):
        """Deleting guild data closes the handle and removes the files."""
        await quote_service.add_quote(GUILD_A, "Gone soon", "Alice")
        handle = await guild_db.get_guild_database(GUILD_A)

        assert await guild_db.delete_guild_data(GUILD_A) is True

        assert handle.closed
        assert not guild_db.guild_dir(GUILD_A).exists()
        assert await quote_service.get_all_quotes(GUILD_A) == []

    @pytest.mark.asyncio
    async def test_delete_never_opened_guild(self, guild_db):
        """Deleting a guild with no directory succeeds without error."""
        assert await guild_db.delete_guild_data("guild-3") is False

    @pytest.mark.asyncio
    async def test_delete_root_is_rejected(self, guild_db):
        """The shared root database cannot be deleted as guild data."""
        with pytest.raises(ValueError):
            await guild_db.delete_guild_data("root")

    @pytest.mark.asyncio
    async def test_delete_leaves_other_guilds(self, guild_db, quote_service):
        """Only the target guild's directory is removed."""
        await quote_service.add_quote(GUILD_A, "A quote", "Alice")
        await quote_service.add_quote(GUILD_B, "B quote", "Bob")

        await guild_db.delete_guild_data(GUILD_A)

        quotes = await quote_service.get_all_quotes(GUILD_B)
        assert [q["text"] for q in quotes] == ["B quote"]


class TestInventory:
    """Tests for listing guild databases."""

    @pytest.mark.asyncio
    async def test_list_and_size(self, guild_db):
        """Opened guilds are listed and report a non-zero file size."""
        assert guild_db.list_guild_databases() == []

        await guild_db.get_guild_database(GUILD_B)
        await guild_db.get_guild_database(GUILD_A)

        assert guild_db.list_guild_databases() == [GUILD_A, GUILD_B]
        assert guild_db.get_guild_database_size(GUILD_A) > 0
        assert guild_db.get_guild_database_size("never-opened") == 0
