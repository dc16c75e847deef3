"""
VeraBot - Test Fixtures
=======================

Shared fixtures for all tests.
"""

import os
import tempfile
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

# Keep test logs out of the working tree; set before verabot is imported
os.environ.setdefault("VERABOT_LOGS_DIR", tempfile.mkdtemp(prefix="verabot-logs-"))

from verabot.core.database import GuildDatabaseManager
from verabot.services import CommunicationService, QuoteService, ReminderService


GUILD_A = "111111111111111111"
GUILD_B = "222222222222222222"


@pytest.fixture
def data_dir(tmp_path):
    """Temporary data directory for guild databases."""
    return tmp_path / "data"


@pytest_asyncio.fixture
async def guild_db(data_dir):
    """Fresh guild database manager rooted in a temporary directory."""
    manager = GuildDatabaseManager(data_dir=data_dir)

    yield manager

    await manager.close_all_connections()


@pytest.fixture
def quote_service(guild_db):
    return QuoteService(guild_db)


@pytest.fixture
def reminder_service(guild_db):
    return ReminderService(guild_db)


@pytest.fixture
def communication_service(guild_db):
    return CommunicationService(guild_db)


# =============================================================================
# Mock Discord Objects
# =============================================================================

def make_member(user_id: int) -> MagicMock:
    """Mock guild member / user that accepts DMs."""
    member = MagicMock()
    member.id = user_id
    member.mention = f"<@{user_id}>"
    member.send = AsyncMock(return_value=MagicMock(id=900000000 + user_id))
    return member


@pytest.fixture
def mock_discord_user():
    """Create a mock Discord user."""
    return make_member(123456789)


@pytest.fixture
def mock_discord_guild():
    """Create a mock Discord guild."""
    guild = MagicMock()
    guild.id = int(GUILD_A)
    guild.name = "Test Server"
    guild.unavailable = False
    guild.get_member = MagicMock(return_value=None)
    guild.get_role = MagicMock(return_value=None)
    guild.system_channel = MagicMock()
    guild.system_channel.send = AsyncMock(return_value=MagicMock(id=888999000))
    return guild


@pytest.fixture
def mock_bot(mock_discord_guild, mock_discord_user):
    """Create a mock bot in one guild that can reach one user."""
    bot = MagicMock()
    bot.guilds = [mock_discord_guild]
    bot.get_guild = MagicMock(
        side_effect=lambda gid: mock_discord_guild if gid == mock_discord_guild.id else None
    )
    bot.get_user = MagicMock(
        side_effect=lambda uid: mock_discord_user if uid == mock_discord_user.id else None
    )
    bot.fetch_user = AsyncMock(return_value=mock_discord_user)
    bot.wait_until_ready = AsyncMock()
    return bot


@pytest.fixture
def member_factory():
    """Factory for mock members with a given id."""
    return make_member
