"""
VeraBot - Main Bot Class
========================

Discord client that owns the guild database manager and the reminder
scheduler for the lifetime of the connection.
"""

from datetime import datetime
from typing import Optional

import discord
from discord.ext import commands

from verabot.core.config import Config, get_config
from verabot.core.database import GuildDatabaseManager, get_guild_db
from verabot.core.logger import logger
from verabot.services import (
    CommunicationService,
    QuoteService,
    ReminderScheduler,
    ReminderService,
)


# =============================================================================
# VeraBot Class
# =============================================================================

class VeraBot(commands.Bot):
    """
    Discord bot wiring the guild services together.

    Startup sequence:
        1. __init__: build services around the shared manager
        2. setup_hook: start the idle reaper and the reminder scheduler
        3. close: stop both and close every guild database
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        db: Optional[GuildDatabaseManager] = None,
    ) -> None:
        self.config = config or get_config()

        intents = discord.Intents.default()
        intents.members = True

        super().__init__(
            command_prefix="!",
            intents=intents,
            help_command=None,
        )

        self.db = db or get_guild_db()
        self.start_time: datetime = datetime.now()

        self.quotes = QuoteService(self.db)
        self.reminders = ReminderService(self.db)
        self.communication = CommunicationService(self.db)
        self.reminder_scheduler = ReminderScheduler(
            self,
            reminders=self.reminders,
            communication=self.communication,
            interval=self.config.reminder_check_interval,
        )

        logger.info("Bot Instance Created")

    # =========================================================================
    # Setup Hook
    # =========================================================================

    async def setup_hook(self) -> None:
        """Start background services before on_ready."""
        await self.db.start()
        await self.reminder_scheduler.start()

    async def on_ready(self) -> None:
        logger.tree("Bot Ready", [
            ("User", str(self.user)),
            ("Guilds", str(len(self.guilds))),
        ], emoji="✅")

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def close(self) -> None:
        """Stop the scheduler, close guild databases, then disconnect."""
        logger.info("Initiating Graceful Shutdown")

        await self.reminder_scheduler.stop()
        await self.db.stop()
        await super().close()

        logger.tree("SHUTDOWN COMPLETE", [
            ("Uptime", str(datetime.now() - self.start_time)),
        ], emoji="🛑")


__all__ = ["VeraBot"]
