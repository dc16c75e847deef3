"""
VeraBot - Reminder Scheduler Service
====================================

Background service delivering due reminders in every guild.

DESIGN:
    Runs as a background task checking all guilds every
    reminder_check_interval seconds. Guilds are processed in batches of
    10 with asyncio.gather; a failure in one guild never affects another.

    For each due reminder:
    - Assignees are resolved (users directly, roles to their members)
    - DM delivery skips users who have not opted in
    - Every attempt is recorded in reminder_notifications
    - The reminder is then marked completed
"""

import asyncio
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import discord

from verabot.core.constants import (
    ASSIGNEE_TYPE_ROLE,
    DM_MESSAGE_LIMIT,
    NOTIFICATION_FAILED,
    NOTIFICATION_METHOD_CHANNEL,
    NOTIFICATION_SENT,
    NOTIFICATION_SKIPPED,
    REMINDER_BATCH_DELAY,
    REMINDER_GUILD_BATCH_SIZE,
    REMINDER_STATUS_COMPLETED,
)
from verabot.core.logger import logger
from verabot.services.communication import CommunicationService
from verabot.services.reminders import ReminderService

if TYPE_CHECKING:
    from verabot.bot import VeraBot


def format_reminder_message(reminder: Dict[str, Any]) -> str:
    """Plain-text notification body, cut to Discord's message limit."""
    lines = [f"⏰ Reminder: {reminder['subject']}"]
    if reminder.get("category"):
        lines.append(f"Category: {reminder['category']}")
    lines.append(f"When: {reminder['when_datetime']}")
    if reminder.get("content"):
        lines.append("")
        lines.append(reminder["content"])
    if reminder.get("link"):
        lines.append(f"Link: {reminder['link']}")
    if reminder.get("image"):
        lines.append(reminder["image"])

    message = "\n".join(lines)
    if len(message) > DM_MESSAGE_LIMIT:
        message = message[:DM_MESSAGE_LIMIT - 3] + "..."
    return message


# =============================================================================
# Reminder Scheduler Service
# =============================================================================

class ReminderScheduler:
    """
    Background service for reminder delivery.

    Attributes:
        bot: Bot instance used to reach guilds and users.
        reminders: Reminder storage.
        communication: Opt-in lookups.
        interval: Seconds between checks.
        task: Background task reference.
        running: Whether the scheduler is active.
    """

    def __init__(
        self,
        bot: "VeraBot",
        reminders: Optional[ReminderService] = None,
        communication: Optional[CommunicationService] = None,
        interval: Optional[float] = None,
    ) -> None:
        self.bot = bot
        self.reminders = reminders or ReminderService()
        self.communication = communication or CommunicationService()
        if interval is None:
            from verabot.core.config import get_config
            interval = get_config().reminder_check_interval
        self.interval = interval
        self.task: Optional[asyncio.Task] = None
        self.running: bool = False

    # =========================================================================
    # Lifecycle Management
    # =========================================================================

    async def start(self) -> None:
        """Start the scheduler background task, replacing any running one."""
        if self.task and not self.task.done():
            self.task.cancel()

        self.running = True
        self.task = asyncio.create_task(self._scheduler_loop())

        logger.tree("Reminder Scheduler Started", [
            ("Check Interval", f"{self.interval} seconds"),
            ("Batch Size", str(REMINDER_GUILD_BATCH_SIZE)),
        ], emoji="⏰")

    async def stop(self) -> None:
        self.running = False

        if self.task and not self.task.done():
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        self.task = None

        logger.info("Reminder Scheduler Stopped")

    # =========================================================================
    # Scheduler Loop
    # =========================================================================

    async def _scheduler_loop(self) -> None:
        await self.bot.wait_until_ready()

        while self.running:
            try:
                await self.check_all_guilds()
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Reminder Scheduler Error", [
                    ("Error", str(e)[:100]),
                ])
                await asyncio.sleep(self.interval)

    # =========================================================================
    # Guild Processing
    # =========================================================================

    async def check_all_guilds(self) -> Dict[str, Dict[str, Any]]:
        """
        Deliver due reminders in every available guild that has a database.

        Guilds without a database directory are skipped, so a sweep never
        creates one or recreates one removed by delete_guild_data.

        Returns:
            Per-guild results keyed by guild id. A guild that failed has an
            "error" entry instead of counts.
        """
        stored = set(await asyncio.to_thread(self.reminders.db.list_guild_databases))
        guild_ids = [
            str(guild.id) for guild in self.bot.guilds
            if not guild.unavailable and str(guild.id) in stored
        ]
        results: Dict[str, Dict[str, Any]] = {}

        for i in range(0, len(guild_ids), REMINDER_GUILD_BATCH_SIZE):
            batch = guild_ids[i:i + REMINDER_GUILD_BATCH_SIZE]
            outcomes = await asyncio.gather(
                *(self.check_guild(guild_id) for guild_id in batch),
                return_exceptions=True,
            )

            for guild_id, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error("Guild Reminder Check Failed", [
                        ("Guild", guild_id),
                        ("Error", str(outcome)[:100]),
                    ])
                    results[guild_id] = {"guild_id": guild_id, "error": str(outcome)}
                else:
                    results[guild_id] = outcome

            if i + REMINDER_GUILD_BATCH_SIZE < len(guild_ids):
                await asyncio.sleep(REMINDER_BATCH_DELAY)

        sent = sum(r.get("sent", 0) for r in results.values())
        if sent:
            logger.tree("Reminders Delivered", [
                ("Guilds", str(len(guild_ids))),
                ("Sent", str(sent)),
                ("Failed", str(sum(r.get("failed", 0) for r in results.values()))),
            ], emoji="📨")

        return results

    async def check_guild(self, guild_id: str) -> Dict[str, Any]:
        """
        Deliver every due reminder of one guild.

        Returns:
            {guild_id, total, sent, failed, skipped} where total counts due
            reminders and the others count delivery attempts.
        """
        result = {"guild_id": str(guild_id), "total": 0, "sent": 0, "failed": 0, "skipped": 0}

        due = await self.reminders.get_reminders_for_notification(guild_id)
        result["total"] = len(due)
        if not due:
            return result

        guild = self.bot.get_guild(int(guild_id))
        if guild is None:
            logger.warning("Reminder Guild Not Accessible", [
                ("Guild", str(guild_id)),
                ("Due", str(len(due))),
            ])
            return result

        for reminder in due:
            outcomes = await self._deliver(guild, reminder)
            for status in outcomes:
                result[status] += 1

            await self.reminders.update_reminder(
                guild_id, reminder["id"], {"status": REMINDER_STATUS_COMPLETED}
            )

        return result

    # =========================================================================
    # Delivery
    # =========================================================================

    async def _resolve_assignees(self, guild: discord.Guild, reminder_id: int) -> List[str]:
        """User ids to notify, roles expanded to members, without duplicates."""
        assignments = await self.reminders.get_reminder_assignments(str(guild.id), reminder_id)
        user_ids: List[str] = []

        for assignment in assignments:
            if assignment["assigneeType"] == ASSIGNEE_TYPE_ROLE:
                role = guild.get_role(int(assignment["assigneeId"]))
                if role is None:
                    logger.warning("Reminder Role Not Found", [
                        ("Guild", str(guild.id)),
                        ("Role ID", assignment["assigneeId"]),
                    ])
                    continue
                candidates = [str(member.id) for member in role.members]
            else:
                candidates = [assignment["assigneeId"]]

            for user_id in candidates:
                if user_id not in user_ids:
                    user_ids.append(user_id)

        return user_ids

    async def _deliver(self, guild: discord.Guild, reminder: Dict[str, Any]) -> List[str]:
        """Notify every assignee of one reminder. Returns one status per attempt."""
        guild_id = str(guild.id)
        user_ids = await self._resolve_assignees(guild, reminder["id"])
        message = format_reminder_message(reminder)

        if reminder.get("notification_method") == NOTIFICATION_METHOD_CHANNEL:
            status, error = await self._send_to_channel(guild, message, user_ids)
            for user_id in user_ids:
                await self.reminders.record_notification(guild_id, reminder["id"], user_id, status, error)
            return [status] * len(user_ids)

        statuses = []
        for user_id in user_ids:
            if not await self.communication.is_opted_in(guild_id, user_id):
                status, error = NOTIFICATION_SKIPPED, "User has not opted in"
            else:
                status, error = await self._send_dm(user_id, message)

            await self.reminders.record_notification(guild_id, reminder["id"], user_id, status, error)
            statuses.append(status)

        return statuses

    async def _send_dm(self, user_id: str, message: str) -> tuple:
        try:
            user = self.bot.get_user(int(user_id)) or await self.bot.fetch_user(int(user_id))
            await user.send(message)
        except ValueError:
            return NOTIFICATION_FAILED, "Invalid user ID"
        except discord.Forbidden:
            return NOTIFICATION_FAILED, "DMs disabled"
        except discord.HTTPException as e:
            return NOTIFICATION_FAILED, str(e)[:100]
        return NOTIFICATION_SENT, None

    async def _send_to_channel(self, guild: discord.Guild, message: str, user_ids: List[str]) -> tuple:
        """Post once in the guild's system channel, mentioning every assignee."""
        channel = guild.system_channel
        if channel is None:
            return NOTIFICATION_FAILED, "No channel available"

        mentions = " ".join(f"<@{user_id}>" for user_id in user_ids)
        content = f"{mentions}\n{message}" if mentions else message
        if len(content) > DM_MESSAGE_LIMIT:
            content = content[:DM_MESSAGE_LIMIT - 3] + "..."

        try:
            await channel.send(content)
        except discord.Forbidden:
            return NOTIFICATION_FAILED, "Missing channel permissions"
        except discord.HTTPException as e:
            return NOTIFICATION_FAILED, str(e)[:100]
        return NOTIFICATION_SENT, None


__all__ = ["ReminderScheduler", "format_reminder_message"]
