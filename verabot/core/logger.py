"""
VeraBot - Logger Module
=======================

Tree-style logging with Eastern timestamps and daily log directories.

DESIGN:
    Structured, hierarchical output that's easy to scan. Related values
    are grouped under one title with tree connectors.

    Key features:
    - Tree-style formatting for structured data
    - EST/EDT timestamps
    - Daily log directories with retention cleanup
    - Session tracking with unique run IDs
    - Optional Discord webhook for error alerts
"""

import os
import uuid
import asyncio
from datetime import datetime
from pathlib import Path
from typing import List, Tuple, Optional

import aiohttp
from zoneinfo import ZoneInfo

from verabot.core.constants import LOG_RETENTION_DAYS


# =============================================================================
# Constants
# =============================================================================

LOGS_DIR = Path(os.getenv("VERABOT_LOGS_DIR", "logs"))
"""Directory for all log files, organized by date."""

NY_TZ = ZoneInfo("America/New_York")


# =============================================================================
# Tree Logger Class
# =============================================================================

class TreeLogger:
    """
    Logger with tree-style formatting and Eastern timezone support.

    Attributes:
        run_id: Unique identifier for this process session.
        log_file: Path to the main log file.
        error_file: Path to the error-only log file.
    """

    def __init__(self, logs_dir: Path = LOGS_DIR, name: str = "Vera") -> None:
        self.run_id: str = str(uuid.uuid4())[:8]
        self._webhook_url: Optional[str] = None
        self._name = name
        self._logs_dir = logs_dir

        today = datetime.now(NY_TZ).strftime("%Y-%m-%d")
        self.log_dir = logs_dir / today
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.log_file = self.log_dir / f"{name}-{today}.log"
        self.error_file = self.log_dir / f"{name}-Errors-{today}.log"

        self._cleanup_old_logs()
        self._write_session_header()

    def set_webhook(self, url: Optional[str]) -> None:
        """Set webhook URL for error notifications."""
        self._webhook_url = url

    # =========================================================================
    # Log Cleanup
    # =========================================================================

    def _cleanup_old_logs(self) -> None:
        """
        Remove dated log directories older than the retention period.

        Only directories named YYYY-MM-DD are considered.
        """
        if not self._logs_dir.exists():
            return

        now = datetime.now()
        deleted = 0

        for item in self._logs_dir.iterdir():
            if not item.is_dir():
                continue
            try:
                dir_date = datetime.strptime(item.name, "%Y-%m-%d")
            except ValueError:
                continue
            if (now - dir_date).days > LOG_RETENTION_DAYS:
                for f in item.iterdir():
                    f.unlink()
                item.rmdir()
                deleted += 1

        if deleted > 0:
            print(f"[LOG CLEANUP] Removed {deleted} old log directories")

    def _write_session_header(self) -> None:
        header = f"""
============================================================
NEW SESSION - RUN ID: {self.run_id}
[{datetime.now(NY_TZ).strftime("%I:%M:%S %p %Z")}]
============================================================
"""
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(header)

    # =========================================================================
    # Core Logging
    # =========================================================================

    def _get_timestamp(self) -> str:
        return datetime.now(NY_TZ).strftime("[%I:%M:%S %p %Z]")

    def _write(
        self,
        message: str,
        emoji: str = "",
        include_timestamp: bool = True,
        is_error: bool = False,
    ) -> None:
        """
        Write a line to console and the main log file.

        Error lines are also copied to the error log.
        """
        if include_timestamp:
            timestamp = self._get_timestamp()
            full_message = f"{timestamp} {emoji} {message}" if emoji else f"{timestamp} {message}"
        else:
            full_message = f"{emoji} {message}" if emoji else message

        print(full_message)

        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(f"{full_message}\n")

        if is_error:
            with open(self.error_file, "a", encoding="utf-8") as f:
                f.write(f"{full_message}\n")

    def _write_items(self, items: List[Tuple[str, str]], is_error: bool = False) -> None:
        for i, (key, value) in enumerate(items):
            prefix = "└─" if i == len(items) - 1 else "├─"
            self._write(f"  {prefix} {key}: {value}", include_timestamp=False, is_error=is_error)

    # =========================================================================
    # Tree Formatting
    # =========================================================================

    def tree(
        self,
        title: str,
        items: List[Tuple[str, str]],
        emoji: str = "📦",
    ) -> None:
        """
        Log structured data in tree format.

        Example output:
            [02:30:45 PM EST] 🗄️ Guild Database Opened
              ├─ Guild: 123456789
              └─ Path: data/guilds/123456789/quotes.db
        """
        self._write(title, emoji=emoji)
        self._write_items(items)

    # =========================================================================
    # Log Levels
    # =========================================================================

    def debug(self, msg: str) -> None:
        """Log debug message (only if DEBUG env var set)."""
        if os.getenv("DEBUG"):
            self._write(msg, "🔍")

    def info(self, msg: str) -> None:
        self._write(msg, "ℹ️")

    def success(self, msg: str) -> None:
        self._write(msg, "✅")

    def warning(
        self,
        msg: str,
        details: Optional[List[Tuple[str, str]]] = None,
    ) -> None:
        """Log warning message, optionally with tree details."""
        self._write(msg, "⚠️")
        if details:
            self._write_items(details)

    def error(
        self,
        msg: str,
        details: Optional[List[Tuple[str, str]]] = None,
    ) -> None:
        """
        Log error message with optional structured details.

        Errors with details are sent to the webhook when one is configured
        and an event loop is running.
        """
        self._write(msg, "❌", is_error=True)
        if not details:
            return

        self._write_items(details, is_error=True)

        if self._webhook_url:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            loop.create_task(self._send_webhook_error(msg, details))

    def critical(self, msg: str) -> None:
        self._write(msg, "🚨", is_error=True)

    # =========================================================================
    # Webhook Integration
    # =========================================================================

    async def _send_webhook_error(
        self,
        title: str,
        details: List[Tuple[str, str]],
    ) -> None:
        """Post an error embed to the configured Discord webhook."""
        if not self._webhook_url:
            return

        description = "\n".join(f"**{k}:** {v}" for k, v in details)
        payload = {
            "embeds": [{
                "title": f"❌ {title}",
                "description": description,
                "color": 0xFF0000,
                "timestamp": datetime.now(NY_TZ).isoformat(),
                "footer": {"text": f"Run ID: {self.run_id}"},
            }]
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self._webhook_url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=10),
                ) as resp:
                    if resp.status != 204:
                        print(f"Webhook error: {resp.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            print(f"Failed to send webhook: {e}")


# =============================================================================
# Global Instance
# =============================================================================

logger = TreeLogger()
"""Global logger instance shared by every module."""


__all__ = ["logger", "TreeLogger", "LOGS_DIR", "NY_TZ"]
