#!/usr/bin/env python3
"""
VeraBot Entry Point
===================

Loads the environment, validates configuration and runs the bot until
interrupted.
"""

import asyncio
import sys

from dotenv import load_dotenv

from verabot.core.config import ConfigValidationError, validate_and_log_config
from verabot.core.logger import logger


async def main() -> None:
    """
    Main entry point for VeraBot.

    Raises:
        SystemExit: If configuration is invalid or the bot fails to start.
    """
    load_dotenv()

    try:
        config = validate_and_log_config()
    except ConfigValidationError as e:
        logger.error("Invalid Configuration", [("Error", str(e))])
        sys.exit(1)

    logger.set_webhook(config.error_webhook_url)

    from verabot.bot import VeraBot

    bot = VeraBot(config)
    try:
        async with bot:
            await bot.start(config.discord_token)
    except Exception as e:
        logger.critical(f"Bot crashed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user (Ctrl+C)")
