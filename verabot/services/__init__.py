"""
VeraBot - Services Package
==========================

Guild-scoped services built on the guild database layer.

DESIGN:
    Every service takes the guild id as the first argument of each
    operation and borrows the guild's handle from GuildDatabaseManager.
    Services never open or close connections themselves.

Available Services:
    QuoteService: Quotes, ratings and tags
    ReminderService: Reminders, assignments and delivery records
    CommunicationService: DM opt-in state and preferences
    ReminderScheduler: Background delivery of due reminders
"""

from .quotes import QuoteService
from .reminders import ReminderService
from .communication import CommunicationService
from .reminder_scheduler import ReminderScheduler

__all__ = [
    "QuoteService",
    "ReminderService",
    "CommunicationService",
    "ReminderScheduler",
]
