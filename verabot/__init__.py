"""
VeraBot
=======

Discord bot storage core: per-guild SQLite databases with quote, reminder
and communication-preference services.
"""

__version__ = "1.0.0"
