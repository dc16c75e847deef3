"""
VeraBot - Time Formatting Utils
===============================

Timestamp helpers for values stored in guild databases.

Stored timestamps are ISO-8601 strings in UTC so they sort and compare
correctly as text inside SQLite.
"""

from datetime import datetime, timezone
from typing import Optional, Union


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with microseconds."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def to_iso(value: Union[str, datetime, None]) -> Optional[str]:
    """
    Normalize a datetime or ISO string to the stored UTC format.

    Naive datetimes are taken as UTC. Strings are parsed and re-emitted
    so that comparisons against utc_now_iso() are consistent.

    Raises:
        ValueError: If a string is not a valid ISO-8601 timestamp.
    """
    if value is None:
        return None
    if isinstance(value, str):
        # Python < 3.11 does not accept a trailing "Z"
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


__all__ = ["utc_now_iso", "to_iso"]
