"""
VeraBot - Database Type Definitions
===================================

TypedDict definitions for records returned by the guild services.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, TypedDict


class QuoteRecord(TypedDict, total=False):
    """Type for quote rows."""
    id: int
    text: str
    author: str
    addedAt: str
    category: str
    averageRating: float
    ratingCount: int
    createdAt: str
    updatedAt: str


class QuoteRatingSummary(TypedDict):
    """Average rating and number of ratings for one quote."""
    average: float
    count: int


class ReminderRecord(TypedDict, total=False):
    """Type for reminder rows."""
    id: int
    subject: str
    category: str
    when_datetime: str
    content: Optional[str]
    link: Optional[str]
    image: Optional[str]
    notificationTime: Optional[str]
    status: str
    notification_method: str
    createdAt: str
    updatedAt: str


class ReminderAssignmentRecord(TypedDict, total=False):
    """Type for reminder assignment rows."""
    id: int
    reminderId: int
    assigneeType: str
    assigneeId: str
    createdAt: str


class ReminderNotificationRecord(TypedDict, total=False):
    """Type for reminder delivery attempts."""
    id: int
    reminderId: int
    assigneeId: str
    notifiedAt: Optional[str]
    readAt: Optional[str]
    status: str
    error: Optional[str]
    createdAt: str


class CommunicationRecord(TypedDict, total=False):
    """Type for a user's communication preference row."""
    userId: str
    opted_in: bool
    preferences: Dict[str, Any]
    createdAt: Optional[str]
    updatedAt: Optional[str]


@dataclass(frozen=True)
class TableCount:
    """
    Row count that remembers whether the table existed.

    A guild database that predates a feature has no table for it; that is
    reported as TableCount(0, table_present=False) instead of an error.
    """
    count: int
    table_present: bool = True


__all__ = [
    "QuoteRecord",
    "QuoteRatingSummary",
    "ReminderRecord",
    "ReminderAssignmentRecord",
    "ReminderNotificationRecord",
    "CommunicationRecord",
    "TableCount",
]
