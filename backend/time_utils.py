"""
Time utilities for the Task Manager application.

This module provides a single source of truth for time operations,
ensuring consistency across all endpoints and preventing clock drift issues.
"""

from datetime import datetime, timezone
from typing import Optional


TREND_BUCKET_FORMATS = {
    "day": "%Y-%m-%d",
    "week": "%Y-%U",
    "month": "%Y-%m",
}


def utc_now() -> datetime:
    """
    Get current UTC time.
    Single source of truth for "now" throughout the application.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a client-supplied datetime to UTC.

    Naive values are assumed to already be UTC. Aware values are converted,
    so that databases which drop the offset (SQLite) still store UTC wall time.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_overdue(due_date: Optional[datetime], status: str) -> bool:
    """
    Check if a task is overdue.

    A task is overdue if it has a due date in the past and is not done.

    Args:
        due_date: The task's due date
        status: The task's status value

    Returns:
        True if task is overdue (due in past, not done), False otherwise
    """
    if not due_date or status == "done":
        return False
    return to_utc(due_date) < utc_now()


def days_between(start: datetime, end: datetime) -> float:
    """Elapsed time from start to end, in fractional days."""
    return (to_utc(end) - to_utc(start)).total_seconds() / 86400


def trend_bucket(value: datetime, period: str) -> str:
    """
    Bucket key for a timestamp at the given granularity.

    Args:
        value: Timestamp to bucket (usually a task's created_at)
        period: 'day', 'week' (Sunday-based week of year) or 'month'

    Returns:
        Sortable key such as '2024-03-07', '2024-09' or '2024-03'
    """
    return to_utc(value).strftime(TREND_BUCKET_FORMATS[period])
