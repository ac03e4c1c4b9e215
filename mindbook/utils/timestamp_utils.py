"""
Timestamp utilities: every calendar decision in Mindbook is made in UTC.
"""

import calendar
from datetime import datetime, timezone
from typing import Optional, Union

MONTH_NAMES = list(calendar.month_name)[1:]
DAY_NAMES = list(calendar.day_name)

TimestampLike = Union[int, float, datetime, None]


def to_utc_datetime(timestamp: TimestampLike = None) -> datetime:
    """Convert a unix timestamp or datetime to an aware UTC datetime.

    Naive datetimes are taken to already be in UTC.
    """
    if timestamp is None:
        return datetime.now(timezone.utc)
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            return timestamp.replace(tzinfo=timezone.utc)
        return timestamp.astimezone(timezone.utc)
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def month_name(month: int) -> str:
    """Full English month name for a 1-based month number."""
    return MONTH_NAMES[month - 1]


def month_number(name: str) -> Optional[int]:
    """1-based month number for a full English month name, case-insensitive."""
    lowered = name.strip().lower()
    for index, candidate in enumerate(MONTH_NAMES):
        if candidate.lower() == lowered:
            return index + 1
    return None


def describe_now(now: datetime) -> str:
    """Human readable current date used in model instructions, e.g. 'Friday, January 5, 2024'."""
    return f'{DAY_NAMES[now.weekday()]}, {month_name(now.month)} {now.day}, {now.year}'
