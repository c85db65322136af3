"""Datetime utilities for timezone-aware UTC timestamps.

Usage:
    from donation_ledger.utils.datetime_utils import utc_now

    # For SQLAlchemy Column defaults
    recorded_at = Column(DateTime, default=utc_now)
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def start_of_day(value: Union[date, datetime]) -> datetime:
    """Return midnight at the start of the given day."""
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min)


def end_of_day_exclusive(value: Optional[Union[date, datetime]]) -> Optional[datetime]:
    """
    Return midnight of the day after ``value``.

    Date windows over consumption history include the whole final day, so
    callers filter with ``< end_of_day_exclusive(end)``.

    Args:
        value: Last day to include, or None

    Returns:
        Exclusive upper bound, or None when value is None
    """
    if value is None:
        return None
    return start_of_day(value) + timedelta(days=1)
