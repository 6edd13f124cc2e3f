# backend/portfolio_manager/utils/date_utils.py
"""
Date utility functions for the valuation engine.

All valuation dates are calendar dates in UTC. Callers may hand in
timezone-aware datetimes; they are converted to UTC before the time part
is dropped, so a timestamp late in the evening in New York lands on the
next UTC day.

Usage:
    from portfolio_manager.utils.date_utils import iter_days, to_utc_date

    for day in iter_days(start, end):
        ...
"""

from collections.abc import Iterator
from datetime import date, datetime, timedelta, timezone


def to_utc_date(value: date | datetime) -> date:
    """
    Normalize a date or datetime to a UTC calendar date.

    Naive datetimes are taken to already be in UTC.

    Args:
        value: Date or datetime to normalize

    Returns:
        The calendar date at midnight UTC
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def today_utc() -> date:
    """Return today's date in UTC."""
    return datetime.now(timezone.utc).date()


def iter_days(start_date: date, end_date: date) -> Iterator[date]:
    """
    Yield every calendar day from start_date to end_date inclusive.

    Yields nothing when start_date is after end_date.

    Example:
        >>> list(iter_days(date(2024, 1, 30), date(2024, 2, 1)))
        [date(2024, 1, 30), date(2024, 1, 31), date(2024, 2, 1)]
    """
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def format_iso_date(value: date) -> str:
    """Format a date as YYYY-MM-DD."""
    return value.strftime("%Y-%m-%d")
