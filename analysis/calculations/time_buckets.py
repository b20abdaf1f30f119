"""
Time-bucketing utilities.
Pure functions mapping timestamps to grouping keys.
"""

from datetime import date, datetime
from typing import Union


WEEKEND_DAYS = {0, 6}

DAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']


def hour_of_day(ts: datetime) -> int:
    """Hour of day, 0-23."""
    return ts.hour


def day_of_week(ts: Union[date, datetime]) -> int:
    """
    Day of week with Sunday as 0 and Saturday as 6.

    Python's isoweekday() is Monday=1..Sunday=7, so Sunday wraps to 0.
    """
    return ts.isoweekday() % 7


def day_name(ts: Union[date, datetime]) -> str:
    """English day name, e.g. 'Sunday'."""
    return DAY_NAMES[day_of_week(ts)]


def calendar_date(ts: Union[date, datetime]) -> date:
    """Truncate a timestamp to day granularity."""
    if isinstance(ts, datetime):
        return ts.date()
    return ts


def year_month(ts: Union[date, datetime]) -> str:
    """Year-month bucket as 'YYYY-MM'."""
    return f"{ts.year:04d}-{ts.month:02d}"


def is_weekend(ts: Union[date, datetime]) -> bool:
    """True for Saturday and Sunday."""
    return day_of_week(ts) in WEEKEND_DAYS


def day_type(ts: Union[date, datetime]) -> str:
    """'weekend' or 'weekday'."""
    return 'weekend' if is_weekend(ts) else 'weekday'
