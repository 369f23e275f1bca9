"""
Business-day arithmetic for end-of-day reconciliation.

Pure functions over an explicit ``now``; callers pass the injected clock's
reading.  Times of day come from configuration.
"""

from datetime import date, datetime, time, timedelta


def parse_time_of_day(value: str) -> time:
    """Parse ``HH:MM:SS`` (or ``HH:MM``) into a ``time``.

    Raises:
        ValueError: on any other shape.
    """
    return time.fromisoformat(value)


def at_time_of_day(now: datetime, time_of_day: time) -> datetime:
    """The given time of day on ``now``'s calendar day, in ``now``'s zone."""
    return datetime.combine(now.date(), time_of_day, tzinfo=now.tzinfo)


def next_day_at(now: datetime, time_of_day: time) -> datetime:
    """The given time of day on the calendar day after ``now``."""
    return at_time_of_day(now + timedelta(days=1), time_of_day)


def calendar_day(value: datetime) -> date:
    """Calendar day of a timestamp, ignoring any zone information.

    Stored timestamps may come back naive from some backends; comparing
    calendar days avoids mixing naive and aware values.
    """
    return value.date()
