"""
UTC time helpers shared by the pipeline.

Timestamps are stored as naive UTC datetimes so that SQLite comparisons
between stored values and bound parameters stay consistent.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def day_window(day: date) -> Tuple[datetime, datetime]:
    """Half-open [start, end) window covering one UTC calendar day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def previous_day(now: Optional[datetime] = None) -> date:
    now = now or utcnow()
    return (now - timedelta(days=1)).date()
