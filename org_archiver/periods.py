"""UTC calendar arithmetic for archive periods (days and calendar months)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

ONE_DAY = timedelta(days=1)


def as_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime (naive values are taken to be UTC already)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def truncate_day(value: datetime) -> datetime:
    """Midnight UTC of the day containing value."""
    value = as_utc(value)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def truncate_month(value: datetime) -> datetime:
    """Midnight UTC of the first day of the month containing value."""
    value = as_utc(value)
    return datetime(value.year, value.month, 1, tzinfo=timezone.utc)


def next_month(value: datetime) -> datetime:
    """First day of the calendar month after the one containing value."""
    start = truncate_month(value)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def days_between(start: datetime, end: datetime) -> list[datetime]:
    """Every day start in [start, end), both truncated to days."""
    day = truncate_day(start)
    end = truncate_day(end)
    days = []
    while day < end:
        days.append(day)
        day += ONE_DAY
    return days


def isoformat(value: datetime | None) -> str | None:
    """RFC 3339 UTC timestamp used in serialized records, e.g. 2017-08-12T21:11:59.890662Z."""
    if value is None:
        return None
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
