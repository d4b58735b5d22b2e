"""Time helpers: UTC normalization and business-day boundaries."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC.

    SQLite drops tzinfo on round-trip, so naive values read back from the database are
    interpreted as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def business_date(moment: datetime, tz: ZoneInfo) -> date:
    """Calendar date of an instant in the business timezone."""
    return as_utc(moment).astimezone(tz).date()


def end_of_business_day(day: date, tz: ZoneInfo) -> datetime:
    """Last instant (UTC) that still belongs to `day` in the business timezone."""
    next_midnight = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return next_midnight.astimezone(UTC) - timedelta(microseconds=1)
