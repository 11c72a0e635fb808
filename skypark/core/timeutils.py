"""
Time helpers

Parks store a fixed UTC offset; all persisted instants are UTC.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def park_tz(utc_offset_minutes: int) -> timezone:
    return timezone(timedelta(minutes=utc_offset_minutes))


def park_local_to_utc(day: date, at: time, utc_offset_minutes: int) -> datetime:
    """Convert a park-local wall clock time to a UTC instant"""
    local = datetime.combine(day, at, tzinfo=park_tz(utc_offset_minutes))
    return local.astimezone(timezone.utc)


def park_end_of_day(day: date, utc_offset_minutes: int) -> datetime:
    """Last second of `day` in park-local time, as UTC"""
    return park_local_to_utc(day, time(23, 59, 59), utc_offset_minutes)


def park_today(utc_offset_minutes: int, now: Optional[datetime] = None) -> date:
    return (now or utcnow()).astimezone(park_tz(utc_offset_minutes)).date()


def compact_timestamp(value: datetime) -> str:
    """UTC timestamp in the QR wire format, e.g. 20250101T093000Z"""
    return as_utc(value).astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def parse_compact_timestamp(value: str) -> datetime:
    return datetime.strptime(value, "%Y%m%dT%H%M%SZ").replace(tzinfo=timezone.utc)
