"""
Timezone utilities for session scheduling.

Sessions store a local calendar date plus an "HH:MM" wall-clock time in the
consultant's booking timezone. These helpers turn that pair into aware UTC
datetimes and back.
"""

from datetime import date, datetime, time, timezone
from typing import Optional

import pytz

from consultdesk.core.config import settings


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def get_booking_timezone(tz_name: Optional[str] = None) -> pytz.BaseTzInfo:
    return pytz.timezone(tz_name or settings.booking_timezone)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    SQLite hands back naive datetimes for timezone-aware columns; those are
    stored as UTC so they are tagged rather than converted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_hhmm(value: str) -> time:
    """Parse an "HH:MM" string into a time object."""
    hours, minutes = value.strip().split(":", 1)
    return time(hour=int(hours), minute=int(minutes))


def session_start_utc(
    scheduled_date: date, scheduled_time: str, tz_name: Optional[str] = None
) -> datetime:
    """Combine a local date and "HH:MM" time into an aware UTC datetime."""
    tz = get_booking_timezone(tz_name)
    local_dt = tz.localize(datetime.combine(scheduled_date, parse_hhmm(scheduled_time)))
    return local_dt.astimezone(timezone.utc)


def local_now(tz_name: Optional[str] = None) -> datetime:
    return datetime.now(get_booking_timezone(tz_name))


def local_midnight_utc(tz_name: Optional[str] = None) -> datetime:
    """Return today's local midnight expressed in UTC."""
    tz = get_booking_timezone(tz_name)
    today = datetime.now(tz).date()
    return tz.localize(datetime.combine(today, time.min)).astimezone(timezone.utc)
