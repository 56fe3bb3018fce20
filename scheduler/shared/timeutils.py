"""
Clinic time helpers

Appointments are stored as naive UTC datetimes. Availability cache slots are
clinic-local wall-clock times ("HH:MM") on a clinic-local date.
"""

from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..config import CLINIC_TIMEZONE


def get_zone(tz_name: Optional[str] = None) -> ZoneInfo:
    """ZoneInfo for tz_name, raising ValueError for unknown zones"""
    name = tz_name or CLINIC_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown time zone: {name}") from e


def utc_now() -> datetime:
    """Current time as naive UTC, matching stored appointment times"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def clinic_today(tz_name: Optional[str] = None) -> date:
    """Local date at the clinic, which is the day boundary for bookability"""
    return datetime.now(get_zone(tz_name)).date()


def to_utc_naive(value: datetime, tz_name: Optional[str] = None) -> datetime:
    """Aware datetimes are converted; naive ones are read as clinic-local"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=get_zone(tz_name))
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def local_to_utc_naive(day: date, wall_time: time, tz_name: Optional[str] = None) -> datetime:
    return to_utc_naive(datetime.combine(day, wall_time), tz_name)


def utc_naive_to_local(value: datetime, tz_name: Optional[str] = None) -> datetime:
    return value.replace(tzinfo=timezone.utc).astimezone(get_zone(tz_name))


def parse_hhmm(value: str) -> time:
    """Parse 'HH:MM' or 'HH:MM:SS'"""
    return time.fromisoformat(value)
