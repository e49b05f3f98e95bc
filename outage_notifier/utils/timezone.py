"""Timezone and wall-clock utilities"""
import time
from datetime import datetime, time as dt_time
import pytz


def get_timezone(tz: str) -> pytz.BaseTzInfo:
    """
    Look up a timezone by name.
    
    Args:
        tz: Timezone string (e.g., 'Europe/Kyiv')
    
    Returns:
        pytz timezone object
    
    Raises:
        ValueError: If the timezone name is unknown
    """
    try:
        return pytz.timezone(tz)
    except pytz.UnknownTimeZoneError:
        raise ValueError(f"Unknown timezone: {tz}")


def to_local(dt: datetime, tz: str) -> datetime:
    """
    Convert a datetime to the given local timezone.
    
    Args:
        dt: Datetime object (naive datetimes are assumed to be UTC)
        tz: Target timezone string
    
    Returns:
        Timezone-aware datetime in the target timezone
    """
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt.astimezone(get_timezone(tz))


def now_utc() -> datetime:
    """Get current UTC time as an aware datetime"""
    return datetime.now(pytz.UTC)


def now_local(tz: str) -> datetime:
    """Get current wall-clock time in the given timezone"""
    return to_local(now_utc(), tz)


def now_timestamp() -> int:
    """Get current time as integer epoch seconds"""
    return int(time.time())


def parse_hhmm(value: str) -> dt_time:
    """
    Parse an 'HH:MM' string into a time object.
    
    Raises:
        ValueError: If the value is not a valid wall-clock time
    """
    parts = value.strip().split(":")
    if len(parts) != 2 or not parts[0].isdigit() or not parts[1].isdigit():
        raise ValueError(f"Expected HH:MM, got '{value}'")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Time out of range: '{value}'")
    return dt_time(hour, minute)


def in_window(moment: datetime, start: dt_time, end: dt_time) -> bool:
    """
    Check whether a wall-clock moment falls inside [start, end).
    
    Windows whose end is earlier than their start wrap past midnight.
    
    Args:
        moment: Local datetime to test
        start: Window start (inclusive)
        end: Window end (exclusive)
    
    Returns:
        True if the moment's time of day is inside the window
    """
    current = moment.time().replace(second=0, microsecond=0)
    if start <= end:
        return start <= current < end
    return current >= start or current < end
