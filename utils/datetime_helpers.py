"""Timezone-aware date/time helpers for the reservation core."""

from datetime import datetime, time
from zoneinfo import ZoneInfo

from flask import current_app

DB_DATETIME_FORMAT = '%Y-%m-%d %H:%M:%S'


def get_timezone() -> ZoneInfo:
    """Get the configured venue timezone."""
    tz_name = current_app.config.get('TIMEZONE', 'Asia/Bangkok')
    return ZoneInfo(tz_name)


def get_now() -> datetime:
    """Get current datetime in the configured timezone."""
    return datetime.now(get_timezone())


def to_local_naive(value: datetime) -> datetime:
    """
    Normalize a datetime to naive venue-local time, truncated to seconds.

    Naive values are assumed to already be venue-local.
    """
    if value.tzinfo is not None:
        value = value.astimezone(get_timezone()).replace(tzinfo=None)
    return value.replace(microsecond=0)


def to_db(value: datetime) -> str:
    """Format a datetime for storage. Stored strings sort chronologically."""
    return to_local_naive(value).strftime(DB_DATETIME_FORMAT)


def from_db(value) -> datetime:
    """Parse a stored datetime string (None passes through)."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.strptime(value, DB_DATETIME_FORMAT)


def parse_datetime(value) -> datetime:
    """
    Accept a datetime or an ISO 8601 string.

    Raises:
        ValueError: If the string cannot be parsed
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip())
    raise ValueError(f'Expected datetime, got {type(value).__name__}')


def parse_time(value) -> time:
    """Parse 'HH:MM' (or 'HH:MM:SS') into a time."""
    if isinstance(value, time):
        return value
    return time.fromisoformat(value.strip())


def format_hhmm(value: datetime) -> str:
    return value.strftime('%H:%M')
