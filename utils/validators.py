"""
Input validation helper functions.
Provides validation for reservation windows and status values.
"""

from datetime import datetime


def validate_time_window(start: datetime, end: datetime) -> bool:
    """
    Validate that a window is well ordered.

    Args:
        start: Window start
        end: Window end (exclusive)

    Returns:
        True if end is strictly after start
    """
    if start is None or end is None:
        return False
    return end > start


def validate_duration(start: datetime, end: datetime,
                      min_hours: float, max_hours: float) -> tuple:
    """
    Validate window duration against configured bounds.

    Args:
        start: Window start
        end: Window end
        min_hours: Minimum allowed duration in hours
        max_hours: Maximum allowed duration in hours

    Returns:
        tuple: (is_valid, error_message)
    """
    hours = (end - start).total_seconds() / 3600

    if hours < min_hours:
        return False, f'Reservation must last at least {min_hours:g} hour(s)'

    if hours > max_hours:
        return False, f'Reservation cannot last more than {max_hours:g} hours'

    return True, ''


def validate_future_start(start: datetime, now: datetime) -> bool:
    """True if the window starts strictly after ``now``."""
    return start > now


def validate_amount(amount) -> bool:
    """Order amounts must be positive numbers."""
    if isinstance(amount, bool):
        return False
    try:
        return float(amount) > 0
    except (TypeError, ValueError):
        return False
