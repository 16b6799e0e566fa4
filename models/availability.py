"""
Room availability engine.
Interval overlap checks, slot enumeration and next-free suggestions.

The engine is a pure availability predicate: callers validate ordering,
duration bounds and "not in the past" before asking it anything.
"""

from datetime import date, datetime, time, timedelta

from flask import current_app

from database import get_db
from utils.datetime_helpers import from_db, parse_time, to_db, to_local_naive
from utils.errors import NotFoundError
from .reservation_state import RELEASING_STATUSES

# Stored room statuses that make every slot unbookable
OUT_OF_SERVICE_STATUSES = ('maintenance', 'out_of_order')


# =============================================================================
# PURE HELPERS
# =============================================================================

def intervals_overlap(start1: datetime, end1: datetime,
                      start2: datetime, end2: datetime) -> bool:
    """Half-open intervals [s1, e1) and [s2, e2) share an instant."""
    return start1 < end2 and start2 < end1


def build_operating_window(day: date, open_time: time, close_time: time) -> tuple:
    """
    Operating window for a calendar day.

    A closing time at or before the opening time belongs to the next
    day (18:00-02:00 runs overnight; equal times mean 24 hours).

    Returns:
        tuple: (window_start, window_end)
    """
    window_start = datetime.combine(day, open_time)
    window_end = datetime.combine(day, close_time)
    if window_end <= window_start:
        window_end += timedelta(days=1)
    return window_start, window_end


def generate_slot_windows(window_start: datetime, window_end: datetime,
                          granularity_minutes: int) -> list:
    """Whole slots of ``granularity_minutes`` inside the window."""
    if granularity_minutes <= 0:
        raise ValueError('Slot granularity must be positive')

    step = timedelta(minutes=granularity_minutes)
    slots = []
    slot_start = window_start
    while slot_start + step <= window_end:
        slots.append((slot_start, slot_start + step))
        slot_start += step
    return slots


def first_free_start(busy: list, start: datetime, duration: timedelta,
                     step: timedelta, horizon: timedelta):
    """
    Lowest ``start + k * step`` (k >= 1) whose window is free.

    Args:
        busy: List of (start, end) intervals already taken
        start: Requested start
        duration: Length of the requested window
        step: Search granularity
        horizon: How far past ``start`` to look

    Returns:
        datetime or None if nothing is free within the horizon
    """
    limit = start + horizon
    candidate = start + step
    while candidate <= limit:
        candidate_end = candidate + duration
        if not any(intervals_overlap(candidate, candidate_end, b_start, b_end)
                   for b_start, b_end in busy):
            return candidate
        candidate += step
    return None


# =============================================================================
# QUERIES
# =============================================================================

def _active_reservations_between(cursor, room_id: int, start: datetime, end: datetime,
                                 exclude_reservation_id: int = None) -> list:
    placeholders = ','.join('?' * len(RELEASING_STATUSES))
    query = f'''
        SELECT id, user_id, start_time, end_time, status
        FROM reservations
        WHERE room_id = ?
          AND status NOT IN ({placeholders})
          AND start_time < ?
          AND end_time > ?
    '''
    params = [room_id, *RELEASING_STATUSES, to_db(end), to_db(start)]

    # Exclude specific reservation (for updates)
    if exclude_reservation_id:
        query += ' AND id != ?'
        params.append(exclude_reservation_id)

    query += ' ORDER BY start_time'
    cursor.execute(query, params)

    rows = []
    for row in cursor.fetchall():
        entry = dict(row)
        entry['start_time'] = from_db(entry['start_time'])
        entry['end_time'] = from_db(entry['end_time'])
        rows.append(entry)
    return rows


def find_conflicts(room_id: int, start: datetime, end: datetime,
                   exclude_reservation_id: int = None, cursor=None) -> list:
    """
    Live reservations on the room overlapping [start, end).

    Args:
        room_id: Room ID
        start: Window start
        end: Window end (exclusive)
        exclude_reservation_id: Reservation ID to ignore (for edits)
        cursor: Active transaction cursor

    Returns:
        list: Conflicting reservation dicts ordered by start
    """
    cur = cursor or get_db().cursor()
    return _active_reservations_between(
        cur, room_id, to_local_naive(start), to_local_naive(end), exclude_reservation_id
    )


def is_window_free(room_id: int, start: datetime, end: datetime,
                   exclude_reservation_id: int = None, cursor=None) -> bool:
    return not find_conflicts(room_id, start, end, exclude_reservation_id, cursor)


def suggest_next_available(room_id: int, start: datetime, end: datetime,
                           exclude_reservation_id: int = None, cursor=None):
    """
    Next start on the same room, same duration, that is free.

    Busy intervals are loaded once for the whole search range.

    Returns:
        datetime or None
    """
    start = to_local_naive(start)
    end = to_local_naive(end)
    duration = end - start
    step = timedelta(minutes=current_app.config.get('SLOT_MINUTES', 60))
    horizon = timedelta(hours=current_app.config.get('SUGGESTION_HORIZON_HOURS', 24))

    cur = cursor or get_db().cursor()
    busy = [
        (r['start_time'], r['end_time'])
        for r in _active_reservations_between(
            cur, room_id, start, start + horizon + duration, exclude_reservation_id
        )
    ]
    return first_free_start(busy, start, duration, step, horizon)


def enumerate_slots(room_id: int, day: date, granularity_minutes: int = None,
                    cursor=None) -> list:
    """
    Bookable slots for a room on a calendar day.

    Args:
        room_id: Room ID
        day: Calendar day the operating window opens on
        granularity_minutes: Slot length (default: SLOT_MINUTES)
        cursor: Active transaction cursor

    Returns:
        list: [{'start': datetime, 'end': datetime, 'available': bool}, ...]

    Raises:
        NotFoundError: If the room does not exist
    """
    if granularity_minutes is None:
        granularity_minutes = current_app.config.get('SLOT_MINUTES', 60)

    cur = cursor or get_db().cursor()
    cur.execute('SELECT id, status, open_time, close_time FROM rooms WHERE id = ?', (room_id,))
    room = cur.fetchone()
    if room is None:
        raise NotFoundError(f'Room {room_id} not found')

    window_start, window_end = build_operating_window(
        day, parse_time(room['open_time']), parse_time(room['close_time'])
    )
    windows = generate_slot_windows(window_start, window_end, granularity_minutes)

    if room['status'] in OUT_OF_SERVICE_STATUSES:
        return [{'start': s, 'end': e, 'available': False} for s, e in windows]

    # One query for the whole window, overlap per slot in memory
    busy = [
        (r['start_time'], r['end_time'])
        for r in _active_reservations_between(cur, room_id, window_start, window_end)
    ]

    return [
        {
            'start': slot_start,
            'end': slot_end,
            'available': not any(
                intervals_overlap(slot_start, slot_end, b_start, b_end)
                for b_start, b_end in busy
            ),
        }
        for slot_start, slot_end in windows
    ]
