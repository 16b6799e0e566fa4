"""
Room data access and status tracking.

The stored status only holds available/maintenance/out_of_order.
'booked' is derived: an available room with a live reservation
overlapping now reports booked.
"""

import logging
from datetime import datetime

from flask import current_app

from database import get_db, immediate_transaction
from utils.datetime_helpers import get_now, parse_time, to_db, to_local_naive
from utils.errors import ConcurrentUpdateError, NotFoundError, ValidationError
from .reservation_state import ACTIVE_STATUSES
from .slot_cache import invalidate_room_slots
from .transitions import ROOM_TRANSITIONS, validate_room_transition

logger = logging.getLogger(__name__)

DERIVED_ROOM_STATUSES = ('booked',)


# =============================================================================
# CREATE / READ
# =============================================================================

def create_room(name: str, capacity: int = 1, hourly_rate: float = 0.0,
                open_time: str = None, close_time: str = None) -> int:
    """
    Create a room.

    Args:
        name: Unique room name
        capacity: Maximum people
        hourly_rate: Price per hour
        open_time: Opening time 'HH:MM' (default: DEFAULT_OPEN_TIME)
        close_time: Closing time 'HH:MM' (default: DEFAULT_CLOSE_TIME)

    Returns:
        int: New room ID

    Raises:
        ValidationError: If a time is malformed or the name is empty
    """
    if not name or not name.strip():
        raise ValidationError('Room name is required', cause='field')

    open_time = open_time or current_app.config.get('DEFAULT_OPEN_TIME', '18:00')
    close_time = close_time or current_app.config.get('DEFAULT_CLOSE_TIME', '02:00')
    try:
        open_time = parse_time(open_time).strftime('%H:%M')
        close_time = parse_time(close_time).strftime('%H:%M')
    except ValueError as e:
        raise ValidationError(f'Invalid operating hours: {e}', cause='field') from e

    db = get_db()
    cursor = db.cursor()
    cursor.execute('''
        INSERT INTO rooms (name, capacity, hourly_rate, open_time, close_time)
        VALUES (?, ?, ?, ?, ?)
    ''', (name.strip(), capacity, hourly_rate, open_time, close_time))
    db.commit()
    return cursor.lastrowid


def get_room(room_id: int) -> dict:
    """Get room by ID, or None."""
    db = get_db()
    cursor = db.cursor()
    cursor.execute('SELECT * FROM rooms WHERE id = ?', (room_id,))
    row = cursor.fetchone()
    return dict(row) if row else None


def get_all_rooms() -> list:
    db = get_db()
    cursor = db.cursor()
    cursor.execute('SELECT * FROM rooms ORDER BY name')
    return [dict(row) for row in cursor.fetchall()]


def get_room_status_history(room_id: int) -> list:
    db = get_db()
    cursor = db.cursor()
    cursor.execute('''
        SELECT * FROM room_status_history
        WHERE room_id = ?
        ORDER BY created_at DESC, id DESC
    ''', (room_id,))
    return [dict(row) for row in cursor.fetchall()]


# =============================================================================
# STATUS
# =============================================================================

def _is_occupied(cursor, room_id: int, now: datetime) -> bool:
    placeholders = ','.join('?' * len(ACTIVE_STATUSES))
    moment = to_db(now)
    cursor.execute(f'''
        SELECT 1 FROM reservations
        WHERE room_id = ?
          AND status IN ({placeholders})
          AND start_time <= ?
          AND end_time > ?
        LIMIT 1
    ''', (room_id, *ACTIVE_STATUSES, moment, moment))
    return cursor.fetchone() is not None


def _effective_status(cursor, room: dict, now: datetime) -> str:
    if room['status'] == 'available' and _is_occupied(cursor, room['id'], now):
        return 'booked'
    return room['status']


def get_effective_room_status(room_id: int, now: datetime = None) -> str:
    """
    Room status as seen at ``now``.

    Raises:
        NotFoundError: If the room does not exist
    """
    now = to_local_naive(now or get_now())
    db = get_db()
    cursor = db.cursor()
    cursor.execute('SELECT id, status FROM rooms WHERE id = ?', (room_id,))
    room = cursor.fetchone()
    if room is None:
        raise NotFoundError(f'Room {room_id} not found')
    return _effective_status(cursor, dict(room), now)


def set_room_status(room_id: int, new_status: str, changed_by: str = 'admin',
                    now: datetime = None) -> dict:
    """
    Move a room along the room transition table.

    The transition is validated from the effective status, so a room
    that is occupied right now cannot be sent to maintenance.

    Args:
        room_id: Room ID
        new_status: 'available', 'maintenance' or 'out_of_order'
        changed_by: Actor recorded in history
        now: Reference time for the occupancy check

    Returns:
        dict: Updated room

    Raises:
        ValidationError: If new_status is derived ('booked') or unknown
        NotFoundError: If the room does not exist
        InvalidStateTransitionError: If the move is not allowed
        ConcurrentUpdateError: If the stored status changed meanwhile
    """
    if new_status in DERIVED_ROOM_STATUSES:
        raise ValidationError(
            "'booked' is derived from reservations and cannot be set directly",
            cause='field'
        )
    if new_status not in ROOM_TRANSITIONS:
        raise ValidationError(f"Unknown room status '{new_status}'", cause='field')

    now = to_local_naive(now or get_now())

    with immediate_transaction() as cursor:
        cursor.execute('SELECT id, name, status FROM rooms WHERE id = ?', (room_id,))
        row = cursor.fetchone()
        if row is None:
            raise NotFoundError(f'Room {room_id} not found')
        room = dict(row)

        current = _effective_status(cursor, room, now)
        validate_room_transition(current, new_status)
        if room['status'] == new_status:
            # booked -> available: occupancy ends with the reservation
            raise ValidationError(
                f"Room {room['name']} is occupied; it becomes available when the reservation ends",
                cause='field'
            )

        cursor.execute('''
            UPDATE rooms
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = ?
        ''', (new_status, room_id, room['status']))
        if cursor.rowcount == 0:
            raise ConcurrentUpdateError(f'Room {room_id} changed while updating status')

        cursor.execute('''
            INSERT INTO room_status_history (room_id, from_status, to_status, changed_by)
            VALUES (?, ?, ?, ?)
        ''', (room_id, current, new_status, str(changed_by)))

        if new_status != 'available':
            placeholders = ','.join('?' * len(ACTIVE_STATUSES))
            cursor.execute(f'''
                SELECT COUNT(*) AS n FROM reservations
                WHERE room_id = ? AND status IN ({placeholders}) AND end_time > ?
            ''', (room_id, *ACTIVE_STATUSES, to_db(now)))
            upcoming = cursor.fetchone()['n']
            if upcoming:
                logger.warning('Room %s set to %s with %d live reservation(s) ahead',
                               room['name'], new_status, upcoming)

    invalidate_room_slots(room_id)
    logger.info('Room %s: %s -> %s by %s', room_id, current, new_status, changed_by)
    return get_room(room_id)
