"""
Reservation CRUD operations.
Handles create, read and update for reservations.

Every time-affecting write runs its overlap check and its INSERT/UPDATE
inside one BEGIN IMMEDIATE transaction.
"""

import logging
import sqlite3
from datetime import datetime

from flask import current_app

from database import get_db, immediate_transaction
from utils.datetime_helpers import format_hhmm, get_now, parse_datetime, to_db, to_local_naive
from utils.errors import (
    ConcurrentUpdateError,
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from utils.validators import validate_duration, validate_future_start, validate_time_window
from .availability import OUT_OF_SERVICE_STATUSES, find_conflicts, suggest_next_available
from .reservation_state import (
    ACTIVE_STATUSES,
    RELEASING_STATUSES,
    apply_status_change,
    check_actor,
    get_reservation,
    load_reservation,
    record_status_change,
    row_to_reservation,
)
from .slot_cache import invalidate_room_slots

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('start_time', 'end_time', 'status')


# =============================================================================
# VALIDATION
# =============================================================================

def _parse_moment(value) -> datetime:
    try:
        return to_local_naive(parse_datetime(value))
    except (TypeError, ValueError) as e:
        raise ValidationError(f'Invalid date/time: {e}', cause='field') from e


def validate_reservation_window(start: datetime, end: datetime, now: datetime = None) -> tuple:
    """
    Validate a requested window before touching storage.

    Args:
        start: Requested start (datetime or ISO string)
        end: Requested end (datetime or ISO string)
        now: Reference time (default: current venue time)

    Returns:
        tuple: (start, end) normalized to naive venue-local time

    Raises:
        ValidationError: cause 'field', 'order', 'bounds' or 'past'
    """
    start = _parse_moment(start)
    end = _parse_moment(end)

    if not validate_time_window(start, end):
        raise ValidationError('End time must be after start time', cause='order')

    is_valid, error = validate_duration(
        start, end,
        current_app.config.get('MIN_RESERVATION_HOURS', 1),
        current_app.config.get('MAX_RESERVATION_HOURS', 12)
    )
    if not is_valid:
        raise ValidationError(error, cause='bounds')

    now = to_local_naive(now or get_now())
    if not validate_future_start(start, now):
        raise ValidationError('Cannot book a time in the past', cause='past')

    return start, end


def _duration_minutes(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)


def _load_bookable_room(cursor, room_id: int) -> dict:
    cursor.execute('SELECT id, name, status FROM rooms WHERE id = ?', (room_id,))
    room = cursor.fetchone()
    if room is None:
        raise NotFoundError(f'Room {room_id} not found')
    if room['status'] in OUT_OF_SERVICE_STATUSES:
        raise ConflictError(
            f"Room {room['name']} is not bookable ({room['status']})",
            cause='room_unavailable'
        )
    return dict(room)


def _raise_if_conflicting(cursor, room_id: int, start: datetime, end: datetime,
                          exclude_reservation_id: int = None) -> None:
    """Raise ConflictError with the next free start if the window is taken."""
    conflicts = find_conflicts(room_id, start, end, exclude_reservation_id, cursor=cursor)
    if not conflicts:
        return

    next_available = suggest_next_available(
        room_id, start, end, exclude_reservation_id, cursor=cursor
    )
    suggestion = format_hhmm(next_available) if next_available else None
    message = 'Room is already booked for this time'
    if suggestion:
        message += f'. Next available start: {suggestion}'

    raise ConflictError(
        message,
        cause='overlap',
        next_available=next_available,
        suggestion=suggestion,
        conflicts=[c['id'] for c in conflicts]
    )


def _overlap_from_integrity(e: sqlite3.IntegrityError) -> ConflictError:
    # Trigger backstop; the in-transaction check normally fires first
    if 'reservation_overlap' in str(e):
        return ConflictError('Room is already booked for this time', cause='overlap')
    return None


# =============================================================================
# CREATE
# =============================================================================

def create_reservation(user_id: int, room_id: int, start_time, end_time,
                       now: datetime = None) -> dict:
    """
    Create a pending reservation if the window is free.

    Args:
        user_id: Owning user ID
        room_id: Room ID
        start_time: Window start (datetime or ISO string)
        end_time: Window end, exclusive (datetime or ISO string)
        now: Reference time for the "not in the past" check

    Returns:
        dict: Created reservation

    Raises:
        ValidationError: If the window is malformed or out of bounds
        NotFoundError: If the room does not exist
        ConflictError: If the room is out of service or the window overlaps
        StorageUnavailableError: If the write lock could not be taken
    """
    start, end = validate_reservation_window(start_time, end_time, now)

    try:
        with immediate_transaction() as cursor:
            _load_bookable_room(cursor, room_id)
            _raise_if_conflicting(cursor, room_id, start, end)

            cursor.execute('''
                INSERT INTO reservations (
                    room_id, user_id, start_time, end_time, duration_minutes,
                    status, payment_status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, 'pending', 'pending', CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            ''', (room_id, user_id, to_db(start), to_db(end), _duration_minutes(start, end)))

            reservation_id = cursor.lastrowid
            record_status_change(cursor, reservation_id, None, 'pending',
                                 f'user:{user_id}', 'Reservation created')
    except sqlite3.IntegrityError as e:
        conflict = _overlap_from_integrity(e)
        if conflict is None:
            raise
        raise conflict from e

    invalidate_room_slots(room_id)
    logger.info('Reservation %s created: room %s %s - %s by user %s',
                reservation_id, room_id, to_db(start), to_db(end), user_id)
    return get_reservation(reservation_id)


# =============================================================================
# READ
# =============================================================================

def get_reservations_by_user(user_id: int, status: str = None) -> list:
    """
    Get a user's reservations, newest start first.

    Args:
        user_id: Owning user ID
        status: Optional status filter
    """
    db = get_db()
    cursor = db.cursor()

    query = 'SELECT * FROM reservations WHERE user_id = ?'
    params = [user_id]
    if status:
        query += ' AND status = ?'
        params.append(status)
    query += ' ORDER BY start_time DESC'

    cursor.execute(query, params)
    return [row_to_reservation(r) for r in cursor.fetchall()]


def get_room_reservations(room_id: int, start: datetime, end: datetime,
                          include_released: bool = False) -> list:
    """Reservations on a room overlapping [start, end), ordered by start."""
    db = get_db()
    cursor = db.cursor()

    query = '''
        SELECT * FROM reservations
        WHERE room_id = ? AND start_time < ? AND end_time > ?
    '''
    params = [room_id, to_db(end), to_db(start)]
    if not include_released:
        placeholders = ','.join('?' * len(RELEASING_STATUSES))
        query += f' AND status NOT IN ({placeholders})'
        params.extend(RELEASING_STATUSES)
    query += ' ORDER BY start_time'

    cursor.execute(query, params)
    return [row_to_reservation(r) for r in cursor.fetchall()]


# =============================================================================
# UPDATE
# =============================================================================

def update_reservation(reservation_id: int, actor_id: int, changes: dict,
                       is_admin: bool = False, now: datetime = None) -> dict:
    """
    Edit a reservation's window and/or status.

    The window is re-validated and re-checked (excluding this
    reservation) only when start or end actually change. A status change
    goes through the reservation transition table.

    Args:
        reservation_id: Reservation ID
        actor_id: Requesting user ID
        changes: Dict with any of 'start_time', 'end_time', 'status'
        is_admin: True if the actor is an administrator
        now: Reference time for the "not in the past" check

    Returns:
        dict: Updated reservation

    Raises:
        ValidationError, NotFoundError, ForbiddenError, ConflictError,
        InvalidStateTransitionError, ConcurrentUpdateError
    """
    if not changes:
        raise ValidationError('No changes requested', cause='field')

    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Fields cannot be edited: {', '.join(sorted(unknown))}", cause='field'
        )

    changed_by = f'admin:{actor_id}' if is_admin else f'user:{actor_id}'

    try:
        with immediate_transaction() as cursor:
            reservation = load_reservation(cursor, reservation_id)
            check_actor(reservation, actor_id, is_admin)

            start = _parse_moment(changes.get('start_time', reservation['start_time']))
            end = _parse_moment(changes.get('end_time', reservation['end_time']))
            window_changed = (start != reservation['start_time'] or end != reservation['end_time'])

            if window_changed:
                _reschedule(cursor, reservation, start, end, now)

            new_status = changes.get('status')
            if new_status and new_status != reservation['status']:
                if window_changed:
                    reservation = load_reservation(cursor, reservation_id)
                apply_status_change(cursor, reservation, new_status, changed_by)
    except sqlite3.IntegrityError as e:
        conflict = _overlap_from_integrity(e)
        if conflict is None:
            raise
        raise conflict from e

    invalidate_room_slots(reservation['room_id'])
    return get_reservation(reservation_id)


def _reschedule(cursor, reservation: dict, new_start, new_end, now: datetime = None) -> None:
    """Move a live reservation to a new window inside the open transaction."""
    if reservation['status'] not in ACTIVE_STATUSES:
        raise InvalidStateTransitionError(
            f"Cannot reschedule a {reservation['status']} reservation",
            machine='reservation', current=reservation['status'],
            requested=reservation['status'], allowed=[]
        )

    start, end = validate_reservation_window(new_start, new_end, now)

    _load_bookable_room(cursor, reservation['room_id'])
    _raise_if_conflicting(cursor, reservation['room_id'], start, end,
                          exclude_reservation_id=reservation['id'])

    cursor.execute('''
        UPDATE reservations
        SET start_time = ?,
            end_time = ?,
            duration_minutes = ?,
            updated_at = CURRENT_TIMESTAMP
        WHERE id = ? AND status = ? AND start_time = ? AND end_time = ?
    ''', (to_db(start), to_db(end), _duration_minutes(start, end),
          reservation['id'], reservation['status'],
          to_db(reservation['start_time']), to_db(reservation['end_time'])))

    if cursor.rowcount == 0:
        raise ConcurrentUpdateError(
            f"Reservation {reservation['id']} changed while rescheduling",
            reservation_id=reservation['id']
        )

    logger.info('Reservation %s rescheduled to %s - %s',
                reservation['id'], to_db(start), to_db(end))
