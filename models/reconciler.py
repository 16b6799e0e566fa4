"""
Stale reservation reconciler.

Expires unpaid reservations whose window has elapsed, and completes
paid ones that are over. Each row is handled in its own write
transaction with a conditional update, so the sweep can run repeatedly,
concurrently with itself and with user edits. A row that moved in the
meantime is simply skipped.
"""

import logging
import threading
from datetime import datetime

from flask import current_app

from database import get_db, immediate_transaction
from utils.datetime_helpers import get_now, to_db, to_local_naive
from utils.errors import ConcurrentUpdateError, ReservationError
from .order import cancel_live_order
from .reservation_state import get_expirable_statuses, load_reservation, write_status
from .slot_cache import invalidate_room_slots
from .transitions import validate_reservation_transition

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = 'system:sweep'


def _select_candidates(statuses: tuple, now: datetime, paid: bool) -> list:
    placeholders = ','.join('?' * len(statuses))
    payment_clause = "payment_status = 'paid'" if paid else "payment_status != 'paid'"
    db = get_db()
    cursor = db.cursor()
    cursor.execute(f'''
        SELECT id FROM reservations
        WHERE status IN ({placeholders})
          AND end_time {'<=' if paid else '<'} ?
          AND {payment_clause}
        ORDER BY end_time
    ''', (*statuses, to_db(now)))
    return [row['id'] for row in cursor.fetchall()]


def _expire_one(reservation_id: int, now: datetime, expirable: tuple) -> bool:
    """Expire a single reservation. Returns False if it no longer qualifies."""
    with immediate_transaction() as cursor:
        reservation = load_reservation(cursor, reservation_id)

        # Re-check inside the transaction; a user or payment may have won
        if (reservation['status'] not in expirable
                or reservation['payment_status'] == 'paid'
                or reservation['end_time'] >= now):
            return False

        validate_reservation_transition(reservation['status'], 'expired', expirable)
        write_status(cursor, reservation, 'expired', SYSTEM_ACTOR,
                     'Window elapsed without payment', payment_status='expired')
        cancel_live_order(cursor, reservation_id, SYSTEM_ACTOR)

    invalidate_room_slots(reservation['room_id'])
    return True


def sweep_stale_reservations(now: datetime = None) -> int:
    """
    Expire unpaid reservations whose window has ended.

    Args:
        now: Reference time (default: current venue time)

    Returns:
        int: Number of reservations expired by this call
    """
    now = to_local_naive(now or get_now())
    expirable = get_expirable_statuses()

    expired = 0
    for reservation_id in _select_candidates(expirable, now, paid=False):
        try:
            if _expire_one(reservation_id, now, expirable):
                expired += 1
        except ConcurrentUpdateError:
            logger.debug('Reservation %s changed during sweep, skipped', reservation_id)
        except ReservationError as e:
            logger.warning('Could not expire reservation %s: %s', reservation_id, e)

    if expired:
        logger.info('Sweep expired %d reservation(s)', expired)
    return expired


def _complete_one(reservation_id: int, now: datetime) -> bool:
    with immediate_transaction() as cursor:
        reservation = load_reservation(cursor, reservation_id)
        if (reservation['status'] != 'confirmed'
                or reservation['payment_status'] != 'paid'
                or reservation['end_time'] > now):
            return False

        validate_reservation_transition(reservation['status'], 'completed')
        write_status(cursor, reservation, 'completed', SYSTEM_ACTOR, 'Session finished')
    return True


def complete_finished_reservations(now: datetime = None) -> int:
    """
    Mark confirmed, paid reservations whose window is over as completed.

    Returns:
        int: Number of reservations completed
    """
    now = to_local_naive(now or get_now())

    completed = 0
    for reservation_id in _select_candidates(('confirmed',), now, paid=True):
        try:
            if _complete_one(reservation_id, now):
                completed += 1
        except ConcurrentUpdateError:
            logger.debug('Reservation %s changed during completion, skipped', reservation_id)
        except ReservationError as e:
            logger.warning('Could not complete reservation %s: %s', reservation_id, e)

    if completed:
        logger.info('Completed %d finished reservation(s)', completed)
    return completed


def run_sweeper(app, stop_event: threading.Event, interval: float = None) -> None:
    """
    Run both sweeps periodically until ``stop_event`` is set.

    A failing pass is logged and the loop carries on with the next one.
    """
    if interval is None:
        interval = app.config.get('SWEEP_INTERVAL_SECONDS', 300)

    while not stop_event.is_set():
        try:
            with app.app_context():
                expired = sweep_stale_reservations()
                completed = complete_finished_reservations()
                current_app.logger.debug('Sweep pass: %d expired, %d completed',
                                         expired, completed)
        except Exception:
            logger.exception('Reservation sweep pass failed')

        stop_event.wait(timeout=interval)
