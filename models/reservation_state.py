"""
Reservation state management functions.
Handles guarded status changes, cancellation, and status history.
"""

import logging

from flask import current_app

from database import get_db, immediate_transaction
from utils.datetime_helpers import from_db
from utils.errors import (
    ConcurrentUpdateError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
)
from .transitions import validate_reservation_transition

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

RESERVATION_STATUSES = ('pending', 'confirmed', 'completed', 'cancelled', 'expired')
PAYMENT_STATUSES = ('pending', 'paid', 'failed', 'cancelled', 'refunded', 'expired')

# Statuses that release the room interval
RELEASING_STATUSES = ('cancelled', 'expired')

# Statuses that hold the room interval
ACTIVE_STATUSES = ('pending', 'confirmed')

# Order.status -> Reservation.payment_status
ORDER_TO_PAYMENT_STATUS = {
    'pending': 'pending',
    'processing': 'pending',
    'completed': 'paid',
    'failed': 'failed',
    'cancelled': 'cancelled',
    'refunded': 'refunded',
}


def get_expirable_statuses() -> tuple:
    """States the reconciler may expire, per EXPIRE_FROM_CONFIRMED."""
    if current_app.config.get('EXPIRE_FROM_CONFIRMED', True):
        return ('pending', 'confirmed')
    return ('pending',)


def payment_status_for_order(order_status: str) -> str:
    return ORDER_TO_PAYMENT_STATUS[order_status]


# =============================================================================
# ROW HELPERS
# =============================================================================

def row_to_reservation(row) -> dict:
    """Convert a reservations row to a dict with parsed datetimes."""
    if row is None:
        return None
    reservation = dict(row)
    reservation['start_time'] = from_db(reservation['start_time'])
    reservation['end_time'] = from_db(reservation['end_time'])
    return reservation


def load_reservation(cursor, reservation_id: int) -> dict:
    """
    Read a reservation inside an open transaction.

    Raises:
        NotFoundError: If the reservation does not exist
    """
    cursor.execute('SELECT * FROM reservations WHERE id = ?', (reservation_id,))
    reservation = row_to_reservation(cursor.fetchone())
    if reservation is None:
        raise NotFoundError(f'Reservation {reservation_id} not found')
    return reservation


def check_actor(reservation: dict, actor_id: int, is_admin: bool = False) -> None:
    """
    Only the owner or an administrator may touch a reservation.

    Raises:
        ForbiddenError: If actor is neither
    """
    if is_admin:
        return
    if actor_id is None or int(actor_id) != int(reservation['user_id']):
        raise ForbiddenError(
            f'User {actor_id} is not allowed to modify reservation {reservation["id"]}',
            reservation_id=reservation['id']
        )


# =============================================================================
# GUARDED WRITES
# =============================================================================

def record_status_change(cursor, reservation_id: int, from_status: str, to_status: str,
                         changed_by: str, notes: str = '') -> None:
    """Append an entry to the reservation status history."""
    cursor.execute('''
        INSERT INTO reservation_status_history
        (reservation_id, from_status, to_status, changed_by, notes, created_at)
        VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
    ''', (reservation_id, from_status, to_status, str(changed_by), notes))


def write_status(cursor, reservation: dict, new_status: str, changed_by: str,
                 notes: str = '', payment_status: str = None) -> None:
    """
    Conditionally move a reservation to ``new_status``.

    The UPDATE only matches while the row still holds the status (and
    payment status) read earlier in the same transaction. The caller
    must have validated the transition already.

    Args:
        cursor: Cursor inside an open write transaction
        reservation: Reservation as read in this transaction
        new_status: Target status
        changed_by: Actor recorded in history
        notes: History notes
        payment_status: New payment status, or None to leave it

    Raises:
        ConcurrentUpdateError: If the row no longer matches
    """
    new_payment = payment_status or reservation['payment_status']
    cursor.execute('''
        UPDATE reservations
        SET status = ?,
            payment_status = ?,
            updated_at = CURRENT_TIMESTAMP
        WHERE id = ? AND status = ? AND payment_status = ?
    ''', (new_status, new_payment, reservation['id'],
          reservation['status'], reservation['payment_status']))

    if cursor.rowcount == 0:
        raise ConcurrentUpdateError(
            f'Reservation {reservation["id"]} changed while updating to {new_status}',
            reservation_id=reservation['id']
        )

    record_status_change(cursor, reservation['id'], reservation['status'],
                         new_status, changed_by, notes)


def apply_status_change(cursor, reservation: dict, new_status: str, changed_by: str,
                        notes: str = '') -> None:
    """
    Validate and apply a user or administrator status change.

    'expired' is never a valid manual target; only the reconciler
    moves reservations there. Cancelling also cancels the payment side
    (unless it is already paid) and a pending live order.

    Raises:
        InvalidStateTransitionError: If the move is not allowed
    """
    from .order import cancel_live_order

    current = reservation['status']
    if new_status == 'expired':
        raise InvalidStateTransitionError(
            "Reservations can only become 'expired' through the stale reservation sweep",
            machine='reservation', current=current, requested=new_status, allowed=[]
        )

    validate_reservation_transition(current, new_status, get_expirable_statuses())

    payment_status = None
    if new_status == 'cancelled' and reservation['payment_status'] != 'paid':
        payment_status = 'cancelled'

    write_status(cursor, reservation, new_status, changed_by, notes, payment_status)

    if new_status == 'cancelled':
        cancel_live_order(cursor, reservation['id'])

    logger.info('Reservation %s: %s -> %s by %s',
                reservation['id'], current, new_status, changed_by)


def _change_status(reservation_id: int, new_status: str, actor_id=None,
                   is_admin: bool = False, changed_by: str = None, notes: str = '') -> dict:
    from .slot_cache import invalidate_room_slots

    with immediate_transaction() as cursor:
        reservation = load_reservation(cursor, reservation_id)
        check_actor(reservation, actor_id, is_admin)
        apply_status_change(cursor, reservation, new_status,
                            changed_by or f'user:{actor_id}', notes)

    invalidate_room_slots(reservation['room_id'])
    return get_reservation(reservation_id)


def cancel_reservation(reservation_id: int, actor_id: int, is_admin: bool = False,
                       notes: str = '') -> dict:
    """
    Cancel a reservation on behalf of its owner or an administrator.

    Args:
        reservation_id: Reservation ID
        actor_id: Requesting user ID
        is_admin: True if the actor is an administrator
        notes: Reason recorded in history

    Returns:
        dict: Updated reservation

    Raises:
        NotFoundError, ForbiddenError, InvalidStateTransitionError,
        ConcurrentUpdateError
    """
    changed_by = f'admin:{actor_id}' if is_admin else f'user:{actor_id}'
    return _change_status(reservation_id, 'cancelled', actor_id, is_admin,
                          changed_by, notes)


def admin_set_reservation_status(reservation_id: int, status: str,
                                 changed_by: str = 'admin', notes: str = '') -> dict:
    """Apply any legal transition as an administrator."""
    return _change_status(reservation_id, status, is_admin=True,
                          changed_by=changed_by, notes=notes)


# =============================================================================
# READS
# =============================================================================

def get_reservation(reservation_id: int) -> dict:
    """Get reservation by ID, or None."""
    db = get_db()
    cursor = db.cursor()
    cursor.execute('SELECT * FROM reservations WHERE id = ?', (reservation_id,))
    return row_to_reservation(cursor.fetchone())


def get_status_history(reservation_id: int) -> list:
    """
    Get state change history for reservation.

    Args:
        reservation_id: Reservation ID

    Returns:
        list: History entries, newest first
    """
    db = get_db()
    cursor = db.cursor()
    cursor.execute('''
        SELECT * FROM reservation_status_history
        WHERE reservation_id = ?
        ORDER BY created_at DESC, id DESC
    ''', (reservation_id,))
    return [dict(r) for r in cursor.fetchall()]
