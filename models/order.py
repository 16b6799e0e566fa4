"""
Order and payment correlation.

Orders track payment for a reservation (at most one live order each).
Gateway callbacks are matched by external reference and applied only
when their delivery version is newer than the last one applied, so
duplicate and out-of-order deliveries never overwrite newer state.
"""

import logging
import sqlite3

from database import get_db, immediate_transaction
from utils.errors import (
    ConcurrentUpdateError,
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    StaleCallbackError,
    UnmatchedCallbackError,
    ValidationError,
)
from utils.validators import validate_amount
from .reservation_state import (
    ACTIVE_STATUSES,
    load_reservation,
    payment_status_for_order,
    record_status_change,
    write_status,
)
from .transitions import (
    PAYMENT_TRANSITIONS,
    can_transition,
    validate_payment_transition,
    validate_reservation_transition,
)

logger = logging.getLogger(__name__)

# Order statuses that count as the reservation's live order
LIVE_ORDER_STATUSES = ('pending', 'processing', 'completed')


# =============================================================================
# READ
# =============================================================================

def get_order(order_id: int) -> dict:
    """Get order by ID, or None."""
    db = get_db()
    cursor = db.cursor()
    cursor.execute('SELECT * FROM orders WHERE id = ?', (order_id,))
    row = cursor.fetchone()
    return dict(row) if row else None


def get_order_by_reference(external_reference: str) -> dict:
    db = get_db()
    cursor = db.cursor()
    cursor.execute('SELECT * FROM orders WHERE external_reference = ?', (external_reference,))
    row = cursor.fetchone()
    return dict(row) if row else None


def _find_live_order(cursor, reservation_id: int) -> dict:
    placeholders = ','.join('?' * len(LIVE_ORDER_STATUSES))
    cursor.execute(f'''
        SELECT * FROM orders
        WHERE reservation_id = ? AND status IN ({placeholders})
    ''', (reservation_id, *LIVE_ORDER_STATUSES))
    row = cursor.fetchone()
    return dict(row) if row else None


def get_live_order_for_reservation(reservation_id: int) -> dict:
    return _find_live_order(get_db().cursor(), reservation_id)


# =============================================================================
# CREATE
# =============================================================================

def create_order(reservation_id: int, amount: float) -> dict:
    """
    Create the payment order for a reservation.

    Args:
        reservation_id: Reservation ID
        amount: Total amount to charge

    Returns:
        dict: Created order (status 'pending', no delivery version yet)

    Raises:
        ValidationError: If amount is not positive
        NotFoundError: If the reservation does not exist
        ConflictError: cause 'not_payable' or 'duplicate_order'
    """
    if not validate_amount(amount):
        raise ValidationError('Order amount must be a positive number', cause='field')

    try:
        with immediate_transaction() as cursor:
            reservation = load_reservation(cursor, reservation_id)

            if (reservation['status'] not in ACTIVE_STATUSES
                    or reservation['payment_status'] == 'paid'):
                raise ConflictError(
                    f"Reservation {reservation_id} is not payable "
                    f"({reservation['status']}/{reservation['payment_status']})",
                    cause='not_payable'
                )

            existing = _find_live_order(cursor, reservation_id)
            if existing:
                raise ConflictError(
                    f'Reservation {reservation_id} already has order {existing["id"]} '
                    f'({existing["status"]})',
                    cause='duplicate_order',
                    conflicts=[existing['id']]
                )

            cursor.execute('''
                INSERT INTO orders (reservation_id, user_id, amount, status, version)
                VALUES (?, ?, ?, 'pending', NULL)
            ''', (reservation_id, reservation['user_id'], float(amount)))
            order_id = cursor.lastrowid
    except sqlite3.IntegrityError as e:
        # Partial unique index on live orders
        raise ConflictError(
            f'Reservation {reservation_id} already has a live order',
            cause='duplicate_order'
        ) from e

    logger.info('Order %s created for reservation %s (%.2f)', order_id, reservation_id, float(amount))
    return get_order(order_id)


def assign_external_reference(order_id: int, external_reference: str) -> dict:
    """
    Attach the gateway's payment reference to an order, once.

    Re-assigning the same reference is a no-op.

    Raises:
        ValidationError: If the reference is empty
        NotFoundError: If the order does not exist
        ConflictError: cause 'reference_taken'
    """
    if not external_reference or not str(external_reference).strip():
        raise ValidationError('External reference is required', cause='field')
    external_reference = str(external_reference).strip()

    try:
        with immediate_transaction() as cursor:
            cursor.execute('SELECT id, external_reference FROM orders WHERE id = ?', (order_id,))
            row = cursor.fetchone()
            if row is None:
                raise NotFoundError(f'Order {order_id} not found')

            if row['external_reference'] == external_reference:
                return get_order(order_id)

            cursor.execute('''
                UPDATE orders
                SET external_reference = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ? AND external_reference IS NULL
            ''', (external_reference, order_id))

            if cursor.rowcount == 0:
                raise ConflictError(
                    f'Order {order_id} already has reference {row["external_reference"]}',
                    cause='reference_taken'
                )
    except sqlite3.IntegrityError as e:
        raise ConflictError(
            f'Reference {external_reference} is already used by another order',
            cause='reference_taken'
        ) from e

    return get_order(order_id)


# =============================================================================
# STATUS CHANGES
# =============================================================================

def _write_order_status(cursor, order: dict, new_status: str, version: int = None) -> None:
    """Conditional on the status and version read in this transaction."""
    cursor.execute('''
        UPDATE orders
        SET status = ?, version = ?, updated_at = CURRENT_TIMESTAMP
        WHERE id = ? AND status = ? AND version IS ?
    ''', (new_status, order['version'] if version is None else version,
          order['id'], order['status'], order['version']))

    if cursor.rowcount == 0:
        raise ConcurrentUpdateError(f'Order {order["id"]} changed while updating to {new_status}')


def _sync_reservation_payment(cursor, order: dict, new_status: str, changed_by: str) -> None:
    """
    Mirror the order outcome onto the reservation's payment_status.

    A completed payment also confirms a pending reservation, in one
    conditional write.
    """
    reservation = load_reservation(cursor, order['reservation_id'])
    payment_status = payment_status_for_order(new_status)

    if new_status == 'completed' and reservation['status'] == 'pending':
        validate_reservation_transition('pending', 'confirmed')
        write_status(
            cursor, reservation, 'confirmed', changed_by,
            f"Payment {reservation['payment_status']} -> {payment_status} (order {order['id']})",
            payment_status=payment_status
        )
        logger.info('Reservation %s confirmed by payment of order %s',
                    reservation['id'], order['id'])
        return

    if reservation['payment_status'] == payment_status:
        return

    if new_status == 'completed' and reservation['status'] not in ACTIVE_STATUSES:
        logger.warning('Payment completed for %s reservation %s (order %s); refund required',
                       reservation['status'], reservation['id'], order['id'])

    cursor.execute('''
        UPDATE reservations
        SET payment_status = ?, updated_at = CURRENT_TIMESTAMP
        WHERE id = ? AND payment_status = ?
    ''', (payment_status, reservation['id'], reservation['payment_status']))

    if cursor.rowcount == 0:
        raise ConcurrentUpdateError(
            f'Reservation {reservation["id"]} payment changed while syncing order {order["id"]}'
        )

    record_status_change(
        cursor, reservation['id'], reservation['status'], reservation['status'], changed_by,
        f"Payment {reservation['payment_status']} -> {payment_status} (order {order['id']})"
    )


def cancel_live_order(cursor, reservation_id: int, changed_by: str = 'system') -> bool:
    """
    Cancel the reservation's live order inside the caller's transaction.

    Orders already in processing or completed cannot be cancelled by
    the payment table; they are left for gateway/refund handling.

    Returns:
        bool: True if an order was cancelled
    """
    order = _find_live_order(cursor, reservation_id)
    if order is None:
        return False

    if not can_transition(order['status'], 'cancelled', PAYMENT_TRANSITIONS):
        logger.warning('Order %s for reservation %s is %s and was not cancelled',
                       order['id'], reservation_id, order['status'])
        return False

    _write_order_status(cursor, order, 'cancelled')
    logger.info('Order %s cancelled with reservation %s by %s',
                order['id'], reservation_id, changed_by)
    return True


def admin_set_order_status(order_id: int, new_status: str, changed_by: str = 'admin') -> dict:
    """
    Administrator override along the payment table.

    The delivery version is left untouched so later gateway callbacks
    are still ordered against the gateway's own sequence.
    """
    with immediate_transaction() as cursor:
        cursor.execute('SELECT * FROM orders WHERE id = ?', (order_id,))
        row = cursor.fetchone()
        if row is None:
            raise NotFoundError(f'Order {order_id} not found')
        order = dict(row)

        validate_payment_transition(order['status'], new_status)
        _write_order_status(cursor, order, new_status)
        _sync_reservation_payment(cursor, order, new_status, changed_by)

    logger.info('Order %s: %s -> %s by %s', order_id, order['status'], new_status, changed_by)
    return get_order(order_id)


# =============================================================================
# GATEWAY CALLBACKS
# =============================================================================

def _apply_callback(cursor, external_reference: str, new_status: str,
                    delivery_version: int) -> dict:
    cursor.execute('SELECT * FROM orders WHERE external_reference = ?', (external_reference,))
    row = cursor.fetchone()
    if row is None:
        raise UnmatchedCallbackError(
            f'No order matches payment reference {external_reference}',
            external_reference=external_reference
        )
    order = dict(row)

    # NULL version: nothing applied yet, any delivery is newer
    applied_version = order['version']
    if applied_version is not None and (
            delivery_version < applied_version or (
                delivery_version == applied_version and new_status != order['status'])):
        raise StaleCallbackError(
            f"Callback v{delivery_version} ({new_status}) is older than "
            f"order {order['id']} v{order['version']} ({order['status']})",
            order_id=order['id'],
            current_version=order['version'],
            current_status=order['status']
        )

    if new_status == order['status']:
        # Redelivery of what already landed
        if applied_version is None or delivery_version > applied_version:
            cursor.execute('''
                UPDATE orders SET version = ?
                WHERE id = ? AND version IS ?
            ''', (delivery_version, order['id'], applied_version))
        return {'success': True, 'applied': False, 'duplicate': True, 'order_id': order['id']}

    validate_payment_transition(order['status'], new_status)
    _write_order_status(cursor, order, new_status, version=delivery_version)
    _sync_reservation_payment(cursor, order, new_status, f'gateway:{external_reference}')

    logger.info('Order %s: %s -> %s (callback v%s)',
                order['id'], order['status'], new_status, delivery_version)
    return {'success': True, 'applied': True, 'duplicate': False, 'order_id': order['id']}


def reconcile_payment_callback(external_reference: str, new_status: str,
                               delivery_version: int) -> dict:
    """
    Apply a payment gateway callback to its order.

    Unmatched, stale and illegal callbacks are logged and acknowledged
    without mutating anything. Storage failures still raise, since no
    decision was made and the gateway should redeliver.

    Args:
        external_reference: Gateway payment reference
        new_status: Order status reported by the gateway
        delivery_version: Monotonic delivery sequence from the gateway

    Returns:
        dict: {'success': bool, 'applied': bool, ...} or an error payload
            with 'code' set to 'unmatched_callback', 'stale_callback' or
            'invalid_transition'
    """
    try:
        delivery_version = int(delivery_version)
    except (TypeError, ValueError):
        raise ValidationError('delivery_version must be an integer', cause='field')

    if new_status not in PAYMENT_TRANSITIONS:
        raise ValidationError(f"Unknown payment status '{new_status}'", cause='field')

    try:
        with immediate_transaction() as cursor:
            result = _apply_callback(cursor, external_reference, new_status, delivery_version)
    except (UnmatchedCallbackError, StaleCallbackError, InvalidStateTransitionError) as e:
        logger.warning('Payment callback %s -> %s (v%s) ignored: %s',
                       external_reference, new_status, delivery_version, e.message)
        payload = e.to_dict()
        payload['applied'] = False
        return payload

    if result['applied']:
        result['order'] = get_order(result['order_id'])
    return result
