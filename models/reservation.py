"""
Reservation data access functions.

This module re-exports the reservation lifecycle from the split modules:
- reservation_state.py: Guarded status changes, cancellation, history
- reservation_crud.py: Create, read and reschedule
- availability.py: Overlap checks, slots and suggestions
"""

# =============================================================================
# RE-EXPORTS
# =============================================================================

# State management
from .reservation_state import (
    # Constants
    RESERVATION_STATUSES,
    PAYMENT_STATUSES,
    RELEASING_STATUSES,
    ACTIVE_STATUSES,
    # State transitions
    cancel_reservation,
    admin_set_reservation_status,
    # Reads
    get_reservation,
    get_status_history,
)

# CRUD operations
from .reservation_crud import (
    validate_reservation_window,
    create_reservation,
    update_reservation,
    get_reservations_by_user,
    get_room_reservations,
)

# Availability
from .availability import (
    intervals_overlap,
    find_conflicts,
    is_window_free,
    enumerate_slots,
    suggest_next_available,
)
from .slot_cache import get_available_slots

__all__ = [
    'RESERVATION_STATUSES',
    'PAYMENT_STATUSES',
    'RELEASING_STATUSES',
    'ACTIVE_STATUSES',
    'cancel_reservation',
    'admin_set_reservation_status',
    'get_reservation',
    'get_status_history',
    'validate_reservation_window',
    'create_reservation',
    'update_reservation',
    'get_reservations_by_user',
    'get_room_reservations',
    'intervals_overlap',
    'find_conflicts',
    'is_window_free',
    'enumerate_slots',
    'suggest_next_available',
    'get_available_slots',
]
