"""
Static transition tables for the reservation, payment and room state machines.

Pure functions only: no database access and no application context, so
every rule here can be checked without a live store. Callers pair each
successful validation with a conditional UPDATE that still expects the
``current`` state at write time.
"""

from utils.errors import InvalidStateTransitionError


# =============================================================================
# TABLES
# =============================================================================

RESERVATION_BASE_TRANSITIONS = {
    'pending': ('confirmed', 'cancelled'),
    'confirmed': ('completed', 'cancelled'),
    'completed': (),
    'cancelled': (),
    'expired': (),
}

# States the reconciler may move to 'expired'
DEFAULT_EXPIRABLE_STATUSES = ('pending', 'confirmed')

PAYMENT_TRANSITIONS = {
    'pending': ('processing', 'failed', 'cancelled'),
    'processing': ('completed', 'failed'),
    'completed': ('refunded',),
    'failed': (),
    'cancelled': (),
    'refunded': (),
}

ROOM_TRANSITIONS = {
    'available': ('maintenance', 'booked', 'out_of_order'),
    'maintenance': ('available', 'out_of_order'),
    'booked': ('available',),
    'out_of_order': ('maintenance',),
}


def build_reservation_transitions(expirable: tuple = DEFAULT_EXPIRABLE_STATUSES) -> dict:
    """
    Build the reservation table with 'expired' edges for the given states.

    Args:
        expirable: States from which the reconciler may expire a reservation

    Returns:
        dict: state -> tuple of allowed next states
    """
    table = {}
    for state, targets in RESERVATION_BASE_TRANSITIONS.items():
        if state in expirable:
            targets = targets + ('expired',)
        table[state] = targets
    return table


RESERVATION_TRANSITIONS = build_reservation_transitions()


# =============================================================================
# QUERIES
# =============================================================================

def get_allowed_transitions(current: str, table: dict) -> list:
    """Return the states reachable from ``current`` (empty if unknown)."""
    return list(table.get(current, ()))


def is_terminal(state: str, table: dict) -> bool:
    """A state is terminal when it is known and has no outgoing edges."""
    return state in table and not table[state]


def can_transition(current: str, requested: str, table: dict) -> bool:
    return requested in table.get(current, ())


# =============================================================================
# VALIDATION
# =============================================================================

def validate_transition(current: str, requested: str, table: dict,
                        machine: str = 'reservation') -> None:
    """
    Validate a single state move against a transition table.

    Args:
        current: State the record holds now
        requested: State the caller wants to move to
        table: Transition table to check against
        machine: Name used in error messages

    Raises:
        InvalidStateTransitionError: If the pair is not an edge of the table
    """
    if current not in table:
        raise InvalidStateTransitionError(
            f"Unknown {machine} state '{current}'",
            machine=machine, current=current, requested=requested, allowed=[]
        )

    if requested not in table:
        raise InvalidStateTransitionError(
            f"Unknown {machine} state '{requested}'",
            machine=machine, current=current, requested=requested,
            allowed=get_allowed_transitions(current, table)
        )

    allowed = get_allowed_transitions(current, table)
    if requested not in allowed:
        allowed_text = ', '.join(allowed) if allowed else 'none (terminal state)'
        raise InvalidStateTransitionError(
            f"Cannot change {machine} from '{current}' to '{requested}'. "
            f"Allowed transitions: {allowed_text}",
            machine=machine, current=current, requested=requested, allowed=allowed
        )


def validate_reservation_transition(current: str, requested: str,
                                    expirable: tuple = DEFAULT_EXPIRABLE_STATUSES) -> None:
    table = (RESERVATION_TRANSITIONS if tuple(expirable) == DEFAULT_EXPIRABLE_STATUSES
             else build_reservation_transitions(tuple(expirable)))
    validate_transition(current, requested, table, machine='reservation')


def validate_payment_transition(current: str, requested: str) -> None:
    validate_transition(current, requested, PAYMENT_TRANSITIONS, machine='payment')


def validate_room_transition(current: str, requested: str) -> None:
    validate_transition(current, requested, ROOM_TRANSITIONS, machine='room')
