"""
Typed errors for the reservation core.

Every error carries a machine-readable ``code`` and renders to the same
``{'success': False, 'error': ...}`` shape the HTTP layer returns, so the
caller can translate it to a status code without inspecting messages.
"""

from datetime import datetime


class ReservationError(Exception):
    """Base class for all reservation core errors."""

    code = 'error'
    retryable = False

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        """Serialize to an API-style error payload."""
        payload = {
            'success': False,
            'error': self.message,
            'code': self.code,
        }
        for key, value in self.details.items():
            if isinstance(value, datetime):
                value = value.isoformat(sep=' ')
            payload[key] = value
        return payload


class ValidationError(ReservationError, ValueError):
    """Malformed or out-of-bounds input. Nothing was read or written."""

    code = 'validation'

    def __init__(self, message: str, cause: str = 'field', **details):
        super().__init__(message, cause=cause, **details)
        self.cause = cause


class NotFoundError(ReservationError, LookupError):
    code = 'not_found'


class ConflictError(ReservationError):
    """
    The request collides with existing state.

    Args:
        message: Human readable description
        cause: 'overlap', 'room_unavailable', 'duplicate_order',
            'not_payable' or 'reference_taken'
        next_available: Next free start on the same room, if one is known
        suggestion: next_available rendered as HH:MM
        conflicts: IDs of the conflicting records
    """

    code = 'conflict'

    def __init__(self, message: str, cause: str = 'overlap',
                 next_available: datetime = None, suggestion: str = None,
                 conflicts: list = None):
        super().__init__(
            message,
            cause=cause,
            next_available=next_available,
            suggestion=suggestion,
            conflicts=list(conflicts or []),
        )
        self.cause = cause
        self.next_available = next_available
        self.suggestion = suggestion
        self.conflicts = list(conflicts or [])


class InvalidStateTransitionError(ReservationError):
    """Raised when a status change is not an edge of its transition table."""

    code = 'invalid_transition'

    def __init__(self, message: str, machine: str = None, current: str = None,
                 requested: str = None, allowed: list = None):
        super().__init__(
            message,
            machine=machine,
            current=current,
            requested=requested,
            allowed=list(allowed or []),
        )
        self.machine = machine
        self.current = current
        self.requested = requested
        self.allowed = list(allowed or [])


TransitionError = InvalidStateTransitionError


class ForbiddenError(ReservationError):
    code = 'forbidden'


class ConcurrentUpdateError(ReservationError):
    """A conditional update matched zero rows: the row moved under us."""

    code = 'concurrent_update'
    retryable = True


class UnmatchedCallbackError(ReservationError):
    code = 'unmatched_callback'


class StaleCallbackError(ReservationError):
    code = 'stale_callback'


class StorageUnavailableError(ReservationError):
    """The store could not be reached or locked. No decision was made."""

    code = 'storage_unavailable'
    retryable = True
