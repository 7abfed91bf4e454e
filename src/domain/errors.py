"""
Booking error taxonomy.

Every error carries a stable ``code`` so API clients can tell
"your input is invalid" apart from "this ride is no longer accepting bids"
and "maximum negotiation rounds reached".
"""


class BookingError(Exception):
    code = "booking_error"


class ValidationError(BookingError):
    """Malformed or out-of-range input."""

    code = "validation_error"


class StateConflictError(BookingError):
    """Operation not permitted in the ride's or bid's current state."""

    code = "state_conflict"


class CapacityError(BookingError):
    """Counter-offer limit exceeded."""

    code = "capacity_exceeded"


class NotFoundError(BookingError):
    code = "not_found"


class PermissionDeniedError(BookingError):
    code = "forbidden"
