"""
Domain errors for the booking and recurrence engine.

Every error is raised inside the surrounding transaction so the whole unit of
work rolls back. Routers map ``kind`` to an HTTP status; ``retryable`` tells the
caller whether repeating the same request later can succeed.
"""

from enum import StrEnum


class ErrorKind(StrEnum):
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    RECURRENCE_RULE_INVALID = "recurrence_rule_invalid"


class DomainError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.CONFLICT
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(DomainError):
    kind = ErrorKind.NOT_FOUND


class SlotNotFoundError(NotFoundError):
    pass


class BookingNotFoundError(NotFoundError):
    pass


class EventNotFoundError(NotFoundError):
    pass


class SeriesNotFoundError(NotFoundError):
    pass


class InvalidInputError(DomainError):
    kind = ErrorKind.INVALID_INPUT


class ConflictError(DomainError):
    kind = ErrorKind.CONFLICT


class OverlappingBookingError(ConflictError):
    """The user already holds a live booking whose slot overlaps the target window."""


class DuplicateEventBookingError(ConflictError):
    """The user already holds a live booking on another slot of the same event."""


class BookingStateError(ConflictError):
    """The booking is not in a state that allows the requested transition."""


class UndoWindowExpiredError(ConflictError):
    """The 24 hour undo window has passed. Permanent."""


class UndoCapacityError(ConflictError):
    """Not enough free capacity to restore the booking right now."""

    retryable = True


class CapacityBelowBookedError(ConflictError):
    """A capacity change would drop below the spots already booked."""


class LiveBookingsError(ConflictError):
    """The target still carries booked or waitlisted bookings."""


class StoreConflictError(ConflictError):
    """The store could not acquire a lock or commit the transaction."""

    retryable = True


class UnauthorizedError(DomainError):
    kind = ErrorKind.UNAUTHORIZED


class CapacityExceededError(DomainError):
    """Requested spots only partially fit the remaining capacity."""

    kind = ErrorKind.CAPACITY_EXCEEDED


class RecurrenceRuleError(DomainError):
    kind = ErrorKind.RECURRENCE_RULE_INVALID
