from dataclasses import dataclass
from datetime import datetime, timedelta

from ..models import BookingStatus
from .errors import (
    BookingStateError,
    CapacityBelowBookedError,
    CapacityExceededError,
    DuplicateEventBookingError,
    InvalidInputError,
    OverlappingBookingError,
    UndoWindowExpiredError,
)

MIN_SPOTS = 1
MAX_SPOTS = 5
UNDO_GRACE_PERIOD = timedelta(hours=24)


@dataclass(frozen=True)
class SlotSnapshot:
    """Capacity ledger for one slot, read under the slot lock."""

    capacity: int
    booked: int

    @property
    def remaining(self) -> int:
        return self.capacity - self.booked


@dataclass(frozen=True)
class UserConflicts:
    has_live_booking_on_event: bool
    has_overlapping_booking: bool


def validate_spots(spots: int) -> None:
    if not MIN_SPOTS <= spots <= MAX_SPOTS:
        raise InvalidInputError(f"spots must be between {MIN_SPOTS} and {MAX_SPOTS}")


def ensure_no_user_conflicts(conflicts: UserConflicts) -> None:
    if conflicts.has_live_booking_on_event:
        raise DuplicateEventBookingError("You already have a booking for this event")
    if conflicts.has_overlapping_booking:
        raise OverlappingBookingError("Time slot conflict: you already have a booking at this time")


def decide_allocation(snapshot: SlotSnapshot, *, spots: int) -> BookingStatus:
    """
    Pure decision rule for a new booking request.
    Fits entirely -> booked; slot full -> waitlist; partial fit -> rejected.
    """
    validate_spots(spots)
    remaining = snapshot.remaining
    if remaining >= spots:
        return BookingStatus.BOOKED
    if remaining <= 0:
        return BookingStatus.WAITLIST
    raise CapacityExceededError(f"Not enough spots available. Requested: {spots}, Available: {remaining}.")


def validate_partial_cancel(current_spots: int, spots_to_cancel: int) -> int:
    """Return the spots left on the booking after a partial cancellation."""
    if spots_to_cancel < 1:
        raise InvalidInputError("spots_to_cancel must be at least 1")
    if spots_to_cancel >= current_spots:
        raise InvalidInputError("Use full cancellation instead")
    return current_spots - spots_to_cancel


def ensure_undo_allowed(
    *,
    status: BookingStatus,
    cancelled_at: datetime | None,
    now: datetime,
    grace: timedelta = UNDO_GRACE_PERIOD,
) -> None:
    if status != BookingStatus.CANCELLED:
        raise BookingStateError("Booking is not cancelled")
    if cancelled_at is None:
        raise BookingStateError("Cannot restore this booking")
    if now - cancelled_at > grace:
        raise UndoWindowExpiredError("Undo period expired (24 hours). Cannot restore this booking.")


def ensure_capacity_change_allowed(new_capacity: int, booked: int) -> None:
    if new_capacity < 1:
        raise InvalidInputError("capacity must be >= 1")
    if new_capacity < booked:
        raise CapacityBelowBookedError(f"Capacity cannot be lower than currently booked spots ({booked}).")


def ensure_time_window(starts_at: datetime, ends_at: datetime) -> None:
    if starts_at >= ends_at:
        raise InvalidInputError("Start time must be before end time")
