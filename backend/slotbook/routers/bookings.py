from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_user_id, get_session
from ..domain.errors import DomainError
from ..infrastructure.notifications import SqlAlchemyNotificationSink
from ..infrastructure.repositories import (
    SqlAlchemyBookingRepository,
    SqlAlchemyEventRepository,
    SqlAlchemySlotRepository,
)
from ..infrastructure.transactions import atomic
from ..models import BookingStatus
from ..schemas import BookingCancel, BookingCancelRead, BookingCreate, BookingRead
from ..usecases import bookings as booking_usecase
from ..utils.audit_log import emit_audit_log, emit_promotions
from .errors import audit_failure, http_error

router = APIRouter(prefix="", tags=["bookings"])


@router.post("/slots/{slot_id}/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> BookingRead:
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    event_repo = SqlAlchemyEventRepository(session)
    try:
        async with atomic(session):
            booking, slot = await booking_usecase.allocate(
                slot_repo,
                booking_repo,
                event_repo,
                slot_id=slot_id,
                user_id=user_id,
                spots=payload.spots,
            )
    except DomainError as exc:
        raise http_error(exc) from exc

    try:
        emit_audit_log(
            action="booking.created" if booking.status == BookingStatus.BOOKED else "booking.waitlisted",
            initiator="user",
            user_id=user_id,
            booking_id=booking.id,
            slot_id=slot.id,
            event_id=slot.event_id,
            spots=booking.spots,
            status_to=booking.status,
        )
    except RuntimeError as exc:
        raise audit_failure() from exc
    return BookingRead.from_db(booking=booking, slot=slot)


@router.get("/me/bookings", response_model=List[BookingRead])
async def list_my_bookings(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[BookingRead]:
    booking_repo = SqlAlchemyBookingRepository(session)
    rows = await booking_usecase.list_user_bookings(booking_repo, user_id=user_id)
    return [BookingRead.from_db(booking=booking, slot=slot) for booking, slot in rows]


@router.post("/me/bookings/{booking_id}/cancel", response_model=BookingCancelRead)
async def cancel_booking(
    booking_id: int = Path(..., ge=1),
    payload: Optional[BookingCancel] = Body(default=None),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> BookingCancelRead:
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    notifier = SqlAlchemyNotificationSink(session)
    spots_to_cancel = payload.spots_to_cancel if payload is not None else None
    try:
        async with atomic(session):
            outcome = await booking_usecase.cancel(
                slot_repo,
                booking_repo,
                notifier,
                booking_id=booking_id,
                user_id=user_id,
                spots_to_cancel=spots_to_cancel,
            )
    except DomainError as exc:
        raise http_error(exc) from exc

    if outcome.changed:
        try:
            emit_audit_log(
                action="booking.cancelled" if spots_to_cancel is None else "booking.partially_cancelled",
                initiator="user",
                user_id=user_id,
                booking_id=outcome.booking.id,
                slot_id=outcome.slot.id,
                event_id=outcome.slot.event_id,
                spots=outcome.booking.spots,
                status_from=outcome.status_from,
                status_to=outcome.booking.status,
                extra={"spots_freed": outcome.spots_freed},
            )
            emit_promotions(outcome.promoted, slot_id=outcome.slot.id)
        except RuntimeError as exc:
            raise audit_failure() from exc

    return BookingCancelRead.from_db(
        booking=outcome.booking,
        slot=outcome.slot,
        spots_freed=outcome.spots_freed,
        promoted_booking_ids=[b.id for b in outcome.promoted],
    )


@router.post("/me/bookings/{booking_id}/undo", response_model=BookingRead)
async def undo_cancellation(
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> BookingRead:
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    event_repo = SqlAlchemyEventRepository(session)
    try:
        async with atomic(session):
            booking, slot = await booking_usecase.undo(
                slot_repo,
                booking_repo,
                event_repo,
                booking_id=booking_id,
                user_id=user_id,
            )
    except DomainError as exc:
        raise http_error(exc) from exc

    try:
        emit_audit_log(
            action="booking.restored",
            initiator="user",
            user_id=user_id,
            booking_id=booking.id,
            slot_id=slot.id,
            event_id=slot.event_id,
            spots=booking.spots,
            status_from=BookingStatus.CANCELLED,
            status_to=booking.status,
        )
    except RuntimeError as exc:
        raise audit_failure() from exc
    return BookingRead.from_db(booking=booking, slot=slot)
