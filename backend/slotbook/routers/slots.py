from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_actor, get_session
from ..domain.errors import DomainError
from ..infrastructure.notifications import SqlAlchemyNotificationSink
from ..infrastructure.repositories import (
    SqlAlchemyBookingRepository,
    SqlAlchemyEventRepository,
    SqlAlchemySlotRepository,
)
from ..infrastructure.transactions import atomic
from ..schemas import SlotCreate, SlotRead, SlotUpdate
from ..usecases import slots as slot_usecase
from ..usecases.access import Actor
from ..utils.audit_log import emit_audit_log, emit_promotions
from .errors import audit_failure, http_error, utc_naive_or_400

router = APIRouter(prefix="", tags=["slots"])


@router.post("/events/{event_id}/slots", response_model=SlotRead, status_code=status.HTTP_201_CREATED)
async def create_slot(
    payload: SlotCreate,
    event_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> SlotRead:
    starts_at = utc_naive_or_400(payload.starts_at, field="starts_at")
    ends_at = utc_naive_or_400(payload.ends_at, field="ends_at")
    slot_repo = SqlAlchemySlotRepository(session)
    event_repo = SqlAlchemyEventRepository(session)
    try:
        async with atomic(session):
            slot = await slot_usecase.add_slot(
                slot_repo,
                event_repo,
                actor=actor,
                event_id=event_id,
                starts_at=starts_at,
                ends_at=ends_at,
                capacity=payload.capacity,
            )
    except DomainError as exc:
        raise http_error(exc) from exc

    try:
        emit_audit_log(
            action="slot.created",
            initiator="admin" if actor.is_admin else "user",
            user_id=actor.user_id,
            slot_id=slot.id,
            event_id=slot.event_id,
            extra={"capacity": slot.capacity},
        )
    except RuntimeError as exc:
        raise audit_failure() from exc
    return SlotRead.from_db(slot=slot)


@router.patch("/slots/{slot_id}", response_model=SlotRead)
async def update_slot(
    payload: SlotUpdate,
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> SlotRead:
    starts_at = utc_naive_or_400(payload.starts_at, field="starts_at")
    ends_at = utc_naive_or_400(payload.ends_at, field="ends_at")
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    event_repo = SqlAlchemyEventRepository(session)
    notifier = SqlAlchemyNotificationSink(session)
    try:
        async with atomic(session):
            result = await slot_usecase.update_slot(
                slot_repo,
                booking_repo,
                event_repo,
                notifier,
                actor=actor,
                slot_id=slot_id,
                starts_at=starts_at,
                ends_at=ends_at,
                capacity=payload.capacity,
            )
    except DomainError as exc:
        raise http_error(exc) from exc

    try:
        emit_audit_log(
            action="slot.updated",
            initiator="admin" if actor.is_admin else "user",
            user_id=actor.user_id,
            slot_id=result.slot.id,
            event_id=result.slot.event_id,
            extra={"capacity_from": result.previous_capacity, "capacity_to": result.slot.capacity},
        )
        emit_promotions(result.promoted, slot_id=result.slot.id)
    except RuntimeError as exc:
        raise audit_failure() from exc
    return SlotRead.from_db(slot=result.slot, promoted=result.promoted)
