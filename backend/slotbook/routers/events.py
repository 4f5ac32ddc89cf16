from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_actor, get_optional_actor, get_session
from ..domain.errors import DomainError
from ..infrastructure.notifications import SqlAlchemyNotificationSink
from ..infrastructure.repositories import (
    SqlAlchemyBookingRepository,
    SqlAlchemyEventRepository,
    SqlAlchemySlotRepository,
    SqlAlchemyUserRepository,
)
from ..infrastructure.transactions import atomic
from ..schemas import EventCreate, EventPageRead, EventRead, EventSummary, EventUpdate, SlotAvailability
from ..usecases import events as event_usecase
from ..usecases.access import Actor
from ..utils.audit_log import emit_audit_log, emit_promotions
from .errors import audit_failure, http_error, utc_naive_or_400

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", response_model=EventRead, status_code=status.HTTP_201_CREATED)
async def create_event(
    payload: EventCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> EventRead:
    starts_at = utc_naive_or_400(payload.starts_at, field="starts_at")
    ends_at = utc_naive_or_400(payload.ends_at, field="ends_at")
    event_repo = SqlAlchemyEventRepository(session)
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        async with atomic(session):
            event, slot = await event_usecase.create_event(
                event_repo,
                slot_repo,
                actor=actor,
                title=payload.title,
                event_date=payload.date,
                starts_at=starts_at,
                ends_at=ends_at,
                capacity=payload.capacity,
                description=payload.description,
                location=payload.location,
                category=payload.category,
            )
    except DomainError as exc:
        raise http_error(exc) from exc

    try:
        emit_audit_log(
            action="event.created",
            initiator="admin",
            user_id=actor.user_id,
            event_id=event.id,
            slot_id=slot.id,
        )
    except RuntimeError as exc:
        raise audit_failure() from exc
    availability = SlotAvailability.from_entry({"slot": slot, "booked": 0, "remaining": slot.capacity})
    return EventRead.from_db(event=event, slots=[availability])


@router.get("", response_model=EventPageRead)
async def list_events(
    search: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=event_usecase.EVENT_PAGE_SIZE, ge=1),
    sort: event_usecase.EventSort = Query(default=event_usecase.EventSort.DATE),
    session: AsyncSession = Depends(get_session),
    actor: Optional[Actor] = Depends(get_optional_actor),
) -> EventPageRead:
    return await _list_events(session, actor=actor, search=search, page=page, page_size=page_size, sort=sort)


@router.get("/smart", response_model=EventPageRead)
async def list_events_smart(
    search: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=event_usecase.EVENT_PAGE_SIZE, ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Optional[Actor] = Depends(get_optional_actor),
) -> EventPageRead:
    return await _list_events(
        session,
        actor=actor,
        search=search,
        page=page,
        page_size=page_size,
        sort=event_usecase.EventSort.SMART,
    )


@router.get("/{event_id}", response_model=EventRead)
async def get_event(
    event_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> EventRead:
    event_repo = SqlAlchemyEventRepository(session)
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        event, rows = await event_usecase.get_event_detail(event_repo, slot_repo, event_id=event_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return EventRead.from_db(event=event, slots=[SlotAvailability.from_entry(entry) for entry in rows])


@router.patch("/{event_id}", response_model=EventRead)
async def update_event(
    payload: EventUpdate,
    event_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> EventRead:
    starts_at = utc_naive_or_400(payload.starts_at, field="starts_at")
    ends_at = utc_naive_or_400(payload.ends_at, field="ends_at")
    event_repo = SqlAlchemyEventRepository(session)
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    notifier = SqlAlchemyNotificationSink(session)
    try:
        async with atomic(session):
            result = await event_usecase.update_event(
                event_repo,
                slot_repo,
                booking_repo,
                notifier,
                actor=actor,
                event_id=event_id,
                changes=payload.event_changes(),
                starts_at=starts_at,
                ends_at=ends_at,
                capacity=payload.capacity,
            )
    except DomainError as exc:
        raise http_error(exc) from exc

    try:
        emit_audit_log(
            action="event.updated",
            initiator="admin" if actor.is_admin else "user",
            user_id=actor.user_id,
            event_id=result.event.id,
            slot_id=result.slot.id if result.slot is not None else None,
            extra={"fields": sorted(payload.model_dump(exclude_unset=True))},
        )
        if result.slot is not None:
            emit_promotions(result.promoted, slot_id=result.slot.id)
    except RuntimeError as exc:
        raise audit_failure() from exc
    return EventRead.from_db(event=result.event)


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event(
    event_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> Response:
    event_repo = SqlAlchemyEventRepository(session)
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        async with atomic(session):
            await event_usecase.delete_event(
                event_repo,
                slot_repo,
                booking_repo,
                actor=actor,
                event_id=event_id,
            )
    except DomainError as exc:
        raise http_error(exc) from exc

    try:
        emit_audit_log(
            action="event.deleted",
            initiator="admin" if actor.is_admin else "user",
            user_id=actor.user_id,
            event_id=event_id,
        )
    except RuntimeError as exc:
        raise audit_failure() from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


async def _list_events(
    session: AsyncSession,
    *,
    actor: Optional[Actor],
    search: Optional[str],
    page: int,
    page_size: int,
    sort: event_usecase.EventSort,
) -> EventPageRead:
    try:
        result = await event_usecase.list_events(
            SqlAlchemyEventRepository(session),
            SqlAlchemyUserRepository(session),
            search=search,
            page=page,
            page_size=page_size,
            sort=sort,
            user_id=actor.user_id if actor is not None else None,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return EventPageRead(
        data=[EventSummary.from_db(event, available) for event, available in result.rows],
        page=result.page,
        page_size=result.page_size,
        total=result.total,
    )
