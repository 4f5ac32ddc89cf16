from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_actor, get_session
from ..domain.errors import DomainError
from ..infrastructure.notifications import SqlAlchemyNotificationSink
from ..infrastructure.repositories import (
    SqlAlchemyBookingRepository,
    SqlAlchemyEventRepository,
    SqlAlchemySeriesRepository,
    SqlAlchemySlotRepository,
)
from ..infrastructure.transactions import atomic
from ..schemas import (
    OccurrenceRead,
    OccurrenceUpdate,
    SeriesCreate,
    SeriesCreateRead,
    SeriesDeleteRead,
    SeriesUpdate,
    SeriesUpdateRead,
)
from ..usecases import recurring as recurring_usecase
from ..usecases.access import Actor
from ..utils.audit_log import emit_audit_log
from .errors import audit_failure, http_error

router = APIRouter(prefix="/recurring-series", tags=["recurring"])


@router.post("", response_model=SeriesCreateRead, status_code=status.HTTP_201_CREATED)
async def create_series(
    payload: SeriesCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> SeriesCreateRead:
    series_repo = SqlAlchemySeriesRepository(session)
    event_repo = SqlAlchemyEventRepository(session)
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        async with atomic(session):
            created = await recurring_usecase.create_series(
                series_repo,
                event_repo,
                slot_repo,
                actor=actor,
                title=payload.title,
                description=payload.description,
                location=payload.location,
                category=payload.category,
                frequency=payload.frequency,
                interval_count=payload.interval_count,
                weekdays=payload.weekdays,
                start_date=payload.start_date,
                until_date=payload.until_date,
                start_time=payload.start_time,
                end_time=payload.end_time,
                capacity=payload.capacity,
                timezone=payload.timezone,
            )
    except DomainError as exc:
        raise http_error(exc) from exc

    try:
        emit_audit_log(
            action="series.created",
            initiator="admin",
            user_id=actor.user_id,
            series_id=created.series.id,
            extra={"occurrences": created.occurrence_count},
        )
    except RuntimeError as exc:
        raise audit_failure() from exc
    return SeriesCreateRead(
        series_id=created.series.id,
        occurrence_count=created.occurrence_count,
        first_date=created.first_date,
        last_date=created.last_date,
    )


@router.patch("/{series_id}", response_model=SeriesUpdateRead)
async def update_series(
    payload: SeriesUpdate,
    series_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> SeriesUpdateRead:
    series_repo = SqlAlchemySeriesRepository(session)
    event_repo = SqlAlchemyEventRepository(session)
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    changes = recurring_usecase.SeriesChanges.from_fields(
        payload.model_dump(exclude={"effective_date"}, exclude_unset=True)
    )
    try:
        async with atomic(session):
            result = await recurring_usecase.edit_series_forward(
                series_repo,
                event_repo,
                slot_repo,
                booking_repo,
                actor=actor,
                series_id=series_id,
                effective_date=payload.effective_date,
                changes=changes,
            )
    except DomainError as exc:
        raise http_error(exc) from exc

    try:
        emit_audit_log(
            action="series.updated",
            initiator="user",
            user_id=actor.user_id,
            series_id=series_id,
            extra={
                "effective_date": payload.effective_date.isoformat(),
                "series_version": result.series.series_version,
                "applied_changes": result.applied_changes,
                "preserved_with_bookings": result.preserved_with_bookings,
            },
        )
    except RuntimeError as exc:
        raise audit_failure() from exc
    return SeriesUpdateRead(
        series_id=series_id,
        series_version=result.series.series_version,
        applied_changes=result.applied_changes,
        preserved_with_bookings=result.preserved_with_bookings,
    )


@router.delete("/{series_id}", response_model=SeriesDeleteRead)
async def delete_series(
    series_id: int = Path(..., ge=1),
    from_date: Optional[date] = Query(default=None, description="Cancel occurrences on or after this date"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> SeriesDeleteRead:
    series_repo = SqlAlchemySeriesRepository(session)
    event_repo = SqlAlchemyEventRepository(session)
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        async with atomic(session):
            cancelled = await recurring_usecase.delete_series(
                series_repo,
                event_repo,
                slot_repo,
                booking_repo,
                actor=actor,
                series_id=series_id,
                from_date=from_date,
            )
    except DomainError as exc:
        raise http_error(exc) from exc

    try:
        emit_audit_log(
            action="series.deleted",
            initiator="user",
            user_id=actor.user_id,
            series_id=series_id,
            extra={"cancelled_occurrences": cancelled},
        )
    except RuntimeError as exc:
        raise audit_failure() from exc
    return SeriesDeleteRead(series_id=series_id, cancelled_occurrences=cancelled)


@router.patch("/{series_id}/occurrences/{event_id}", response_model=OccurrenceRead)
async def update_occurrence(
    payload: OccurrenceUpdate,
    series_id: int = Path(..., ge=1),
    event_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> OccurrenceRead:
    changes = recurring_usecase.OccurrenceChanges.from_fields(
        payload.model_dump(exclude={"action"}, exclude_unset=True)
    )
    return await _edit_occurrence(
        session,
        actor=actor,
        series_id=series_id,
        event_id=event_id,
        action=payload.action,
        changes=changes,
    )


@router.delete("/{series_id}/occurrences/{event_id}", response_model=OccurrenceRead)
async def delete_occurrence(
    series_id: int = Path(..., ge=1),
    event_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> OccurrenceRead:
    return await _edit_occurrence(
        session,
        actor=actor,
        series_id=series_id,
        event_id=event_id,
        action=recurring_usecase.OccurrenceAction.CANCEL,
        changes=None,
    )


async def _edit_occurrence(
    session: AsyncSession,
    *,
    actor: Actor,
    series_id: int,
    event_id: int,
    action: recurring_usecase.OccurrenceAction,
    changes: Optional[recurring_usecase.OccurrenceChanges],
) -> OccurrenceRead:
    try:
        async with atomic(session):
            message = await recurring_usecase.edit_occurrence(
                SqlAlchemySeriesRepository(session),
                SqlAlchemyEventRepository(session),
                SqlAlchemySlotRepository(session),
                SqlAlchemyBookingRepository(session),
                SqlAlchemyNotificationSink(session),
                actor=actor,
                series_id=series_id,
                event_id=event_id,
                action=action,
                changes=changes,
            )
    except DomainError as exc:
        raise http_error(exc) from exc

    try:
        emit_audit_log(
            action="occurrence.cancelled"
            if action == recurring_usecase.OccurrenceAction.CANCEL
            else "occurrence.updated",
            initiator="user",
            user_id=actor.user_id,
            series_id=series_id,
            event_id=event_id,
        )
    except RuntimeError as exc:
        raise audit_failure() from exc
    return OccurrenceRead(series_id=series_id, event_id=event_id, message=message)
