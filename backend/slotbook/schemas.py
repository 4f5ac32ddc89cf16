import datetime as dt
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer

from .models import Booking, BookingStatus, Event, Frequency, Notification, OccurrenceStatus, Slot
from .usecases.recurring import OccurrenceAction
from .utils.time import utc_naive_to_aware


def _utc_iso(value: Optional[datetime]) -> Optional[str]:
    # stored datetimes are naive UTC
    if value is None:
        return None
    return utc_naive_to_aware(value).isoformat()


class SlotAvailability(BaseModel):
    slot_id: int
    event_id: int
    starts_at: datetime
    ends_at: datetime
    capacity: int
    booked: int
    remaining: int

    @field_serializer("starts_at", "ends_at")
    def _ser_datetime(self, value: datetime) -> Optional[str]:
        return _utc_iso(value)

    @classmethod
    def from_entry(cls, entry: Dict[str, Any]) -> "SlotAvailability":
        slot: Slot = entry["slot"]
        return cls(
            slot_id=slot.id,
            event_id=slot.event_id,
            starts_at=slot.starts_at,
            ends_at=slot.ends_at,
            capacity=slot.capacity,
            booked=entry["booked"],
            remaining=entry["remaining"],
        )


class SlotCreate(BaseModel):
    starts_at: datetime
    ends_at: datetime
    capacity: int


class SlotUpdate(BaseModel):
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    capacity: Optional[int] = None


class SlotRead(BaseModel):
    slot_id: int
    event_id: int
    starts_at: datetime
    ends_at: datetime
    capacity: int
    promoted_booking_ids: List[int] = Field(default_factory=list)

    @field_serializer("starts_at", "ends_at")
    def _ser_datetime(self, value: datetime) -> Optional[str]:
        return _utc_iso(value)

    @classmethod
    def from_db(cls, *, slot: Slot, promoted: Optional[List[Booking]] = None) -> "SlotRead":
        return cls(
            slot_id=slot.id,
            event_id=slot.event_id,
            starts_at=slot.starts_at,
            ends_at=slot.ends_at,
            capacity=slot.capacity,
            promoted_booking_ids=[b.id for b in promoted or []],
        )


class BookingCreate(BaseModel):
    spots: int = 1


class BookingCancel(BaseModel):
    spots_to_cancel: Optional[int] = None


class BookingRead(BaseModel):
    booking_id: int
    slot_id: int
    event_id: int
    user_id: int
    spots: int
    status: BookingStatus
    starts_at: datetime
    ends_at: datetime
    cancelled_at: Optional[datetime] = None
    created_at: datetime

    @field_serializer("starts_at", "ends_at", "cancelled_at", "created_at")
    def _ser_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return _utc_iso(value)

    @classmethod
    def from_db(cls, *, booking: Booking, slot: Slot, **extra: Any) -> "BookingRead":
        return cls(
            booking_id=booking.id,
            slot_id=booking.slot_id,
            event_id=slot.event_id,
            user_id=booking.user_id,
            spots=booking.spots,
            status=booking.status,
            starts_at=slot.starts_at,
            ends_at=slot.ends_at,
            cancelled_at=booking.cancelled_at,
            created_at=booking.created_at,
            **extra,
        )


class BookingCancelRead(BookingRead):
    spots_freed: int
    promoted_booking_ids: List[int] = Field(default_factory=list)


class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    date: dt.date
    location: Optional[str] = None
    category: Optional[str] = None
    starts_at: datetime
    ends_at: datetime
    capacity: int


class EventUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    date: Optional[dt.date] = None
    location: Optional[str] = None
    category: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    capacity: Optional[int] = None

    def event_changes(self) -> Dict[str, Any]:
        return self.model_dump(
            exclude_unset=True,
            include={"title", "description", "date", "location", "category"},
        )


class EventRead(BaseModel):
    event_id: int
    title: str
    description: Optional[str]
    date: dt.date
    location: Optional[str]
    category: Optional[str]
    created_by: int
    recurrence_series_id: Optional[int]
    occurrence_date: Optional[dt.date]
    occurrence_status: OccurrenceStatus
    modified_from_series: bool
    slots: List[SlotAvailability] = Field(default_factory=list)

    @classmethod
    def from_db(cls, *, event: Event, slots: Optional[List[SlotAvailability]] = None) -> "EventRead":
        return cls(
            event_id=event.id,
            title=event.title,
            description=event.description,
            date=event.date,
            location=event.location,
            category=event.category,
            created_by=event.created_by,
            recurrence_series_id=event.recurrence_series_id,
            occurrence_date=event.occurrence_date,
            occurrence_status=event.occurrence_status,
            modified_from_series=event.modified_from_series,
            slots=slots or [],
        )


class EventSummary(BaseModel):
    event_id: int
    title: str
    description: Optional[str]
    date: dt.date
    location: Optional[str]
    category: Optional[str]
    recurrence_series_id: Optional[int]
    available: int

    @classmethod
    def from_db(cls, event: Event, available: int) -> "EventSummary":
        return cls(
            event_id=event.id,
            title=event.title,
            description=event.description,
            date=event.date,
            location=event.location,
            category=event.category,
            recurrence_series_id=event.recurrence_series_id,
            available=available,
        )


class EventPageRead(BaseModel):
    data: List[EventSummary]
    page: int
    page_size: int
    total: int


class SeriesCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = None
    category: Optional[str] = None
    frequency: Frequency
    interval_count: int = 1
    weekdays: List[int] = Field(default_factory=list)
    start_date: dt.date
    until_date: dt.date
    start_time: str = Field(description="HH:MM or HH:MM:SS in the series timezone")
    end_time: str = Field(description="HH:MM or HH:MM:SS in the series timezone")
    capacity: int
    timezone: str = "UTC"


class SeriesCreateRead(BaseModel):
    series_id: int
    occurrence_count: int
    first_date: dt.date
    last_date: dt.date


class SeriesUpdate(BaseModel):
    effective_date: dt.date
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = None
    category: Optional[str] = None
    frequency: Optional[Frequency] = None
    interval_count: Optional[int] = None
    weekdays: Optional[List[int]] = None
    until_date: Optional[dt.date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    capacity: Optional[int] = None
    timezone: Optional[str] = None


class SeriesUpdateRead(BaseModel):
    series_id: int
    series_version: int
    applied_changes: int
    preserved_with_bookings: int


class SeriesDeleteRead(BaseModel):
    series_id: int
    cancelled_occurrences: int


class OccurrenceUpdate(BaseModel):
    action: OccurrenceAction = OccurrenceAction.UPDATE
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = None
    category: Optional[str] = None
    occurrence_date: Optional[dt.date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    capacity: Optional[int] = None


class OccurrenceRead(BaseModel):
    series_id: int
    event_id: int
    message: str


class NotificationRead(BaseModel):
    notification_id: int
    type: str
    payload: Optional[Dict[str, Any]]
    read: bool
    created_at: datetime

    @field_serializer("created_at")
    def _ser_datetime(self, value: datetime) -> Optional[str]:
        return _utc_iso(value)

    @classmethod
    def from_db(cls, notification: Notification) -> "NotificationRead":
        return cls(
            notification_id=notification.id,
            type=notification.type,
            payload=notification.payload,
            read=notification.read,
            created_at=notification.created_at,
        )
