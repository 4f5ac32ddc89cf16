from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

UTC_NAME = "UTC"


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def utc_naive_to_aware(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc)


def get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown timezone: {name}") from exc


def combine_local(day: date, at: time, tz_name: str) -> datetime:
    """Interpret ``day`` + ``at`` as wall-clock time in ``tz_name`` and return naive UTC."""
    local = datetime.combine(day, at).replace(tzinfo=get_zone(tz_name))
    return to_utc_naive(local)


def local_time_of(dt: datetime, tz_name: str) -> time:
    """Wall-clock time of a naive UTC datetime in ``tz_name``."""
    return utc_naive_to_aware(dt).astimezone(get_zone(tz_name)).time().replace(tzinfo=None)


def parse_time_of_day(value: str | time) -> time:
    """Accept ``HH:MM`` or ``HH:MM:SS``."""
    if isinstance(value, time):
        return value.replace(tzinfo=None, microsecond=0)
    text = value.strip()
    parts = text.split(":")
    if len(parts) not in (2, 3) or not all(len(p) == 2 and p.isdigit() for p in parts):
        raise ValueError("Invalid time format. Use HH:MM or HH:MM:SS.")
    hour, minute = int(parts[0]), int(parts[1])
    second = int(parts[2]) if len(parts) == 3 else 0
    return time(hour, minute, second)
