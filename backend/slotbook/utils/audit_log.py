from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "booking.created",
    "booking.waitlisted",
    "booking.cancelled",
    "booking.partially_cancelled",
    "booking.restored",
    "booking.promoted",
    "slot.created",
    "slot.updated",
    "event.created",
    "event.updated",
    "event.deleted",
    "series.created",
    "series.updated",
    "series.deleted",
    "occurrence.updated",
    "occurrence.cancelled",
]
AuditInitiator = Literal["user", "admin", "system"]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _enum_to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    user_id: Optional[int],
    booking_id: Optional[int] = None,
    slot_id: Optional[int] = None,
    event_id: Optional[int] = None,
    series_id: Optional[int] = None,
    spots: Optional[int] = None,
    status_from: Any = None,
    status_to: Any = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit structured JSON audit log. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "user_id": user_id,
        "booking_id": booking_id,
        "slot_id": slot_id,
        "event_id": event_id,
        "series_id": series_id,
        "spots": spots,
        "status_from": _enum_to_str(status_from),
        "status_to": _enum_to_str(status_to),
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True, default=str))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc


def emit_promotions(promoted: Iterable[Any], *, slot_id: int) -> None:
    """One ``booking.promoted`` line per booking lifted off the waitlist."""
    for booking in promoted:
        emit_audit_log(
            action="booking.promoted",
            initiator="system",
            user_id=booking.user_id,
            booking_id=booking.id,
            slot_id=slot_id,
            spots=booking.spots,
            status_from="waitlist",
            status_to="booked",
        )
