import json
from types import SimpleNamespace
from typing import Any, List

import pytest
from slotbook.models import BookingStatus
from slotbook.utils import audit_log
from slotbook.utils.request_id import set_request_id


class DummyLogger:
    def __init__(self) -> None:
        self.messages: List[str] = []

    def info(self, message: str) -> None:
        self.messages.append(message)


def test_emit_audit_log_outputs_json(monkeypatch) -> None:
    dummy_logger = DummyLogger()
    monkeypatch.setattr(audit_log, "_audit_logger", dummy_logger)

    set_request_id("req-123")
    try:
        audit_log.emit_audit_log(
            action="booking.created",
            initiator="user",
            user_id=4,
            booking_id=1,
            slot_id=2,
            event_id=3,
            spots=2,
            status_to=BookingStatus.BOOKED,
        )
    finally:
        set_request_id(None)

    assert len(dummy_logger.messages) == 1
    payload = json.loads(dummy_logger.messages[0])
    assert payload["action"] == "booking.created"
    assert payload["initiator"] == "user"
    assert payload["request_id"] == "req-123"
    assert payload["status_to"] == "booked"
    assert payload["spots"] == 2
    assert "timestamp" in payload
    # None values are dropped
    assert "status_from" not in payload
    assert "series_id" not in payload


def test_emit_audit_log_merges_extra(monkeypatch) -> None:
    dummy_logger = DummyLogger()
    monkeypatch.setattr(audit_log, "_audit_logger", dummy_logger)

    audit_log.emit_audit_log(
        action="series.updated",
        initiator="admin",
        user_id=1,
        series_id=7,
        message="Series updated successfully.",
        extra={"applied_changes": 3, "preserved_with_bookings": 1},
    )
    payload = json.loads(dummy_logger.messages[0])
    assert payload["series_id"] == 7
    assert payload["message"] == "Series updated successfully."
    assert payload["applied_changes"] == 3
    assert payload["preserved_with_bookings"] == 1


def test_emit_audit_log_raises_on_logger_failure(monkeypatch) -> None:
    class FailingLogger:
        def info(self, _: Any) -> None:
            raise ValueError("fail")

    monkeypatch.setattr(audit_log, "_audit_logger", FailingLogger())

    with pytest.raises(RuntimeError):
        audit_log.emit_audit_log(
            action="booking.cancelled",
            initiator="user",
            user_id=4,
            booking_id=1,
            slot_id=2,
            status_from=BookingStatus.BOOKED,
            status_to=BookingStatus.CANCELLED,
        )


def test_emit_promotions_writes_one_line_per_booking(monkeypatch) -> None:
    dummy_logger = DummyLogger()
    monkeypatch.setattr(audit_log, "_audit_logger", dummy_logger)

    promoted = [
        SimpleNamespace(id=10, user_id=20, spots=1),
        SimpleNamespace(id=11, user_id=21, spots=3),
    ]
    audit_log.emit_promotions(promoted, slot_id=5)

    payloads = [json.loads(m) for m in dummy_logger.messages]
    assert [p["booking_id"] for p in payloads] == [10, 11]
    assert {p["action"] for p in payloads} == {"booking.promoted"}
    assert {p["initiator"] for p in payloads} == {"system"}
    assert payloads[1]["status_from"] == "waitlist"
    assert payloads[1]["status_to"] == "booked"
    assert payloads[1]["slot_id"] == 5


def test_emit_promotions_without_bookings_is_silent(monkeypatch) -> None:
    dummy_logger = DummyLogger()
    monkeypatch.setattr(audit_log, "_audit_logger", dummy_logger)
    audit_log.emit_promotions([], slot_id=5)
    assert dummy_logger.messages == []
