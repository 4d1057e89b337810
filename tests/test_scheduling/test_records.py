"""Tests for row normalization at the persistence boundary."""

from datetime import date, datetime, time, timezone

from clinic_calendar.diagnostics import EventType
from clinic_calendar.scheduling import DayOfWeek
from clinic_calendar.scheduling.records import (
    appointment_from_row,
    exception_from_row,
    load_appointments,
    load_exceptions,
    load_rules,
    load_time_off,
    rule_from_row,
    time_off_from_row,
)


def test_rule_row():
    rule = rule_from_row(
        {"id": 7, "clinician_id": "c1", "day_of_week": "Friday", "start_time": "08:30:00", "end_time": "12:00:00", "is_active": True}
    )
    assert rule.id == "7"
    assert rule.day_of_week is DayOfWeek.FRIDAY
    assert rule.start_time == time(8, 30)


def test_exception_row_with_blank_reference_is_standalone():
    exc = exception_from_row(
        {"id": "e1", "clinician_id": "c1", "specific_date": "2025-06-09", "original_availability_id": "", "start_time": "13:00", "end_time": "14:00"}
    )
    assert exc.is_standalone
    assert exc.specific_date == date(2025, 6, 9)


def test_exception_row_text_flags():
    base = {"id": "e1", "clinician_id": "c1", "specific_date": "2025-06-09", "original_availability_id": "r1"}
    assert exception_from_row({**base, "is_deleted": "false"}).is_deleted is False
    assert exception_from_row({**base, "is_deleted": "true"}).is_deleted is True
    assert exception_from_row({**base, "is_deleted": None}).is_deleted is False


def test_appointment_row_defaults():
    appt = appointment_from_row(
        {"id": "a1", "client_id": "p1", "clinician_id": "c1", "start_at": "2025-06-09T15:00:00Z", "end_at": "2025-06-09T15:30:00+00:00", "status": None}
    )
    assert appt.status.value == "scheduled"
    assert appt.type == "appointment"
    assert appt.end_at == datetime(2025, 6, 9, 15, 30, tzinfo=timezone.utc)


def test_malformed_rows_are_excluded_and_reported(diagnostics):
    rows = [
        {"id": "ok", "clinician_id": "c1", "day_of_week": "Monday", "start_time": "09:00", "end_time": "10:00"},
        {"id": "bad-day", "clinician_id": "c1", "day_of_week": "Someday", "start_time": "09:00", "end_time": "10:00"},
        {"id": "bad-time", "clinician_id": "c1", "day_of_week": "Monday", "start_time": "9 o'clock", "end_time": "10:00"},
        {"id": "inverted", "clinician_id": "c1", "day_of_week": "Monday", "start_time": "11:00", "end_time": "10:00"},
    ]

    rules = load_rules(rows, diagnostics, generation=3)

    assert [r.id for r in rules] == ["ok"]
    events = diagnostics.of_type(EventType.RECORD_EXCLUDED)
    assert [e.record_id for e in events] == ["bad-day", "bad-time", "inverted"]
    assert all(e.record_type == "availability_rule" for e in events)
    assert all(e.error_type == "ConversionError" for e in events)
    assert all(e.generation == 3 for e in events)
    assert "9 o'clock" in events[1].raw_value


def test_unparsable_instant_is_excluded(diagnostics):
    rows = [
        {"id": "a1", "client_id": "p1", "clinician_id": "c1", "start_at": "not-a-time", "end_at": "2025-06-09T15:30:00Z"},
        {"id": "a2", "client_id": "p1", "clinician_id": "c1", "start_at": "2025-06-09T15:00:00Z", "end_at": "2025-06-09T15:30:00Z"},
    ]
    assert [a.id for a in load_appointments(rows, diagnostics)] == ["a2"]
    assert diagnostics.of_type(EventType.RECORD_EXCLUDED)[0].record_id == "a1"


def test_without_diagnostics_rows_are_still_skipped():
    rows = [{"id": "e1", "clinician_id": "c1", "specific_date": "June 9th"}]
    assert load_exceptions(rows) == []


def test_time_off_row():
    block = time_off_from_row(
        {"id": "t1", "clinician_id": "c1", "start_date": "2025-06-09", "end_date": "2025-06-11", "note": None}
    )
    assert block.note == "Time Off"
    assert block.covers(date(2025, 6, 11))
    assert not block.covers(date(2025, 6, 12))


def test_inverted_time_off_is_excluded(diagnostics):
    rows = [
        {"id": "t1", "clinician_id": "c1", "start_date": "2025-06-09", "end_date": "2025-06-09"},
        {"id": "t2", "clinician_id": "c1", "start_date": "2025-06-12", "end_date": "2025-06-10"},
    ]

    blocks = load_time_off(rows, diagnostics)

    assert [b.id for b in blocks] == ["t1"]
    events = diagnostics.of_type(EventType.RECORD_EXCLUDED)
    assert [(e.record_type, e.record_id) for e in events] == [("time_off", "t2")]
