"""Pytest configuration and fixtures."""

from datetime import date

import pytest

from clinic_calendar.diagnostics import DiagnosticsLog
from clinic_calendar.scheduling import (
    Appointment,
    AvailabilityException,
    AvailabilityRule,
    TimeZoneConversionService,
)

CHICAGO = "America/Chicago"
CLINICIAN_ID = "clinician-1"

# 2025-06-09 is a Monday; Chicago is on CDT (UTC-5).
MONDAY = date(2025, 6, 9)


def make_rule(rule_id="rule-1", day="Monday", start="09:00", end="12:00", **kwargs) -> AvailabilityRule:
    return AvailabilityRule(
        id=rule_id,
        clinician_id=kwargs.pop("clinician_id", CLINICIAN_ID),
        day_of_week=day,
        start_time=start,
        end_time=end,
        **kwargs,
    )


def make_exception(
    exc_id="exc-1",
    specific_date=MONDAY,
    original_availability_id="rule-1",
    start=None,
    end=None,
    is_deleted=False,
) -> AvailabilityException:
    return AvailabilityException(
        id=exc_id,
        clinician_id=CLINICIAN_ID,
        specific_date=specific_date,
        original_availability_id=original_availability_id,
        start_time=start,
        end_time=end,
        is_deleted=is_deleted,
    )


def make_appointment(appt_id="appt-1", start_at="2025-06-09T15:00:00Z", end_at="2025-06-09T15:30:00Z", **kwargs) -> Appointment:
    return Appointment(
        id=appt_id,
        client_id=kwargs.pop("client_id", "client-1"),
        clinician_id=kwargs.pop("clinician_id", CLINICIAN_ID),
        start_at=start_at,
        end_at=end_at,
        **kwargs,
    )


@pytest.fixture
def diagnostics():
    """In-memory diagnostics log."""
    return DiagnosticsLog()


@pytest.fixture
def tz(diagnostics):
    """Time zone service defaulting to Chicago, reporting into ``diagnostics``."""
    return TimeZoneConversionService(CHICAGO, diagnostics)
