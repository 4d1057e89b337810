"""Pydantic models for availability, appointments and derived calendar blocks."""

from datetime import date, datetime, time
from enum import Enum, IntEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from clinic_calendar.scheduling.errors import ValidationError
from clinic_calendar.scheduling.timezone import TimeZoneConversionService


class DayOfWeek(IntEnum):
    """Ordinal weekday, numbered like ``date.weekday()``."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def parse(cls, value: Any) -> "DayOfWeek":
        """Convert a stored weekday (``"Monday"``, ``"mon"``, ``0``) to the enum."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        if isinstance(value, str):
            key = value.strip().lower()
            if key.isdigit():
                return cls(int(key))
            for member in cls:
                name = member.name.lower()
                if key in (name, name[:3]):
                    return member
        raise ValueError(f"Unrecognised day of week: {value!r}")

    @classmethod
    def for_date(cls, day: date) -> "DayOfWeek":
        return cls(day.weekday())

    @property
    def label(self) -> str:
        return self.name.capitalize()


class AppointmentStatus(str, Enum):
    """Appointment lifecycle statuses."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MISSED = "missed"


ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.MISSED}
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.MISSED: frozenset(),
}


def _parse_clock(value: Any) -> Any:
    if value is None or value == "":
        return None
    return TimeZoneConversionService.parse_wall_clock(value)


class AvailabilityRule(BaseModel):
    """A weekly-recurring open interval in the clinician's home zone."""

    model_config = ConfigDict(frozen=True)

    id: str
    clinician_id: str
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    active: bool = True

    @field_validator("day_of_week", mode="before")
    @classmethod
    def _parse_day(cls, value: Any) -> DayOfWeek:
        return DayOfWeek.parse(value)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _parse_times(cls, value: Any) -> Any:
        return _parse_clock(value)

    @model_validator(mode="after")
    def _check_interval(self) -> "AvailabilityRule":
        if self.start_time >= self.end_time:
            raise ValueError(
                f"start_time {self.start_time:%H:%M} must be before end_time {self.end_time:%H:%M}"
            )
        return self


class AvailabilityException(BaseModel):
    """A date-specific override of one rule occurrence, or a standalone addition."""

    model_config = ConfigDict(frozen=True)

    id: str
    clinician_id: str
    specific_date: date
    original_availability_id: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    is_deleted: bool = False

    @field_validator("original_availability_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return str(value)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _parse_times(cls, value: Any) -> Any:
        return _parse_clock(value)

    @model_validator(mode="after")
    def _check_interval(self) -> "AvailabilityException":
        if not self.is_deleted and self.has_interval and self.start_time >= self.end_time:
            raise ValueError(
                f"start_time {self.start_time:%H:%M} must be before end_time {self.end_time:%H:%M}"
            )
        return self

    @property
    def is_standalone(self) -> bool:
        return self.original_availability_id is None

    @property
    def has_interval(self) -> bool:
        return self.start_time is not None and self.end_time is not None


class Appointment(BaseModel):
    """A booked appointment; the only source of truth for booked time."""

    model_config = ConfigDict(frozen=True)

    id: str
    client_id: str
    clinician_id: str
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    type: str = "appointment"
    client_name: Optional[str] = None

    @field_validator("start_at", "end_at", mode="before")
    @classmethod
    def _to_utc(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return TimeZoneConversionService.parse_instant(value)

    def with_status(self, new_status: AppointmentStatus) -> "Appointment":
        """Return a copy with *new_status*, enforcing the lifecycle."""
        new_status = AppointmentStatus(new_status)
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise ValidationError(
                f"Cannot change appointment status from {self.status.value} to {new_status.value}"
            )
        return self.model_copy(update={"status": new_status})


class TimeBlock(BaseModel):
    """Materialized availability on one calendar day.

    ``is_exception``/``is_standalone`` are true when at least one merged
    source was a modified occurrence or a standalone addition.
    """

    model_config = ConfigDict(frozen=True)

    day: date
    start: datetime
    end: datetime
    source_ids: tuple[str, ...]
    is_exception: bool = False
    is_standalone: bool = False

    @property
    def contains_override(self) -> bool:
        return self.is_exception or self.is_standalone

    def covers(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


class AppointmentBlock(BaseModel):
    """An appointment projected onto a local calendar day."""

    model_config = ConfigDict(frozen=True)

    id: str
    day: date
    start: datetime
    end: datetime
    client_id: str
    client_name: Optional[str] = None
    type: str = "appointment"
    status: AppointmentStatus = AppointmentStatus.SCHEDULED

    def covers(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


class AvailabilitySettings(BaseModel):
    """Per-clinician booking and display settings."""

    clinician_id: str
    time_zone: str = "America/Chicago"
    slot_minutes: int = Field(default=30, ge=5, le=240)
    min_notice_days: int = Field(default=1, ge=0)
    max_advance_days: int = Field(default=30, ge=0)


class TimeOffBlock(BaseModel):
    """Whole days, ``start_date`` through ``end_date`` inclusive, with no availability."""

    model_config = ConfigDict(frozen=True)

    id: str
    clinician_id: str
    start_date: date
    end_date: date
    note: str = "Time Off"
    active: bool = True

    @model_validator(mode="after")
    def _check_range(self) -> "TimeOffBlock":
        if self.start_date > self.end_date:
            raise ValueError(
                f"start_date {self.start_date.isoformat()} must not be after end_date {self.end_date.isoformat()}"
            )
        return self

    def covers(self, day: date) -> bool:
        return self.active and self.start_date <= day <= self.end_date
