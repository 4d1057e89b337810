"""Data-entry validation for availability and bookings."""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable, Optional

from pydantic import BaseModel

from clinic_calendar.scheduling.errors import ValidationError
from clinic_calendar.scheduling.models import (
    ALLOWED_TRANSITIONS,
    Appointment,
    AppointmentBlock,
    AppointmentStatus,
    TimeBlock,
)
from clinic_calendar.scheduling.timezone import InstantLike, TimeZoneConversionService

logger = logging.getLogger(__name__)


class BookableSlot(BaseModel):
    """An opening a client can book, in the zone it was requested for."""

    start: datetime
    end: datetime
    label: str


class BookingPolicy:
    """Rejects bad input before it is stored.

    Notice and advance windows are counted in whole calendar days in the
    clinician's zone, so a booking made late in the evening for tomorrow
    morning still satisfies a one-day minimum notice.
    """

    def __init__(
        self,
        tz_service: TimeZoneConversionService,
        min_notice_days: int = 1,
        max_advance_days: int = 30,
    ) -> None:
        self.tz = tz_service
        self.min_notice_days = min_notice_days
        self.max_advance_days = max_advance_days

    @staticmethod
    def validate_rule_interval(start: Any, end: Any) -> tuple[time, time]:
        start_time = TimeZoneConversionService.parse_wall_clock(start)
        end_time = TimeZoneConversionService.parse_wall_clock(end)
        if start_time >= end_time:
            raise ValidationError(
                f"Start time {start_time:%H:%M} must be before end time {end_time:%H:%M}"
            )
        return start_time, end_time

    def validate_booking(
        self,
        start_at: InstantLike,
        end_at: InstantLike,
        zone: Any = None,
        now: Optional[datetime] = None,
    ) -> tuple[datetime, datetime]:
        """Check ordering and the notice/advance window; return the UTC instants."""
        start = self.tz.parse_instant(start_at)
        end = self.tz.parse_instant(end_at)
        if start >= end:
            raise ValidationError("Appointment must end after it starts")

        days_ahead = self.days_ahead(start, zone, now)

        if days_ahead < self.min_notice_days:
            raise ValidationError(
                f"Appointments require at least {self.min_notice_days} day(s) notice"
            )
        if days_ahead > self.max_advance_days:
            raise ValidationError(
                f"Appointments cannot be booked more than {self.max_advance_days} days in advance"
            )
        return start, end

    def days_ahead(self, start_at: InstantLike, zone: Any = None, now: Optional[datetime] = None) -> int:
        """Calendar days in *zone* between today and the day of *start_at*."""
        now = self.tz.parse_instant(now) if now is not None else datetime.now(timezone.utc)
        today = self.tz.to_zone(now, zone).date()
        return (self.tz.to_zone(start_at, zone).date() - today).days

    def in_window(self, start_at: InstantLike, zone: Any = None, now: Optional[datetime] = None) -> bool:
        return self.min_notice_days <= self.days_ahead(start_at, zone, now) <= self.max_advance_days

    @staticmethod
    def validate_transition(current: AppointmentStatus, new: AppointmentStatus) -> AppointmentStatus:
        current, new = AppointmentStatus(current), AppointmentStatus(new)
        if new not in ALLOWED_TRANSITIONS[current]:
            raise ValidationError(f"Cannot change appointment status from {current.value} to {new.value}")
        return new

    @staticmethod
    def fits_availability(start_at: datetime, end_at: datetime, blocks: Iterable[TimeBlock]) -> bool:
        """Whether ``[start_at, end_at)`` lies inside a single block."""
        return any(b.start <= start_at and end_at <= b.end for b in blocks)

    @staticmethod
    def conflicts(
        start_at: datetime,
        end_at: datetime,
        appointments: Iterable[Appointment],
        ignore_id: Optional[str] = None,
    ) -> list[Appointment]:
        """Non-cancelled appointments overlapping ``[start_at, end_at)``."""
        overlapping = []
        for appt in appointments:
            if appt.id == ignore_id or appt.status == AppointmentStatus.CANCELLED:
                continue
            if appt.start_at is None or appt.end_at is None:
                continue
            if appt.start_at < end_at and start_at < appt.end_at:
                overlapping.append(appt)
        return overlapping

    def bookable_slots(
        self,
        day: date,
        blocks: Iterable[TimeBlock],
        appointments: Iterable[AppointmentBlock],
        slot_minutes: int,
        zone: Any = None,
        home_zone: Any = None,
        now: Optional[datetime] = None,
    ) -> list[BookableSlot]:
        """Slot-length openings starting on *day* in *zone*.

        Slots are stepped from the start of each block and must end inside
        it. A slot is dropped when it overlaps a non-cancelled appointment,
        has already started, or falls outside the notice/advance window
        counted in *home_zone* (the clinician's zone, *zone* when omitted).
        """
        if slot_minutes <= 0:
            raise ValueError("slot_minutes must be positive")
        zone_name = self.tz.ensure_valid_zone(zone)
        home = home_zone or zone_name
        now = self.tz.parse_instant(now) if now is not None else datetime.now(timezone.utc)
        step = timedelta(minutes=slot_minutes)
        day_start, day_end = self.tz.day_bounds(day, zone_name)
        busy = [
            (self.tz.parse_instant(a.start), self.tz.parse_instant(a.end))
            for a in appointments
            if a.status != AppointmentStatus.CANCELLED
        ]

        slots: list[BookableSlot] = []
        for block in sorted(blocks, key=lambda b: b.start):
            start = self.tz.parse_instant(block.start)
            block_end = self.tz.parse_instant(block.end)
            while start + step <= block_end:
                end = start + step
                if (
                    day_start <= start < day_end
                    and start > now
                    and self.in_window(start, home, now)
                    and not any(b_start < end and start < b_end for b_start, b_end in busy)
                ):
                    slots.append(
                        BookableSlot(
                            start=self.tz.to_zone(start, zone_name),
                            end=self.tz.to_zone(end, zone_name),
                            label=self.tz.format_for_display(start, "TIME_12H", zone_name),
                        )
                    )
                start = end
        return slots
