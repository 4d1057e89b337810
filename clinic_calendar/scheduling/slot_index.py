"""Per-day lookup of availability and appointments for grid cells."""

from collections import defaultdict
from datetime import date, datetime, time
from typing import Any, Iterable, Optional, Union

from clinic_calendar.scheduling.models import AppointmentBlock, TimeBlock
from clinic_calendar.scheduling.timezone import TimeZoneConversionService

SlotStart = Union[datetime, time]


class SlotQueryIndex:
    """Buckets blocks by visible day so cell queries scan one day only.

    A time block is filed under every visible day whose local window it
    overlaps; an appointment block only under its own day.
    """

    def __init__(
        self,
        visible_days: Iterable[date],
        time_blocks: Iterable[TimeBlock],
        appointment_blocks: Iterable[AppointmentBlock],
        zone: Any,
        tz_service: Optional[TimeZoneConversionService] = None,
    ) -> None:
        self.tz = tz_service or TimeZoneConversionService()
        self.zone_name = self.tz.ensure_valid_zone(zone)
        self.visible_days = sorted(set(visible_days))

        self._blocks: dict[date, list[TimeBlock]] = defaultdict(list)
        self._appointments: dict[date, list[AppointmentBlock]] = defaultdict(list)

        bounds = {day: self.tz.day_bounds(day, self.zone_name) for day in self.visible_days}
        for block in time_blocks:
            for day, (day_start, day_end) in bounds.items():
                if block.start < day_end and block.end > day_start:
                    self._blocks[day].append(block)

        visible = set(self.visible_days)
        for appt in appointment_blocks:
            if appt.day in visible:
                self._appointments[appt.day].append(appt)

    def _moment(self, day: date, slot_start: SlotStart) -> datetime:
        if isinstance(slot_start, datetime):
            return slot_start
        return self.tz.localize(day, slot_start, self.zone_name)

    def blocks_for(self, day: date) -> list[TimeBlock]:
        return list(self._blocks.get(day, ()))

    def appointments_for(self, day: date) -> list[AppointmentBlock]:
        return list(self._appointments.get(day, ()))

    def block_at(self, day: date, slot_start: SlotStart) -> Optional[TimeBlock]:
        moment = self._moment(day, slot_start)
        for block in self._blocks.get(day, ()):
            if block.covers(moment):
                return block
        return None

    def is_available(self, day: date, slot_start: SlotStart) -> bool:
        return self.block_at(day, slot_start) is not None

    def appointment_at(self, day: date, slot_start: SlotStart) -> Optional[AppointmentBlock]:
        moment = self._moment(day, slot_start)
        for appt in self._appointments.get(day, ()):
            if appt.covers(moment):
                return appt
        return None
