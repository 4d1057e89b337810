"""Week grid and month summary assembly."""

import calendar
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Literal, Optional, Sequence

from pydantic import BaseModel, Field

from clinic_calendar.scheduling.models import AppointmentBlock, TimeBlock
from clinic_calendar.scheduling.slot_index import SlotQueryIndex
from clinic_calendar.scheduling.timezone import TimeZoneConversionService

WeekStart = Literal["monday", "sunday"]


class CellKind(str, Enum):
    APPOINTMENT = "appointment"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class CellView(BaseModel):
    """Render instruction for one day/slot cell of the week grid.

    Every column has one cell per time label. A label that does not occur on
    the day (spring-forward gap) gets a zero-length ``skipped`` cell.
    """

    day: date
    slot_start: datetime
    slot_end: datetime
    kind: CellKind
    block: Optional[TimeBlock] = None
    appointment: Optional[AppointmentBlock] = None
    is_start_of_block: bool = False
    is_end_of_block: bool = False
    is_start_of_appointment: bool = False
    skipped: bool = False


class DayColumn(BaseModel):
    day: date
    label: str
    cells: list[CellView] = Field(default_factory=list)


class WeekView(BaseModel):
    zone: str
    zone_label: str
    days: list[date]
    time_labels: list[str]
    columns: list[DayColumn]


class DaySummary(BaseModel):
    """One month-grid day: whether it has availability, its hours and bookings."""

    day: date
    in_month: bool
    has_availability: bool = False
    display_hours: Optional[str] = None
    appointments: list[AppointmentBlock] = Field(default_factory=list)

    @property
    def appointment_count(self) -> int:
        return len(self.appointments)


class MonthView(BaseModel):
    year: int
    month: int
    zone: str
    zone_label: str
    weeks: list[list[DaySummary]]


class ViewAssembler:
    """Turns a ``SlotQueryIndex`` into week and month render instructions.

    In the week grid an appointment always wins over availability for the
    same cell.
    """

    def __init__(
        self,
        tz_service: TimeZoneConversionService,
        slot_minutes: int = 30,
        day_start_hour: int = 7,
        day_end_hour: int = 19,
        week_starts_on: WeekStart = "sunday",
    ) -> None:
        if slot_minutes <= 0:
            raise ValueError("slot_minutes must be positive")
        if not 0 <= day_start_hour < day_end_hour <= 24:
            raise ValueError("day_start_hour must be before day_end_hour within 0-24")
        self.tz = tz_service
        self.slot_minutes = slot_minutes
        self.day_start_hour = day_start_hour
        self.day_end_hour = day_end_hour
        self.week_starts_on = week_starts_on

    # ------------------------------------------------------------------
    # Visible ranges
    # ------------------------------------------------------------------

    def _week_start(self, anchor: date, week_starts_on: Optional[WeekStart]) -> date:
        first = 0 if (week_starts_on or self.week_starts_on) == "monday" else 6
        return anchor - timedelta(days=(anchor.weekday() - first) % 7)

    def week_days(self, anchor: date, week_starts_on: Optional[WeekStart] = None) -> list[date]:
        start = self._week_start(anchor, week_starts_on)
        return [start + timedelta(days=i) for i in range(7)]

    def month_days(self, anchor: date, week_starts_on: Optional[WeekStart] = None) -> list[date]:
        """Whole weeks covering the month of *anchor*."""
        first = anchor.replace(day=1)
        last = first.replace(day=calendar.monthrange(first.year, first.month)[1])
        current = self._week_start(first, week_starts_on)
        days: list[date] = []
        while current <= last or len(days) % 7:
            days.append(current)
            current += timedelta(days=1)
        return days

    def _wall_clocks(self) -> list[time]:
        clocks = []
        minutes = self.day_start_hour * 60
        while minutes < self.day_end_hour * 60:
            clocks.append(time(minutes // 60, minutes % 60))
            minutes += self.slot_minutes
        return clocks

    def _grid(self, day: date, zone: Any) -> list[tuple[time, Optional[datetime]]]:
        """Each wall-clock row with its start instant, or ``None`` inside a clock-change gap."""
        return [
            (clock, None if self.tz.is_skipped(day, clock, zone) else self.tz.localize(day, clock, zone))
            for clock in self._wall_clocks()
        ]

    def time_slots(self, day: date, zone: Any = None) -> list[datetime]:
        """Slot start instants for *day*, as aware datetimes in *zone*."""
        return [moment for _, moment in self._grid(day, zone) if moment is not None]

    # ------------------------------------------------------------------
    # Week
    # ------------------------------------------------------------------

    def assemble_week(self, days: Sequence[date], index: SlotQueryIndex, zone: Any = None) -> WeekView:
        zone_name = self.tz.ensure_valid_zone(zone)
        step = timedelta(minutes=self.slot_minutes)
        columns = []

        for day in days:
            cells = []
            for clock, slot_start in self._grid(day, zone_name):
                if slot_start is None:
                    cells.append(self._skipped_cell(day, clock, zone_name))
                    continue
                appointment = index.appointment_at(day, slot_start)
                block = index.block_at(day, slot_start)
                if appointment is not None:
                    kind = CellKind.APPOINTMENT
                elif block is not None:
                    kind = CellKind.AVAILABLE
                else:
                    kind = CellKind.UNAVAILABLE
                cells.append(
                    CellView(
                        day=day,
                        slot_start=slot_start,
                        slot_end=self._after(slot_start, step),
                        kind=kind,
                        block=block if appointment is None else None,
                        appointment=appointment,
                    )
                )
            columns.append(
                DayColumn(
                    day=day,
                    label=f"{day:%a} {day.month}/{day.day}",
                    cells=self._mark_edges(cells),
                )
            )

        return WeekView(
            zone=zone_name,
            zone_label=self.tz.format_zone_label(zone_name),
            days=list(days),
            time_labels=[self.tz.format_for_display(c, "TIME_12H", zone_name) for c in self._wall_clocks()],
            columns=columns,
        )

    @staticmethod
    def _after(moment: datetime, step: timedelta) -> datetime:
        """*moment* plus *step* of elapsed time, in the zone of *moment*."""
        return (moment.astimezone(timezone.utc) + step).astimezone(moment.tzinfo)

    def _skipped_cell(self, day: date, clock: time, zone: str) -> CellView:
        moment = self.tz.localize(day, clock, zone)
        return CellView(day=day, slot_start=moment, slot_end=moment, kind=CellKind.UNAVAILABLE, skipped=True)

    @staticmethod
    def _mark_edges(cells: list[CellView]) -> list[CellView]:
        """Flag the first and last cell of each block run and the first cell of each appointment."""
        marked = []
        for i, cell in enumerate(cells):
            prev = cells[i - 1] if i > 0 else None
            nxt = cells[i + 1] if i + 1 < len(cells) else None
            updates: dict[str, bool] = {}
            if cell.block is not None:
                updates["is_start_of_block"] = prev is None or prev.block != cell.block
                updates["is_end_of_block"] = nxt is None or nxt.block != cell.block
            if cell.appointment is not None:
                updates["is_start_of_appointment"] = prev is None or prev.appointment != cell.appointment
            marked.append(cell.model_copy(update=updates) if updates else cell)
        return marked

    # ------------------------------------------------------------------
    # Month
    # ------------------------------------------------------------------

    def summarize_day(self, day: date, in_month: bool, index: SlotQueryIndex, zone: Any = None) -> DaySummary:
        zone_name = self.tz.ensure_valid_zone(zone)
        blocks = index.blocks_for(day)
        display_hours = None
        if blocks:
            day_start, day_end = self.tz.day_bounds(day, zone_name)
            start = max(min(b.start for b in blocks), day_start)
            end = min(max(b.end for b in blocks), day_end)
            display_hours = (
                f"{self.tz.format_for_display(start, 'TIME_12H', zone_name)}-"
                f"{self.tz.format_for_display(end, 'TIME_12H', zone_name)}"
            )
        return DaySummary(
            day=day,
            in_month=in_month,
            has_availability=bool(blocks),
            display_hours=display_hours,
            appointments=index.appointments_for(day),
        )

    def assemble_month(
        self,
        anchor: date,
        index: SlotQueryIndex,
        zone: Any = None,
        week_starts_on: Optional[WeekStart] = None,
    ) -> MonthView:
        zone_name = self.tz.ensure_valid_zone(zone)
        days = self.month_days(anchor, week_starts_on)
        summaries = [self.summarize_day(d, d.month == anchor.month, index, zone_name) for d in days]
        return MonthView(
            year=anchor.year,
            month=anchor.month,
            zone=zone_name,
            zone_label=self.tz.format_zone_label(zone_name),
            weeks=[summaries[i:i + 7] for i in range(0, len(summaries), 7)],
        )
