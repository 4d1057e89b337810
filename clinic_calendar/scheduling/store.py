"""Persistence collaborator interface and an in-memory implementation."""

from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional, Protocol, runtime_checkable

from clinic_calendar.scheduling.errors import ConversionError
from clinic_calendar.scheduling.timezone import TimeZoneConversionService

Row = dict[str, Any]


@runtime_checkable
class CalendarStore(Protocol):
    """Async source of raw calendar rows.

    Instants are ISO-8601 UTC text, wall-clock times ``HH:MM[:SS]`` text in
    the clinician's home zone and weekdays English names.
    """

    async def fetch_rules(self, clinician_id: str) -> list[Row]:
        ...

    async def fetch_exceptions(self, clinician_id: str, start_date: date, end_date: date) -> list[Row]:
        ...

    async def fetch_appointments(self, clinician_id: str, start_at: datetime, end_at: datetime) -> list[Row]:
        ...

    async def fetch_time_off(self, clinician_id: str, start_date: date, end_date: date) -> list[Row]:
        ...

    async def fetch_settings(self, clinician_id: str) -> Optional[Row]:
        ...


def _as_date(value: Any) -> Optional[date]:
    try:
        return TimeZoneConversionService.parse_date(value)
    except ConversionError:
        return None


def _as_instant(value: Any) -> Optional[datetime]:
    try:
        return TimeZoneConversionService.parse_instant(value)
    except ConversionError:
        return None


class StaticCalendarStore:
    """Serves rows held in memory, filtered the way a query service would.

    Rows whose filter columns cannot be read are passed through so that
    normalization can report them.
    """

    def __init__(
        self,
        rules: Iterable[Mapping[str, Any]] = (),
        exceptions: Iterable[Mapping[str, Any]] = (),
        appointments: Iterable[Mapping[str, Any]] = (),
        settings: Iterable[Mapping[str, Any]] = (),
        time_off: Iterable[Mapping[str, Any]] = (),
    ) -> None:
        self.rules = [dict(r) for r in rules]
        self.exceptions = [dict(e) for e in exceptions]
        self.appointments = [dict(a) for a in appointments]
        self.settings = {str(s["clinician_id"]): dict(s) for s in settings}
        self.time_off = [dict(t) for t in time_off]

    @classmethod
    def from_fixture(cls, data: Mapping[str, Any]) -> "StaticCalendarStore":
        return cls(
            rules=data.get("rules", ()),
            exceptions=data.get("exceptions", ()),
            appointments=data.get("appointments", ()),
            settings=data.get("settings", ()),
            time_off=data.get("time_off", ()),
        )

    @staticmethod
    def _owned(row: Mapping[str, Any], clinician_id: str) -> bool:
        return str(row.get("clinician_id")) == str(clinician_id)

    async def fetch_rules(self, clinician_id: str) -> list[Row]:
        return [
            dict(r)
            for r in self.rules
            if self._owned(r, clinician_id) and r.get("is_active", r.get("active", True))
        ]

    async def fetch_exceptions(self, clinician_id: str, start_date: date, end_date: date) -> list[Row]:
        rows = []
        for row in self.exceptions:
            if not self._owned(row, clinician_id):
                continue
            day = _as_date(row.get("specific_date"))
            if day is None or start_date <= day <= end_date:
                rows.append(dict(row))
        return rows

    async def fetch_appointments(self, clinician_id: str, start_at: datetime, end_at: datetime) -> list[Row]:
        rows = []
        for row in self.appointments:
            if not self._owned(row, clinician_id):
                continue
            start = _as_instant(row.get("start_at"))
            if start is None or start_at <= start < end_at:
                rows.append(dict(row))
        return rows

    async def fetch_settings(self, clinician_id: str) -> Optional[Row]:
        row = self.settings.get(str(clinician_id))
        return dict(row) if row is not None else None

    async def fetch_time_off(self, clinician_id: str, start_date: date, end_date: date) -> list[Row]:
        """Active time-off overlapping ``[start_date, end_date]``."""
        rows = []
        for row in self.time_off:
            if not self._owned(row, clinician_id) or not row.get("is_active", True):
                continue
            first, last = _as_date(row.get("start_date")), _as_date(row.get("end_date"))
            if first is None or last is None or (first <= end_date and last >= start_date):
                rows.append(dict(row))
        return rows
