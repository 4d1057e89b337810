"""Time zone conversion between stored UTC instants and wall-clock time.

All calendar math goes through :class:`TimeZoneConversionService`. Zone rules
come from ``zoneinfo``; ISO-8601 parsing and daylight-saving disambiguation
come from ``python-dateutil``.

DST handling for wall-clock times:

- a non-existent time (inside a spring-forward gap) is shifted forward by the
  length of the gap, so 02:30 on a 02:00→03:00 transition becomes 03:30;
- an ambiguous time (inside a fall-back overlap) resolves to its first
  occurrence, i.e. the earlier instant (``fold=0``).
"""

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import tz as dateutil_tz
from dateutil.parser import isoparse
from pydantic import BaseModel

from clinic_calendar.scheduling.errors import ConversionError, ZoneResolutionError

if TYPE_CHECKING:
    from clinic_calendar.diagnostics import DiagnosticsLog

logger = logging.getLogger(__name__)

DateLike = Union[date, str]
WallClockLike = Union[time, str]
InstantLike = Union[datetime, str]

# Zone picker options, in display order.
ZONE_LABELS: dict[str, str] = {
    "America/New_York": "Eastern Time (ET)",
    "America/Chicago": "Central Time (CT)",
    "America/Denver": "Mountain Time (MT)",
    "America/Los_Angeles": "Pacific Time (PT)",
    "America/Anchorage": "Alaska Time",
    "Pacific/Honolulu": "Hawaii Time",
    "America/Phoenix": "Arizona",
    "Europe/London": "London",
    "Europe/Paris": "Paris",
    "Europe/Berlin": "Berlin",
    "Asia/Tokyo": "Tokyo",
    "Asia/Shanghai": "Shanghai",
    "Australia/Sydney": "Sydney",
    "UTC": "UTC",
}

# Keys are lower-cased display names and US abbreviations.
ZONE_ALIASES: dict[str, str] = {
    **{label.lower(): zone for zone, label in ZONE_LABELS.items()},
    "eastern time": "America/New_York",
    "central time": "America/Chicago",
    "mountain time": "America/Denver",
    "pacific time": "America/Los_Angeles",
    "est": "America/New_York",
    "edt": "America/New_York",
    "cst": "America/Chicago",
    "cdt": "America/Chicago",
    "mst": "America/Denver",
    "mdt": "America/Denver",
    "pst": "America/Los_Angeles",
    "pdt": "America/Los_Angeles",
    "akst": "America/Anchorage",
    "akdt": "America/Anchorage",
    "hst": "Pacific/Honolulu",
}

_WALL_CLOCK_RE = re.compile(
    r"^\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([AaPp][Mm])?\s*$"
)


def _twelve_hour(moment: datetime) -> str:
    hour = moment.hour % 12 or 12
    meridiem = "AM" if moment.hour < 12 else "PM"
    return f"{hour}:{moment.minute:02d} {meridiem}"


def _date_full(moment: datetime) -> str:
    return f"{moment:%B} {moment.day}, {moment.year}"


def _date_short(moment: datetime) -> str:
    return f"{moment.month}/{moment.day}/{moment.year}"


DISPLAY_PRESETS: dict[str, Callable[[datetime], str]] = {
    "DATE_FULL": _date_full,
    "DATE_SHORT": _date_short,
    "TIME_12H": _twelve_hour,
    "TIME_24H": lambda m: f"{m:%H:%M}",
    "DATETIME_FULL": lambda m: f"{_date_full(m)}, {_twelve_hour(m)}",
    "DATETIME_SHORT": lambda m: f"{_date_short(m)}, {_twelve_hour(m)}",
    "ISO": lambda m: m.isoformat(),
    "SQL": lambda m: f"{m:%Y-%m-%d %H:%M:%S}",
}


class ZoneOption(BaseModel):
    """A selectable zone for zone pickers."""

    value: str
    label: str


class TimeZoneConversionService:
    """Converts between UTC instants and wall-clock time in IANA zones.

    The service holds no mutable state beyond its injected default zone and
    diagnostics sink; one instance is passed to the reconciler, projector and
    view assembler.
    """

    def __init__(
        self,
        default_zone: str = "UTC",
        diagnostics: Optional["DiagnosticsLog"] = None,
    ) -> None:
        self.diagnostics = diagnostics
        if isinstance(default_zone, str) and self.is_resolvable(default_zone.strip()):
            self.default_zone = default_zone.strip()
        else:
            logger.warning(f"Default time zone {default_zone!r} is not resolvable, using UTC")
            self.default_zone = "UTC"

    # ------------------------------------------------------------------
    # Zone resolution
    # ------------------------------------------------------------------

    @staticmethod
    def is_resolvable(name: str) -> bool:
        if not name:
            return False
        try:
            ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            return False
        return True

    def ensure_valid_zone(self, candidate: Any) -> str:
        """Return a usable IANA zone name for any input.

        Resolvable identifiers are returned unchanged, known display names
        and abbreviations are mapped, and everything else falls back to the
        default zone. Never raises.
        """
        if candidate is None or (isinstance(candidate, str) and not candidate.strip()):
            return self.default_zone

        if isinstance(candidate, str):
            name = candidate.strip()
            if self.is_resolvable(name):
                return name
            alias = ZONE_ALIASES.get(name.lower())
            if alias is not None:
                return alias

        error = ZoneResolutionError(candidate, self.default_zone)
        logger.warning(str(error))
        if self.diagnostics is not None:
            self.diagnostics.zone_fallback(candidate, self.default_zone)
        return self.default_zone

    def zone(self, candidate: Any = None) -> ZoneInfo:
        """Return the resolved ``ZoneInfo`` for *candidate*."""
        return ZoneInfo(self.ensure_valid_zone(candidate))

    def format_zone_label(self, candidate: Any) -> str:
        """Human-readable zone label, e.g. ``Central Time (CT)``."""
        name = self.ensure_valid_zone(candidate)
        if name in ZONE_LABELS:
            return ZONE_LABELS[name]

        offset = datetime.now(ZoneInfo(name)).strftime("%z")
        offset = f"{offset[:3]}:{offset[3:]}" if offset else "+00:00"
        city = name.split("/")[-1].replace("_", " ")
        return f"{city} (GMT{offset})"

    @staticmethod
    def zone_options() -> list[ZoneOption]:
        return [ZoneOption(value=zone, label=label) for zone, label in ZONE_LABELS.items()]

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def parse_wall_clock(value: WallClockLike) -> time:
        """Parse ``HH:MM``, ``HH:MM:SS`` or ``h:MM AM`` into a naive ``time``."""
        if isinstance(value, time):
            return value.replace(tzinfo=None)
        if not isinstance(value, str):
            raise ConversionError(f"Wall-clock time must be text, got {type(value).__name__}", value)

        m = _WALL_CLOCK_RE.match(value)
        if not m:
            raise ConversionError(f"Malformed wall-clock time: {value!r}", value)

        hour, minute = int(m.group(1)), int(m.group(2))
        second = int(m.group(3) or 0)
        meridiem = (m.group(4) or "").lower()
        if meridiem:
            if not 1 <= hour <= 12:
                raise ConversionError(f"Hour out of range for 12-hour time: {value!r}", value)
            hour = hour % 12 + (12 if meridiem == "pm" else 0)

        try:
            return time(hour, minute, second)
        except ValueError as e:
            raise ConversionError(f"Impossible wall-clock time {value!r}: {e}", value) from e

    @staticmethod
    def parse_date(value: DateLike) -> date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                return date.fromisoformat(value.strip())
            except ValueError as e:
                raise ConversionError(f"Malformed calendar date: {value!r}", value) from e
        raise ConversionError(f"Calendar date must be a date or text, got {type(value).__name__}", value)

    @staticmethod
    def parse_instant(value: InstantLike) -> datetime:
        """Parse a stored instant into an aware UTC datetime (naive means UTC)."""
        if isinstance(value, datetime):
            moment = value
        elif isinstance(value, str):
            if not value.strip():
                raise ConversionError("Empty instant", value)
            try:
                moment = isoparse(value.strip())
            except (ValueError, OverflowError) as e:
                raise ConversionError(f"Malformed instant: {value!r}", value) from e
        else:
            raise ConversionError(f"Instant must be a datetime or text, got {type(value).__name__}", value)

        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(timezone.utc)

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    def localize(self, local_date: DateLike, wall_clock: WallClockLike, zone: Any = None) -> datetime:
        """Combine a date and wall-clock time into an aware datetime in *zone*."""
        day = self.parse_date(local_date)
        clock = self.parse_wall_clock(wall_clock)
        local = datetime.combine(day, clock, tzinfo=self.zone(zone))
        if not dateutil_tz.datetime_exists(local):
            local = dateutil_tz.resolve_imaginary(local)
        return local

    def to_absolute_instant(self, local_date: DateLike, wall_clock: WallClockLike, zone: Any = None) -> datetime:
        """Return the UTC instant of a wall-clock time on a date in *zone*."""
        return self.localize(local_date, wall_clock, zone).astimezone(timezone.utc)

    def from_absolute_instant(self, instant: InstantLike, zone: Any = None) -> tuple[date, time]:
        """Return the local ``(date, time)`` of an instant in *zone*."""
        local = self.to_zone(instant, zone)
        return local.date(), local.time()

    def to_zone(self, instant: InstantLike, zone: Any = None) -> datetime:
        return self.parse_instant(instant).astimezone(self.zone(zone))

    def is_ambiguous(self, local_date: DateLike, wall_clock: WallClockLike, zone: Any = None) -> bool:
        """Whether a wall-clock time occurs twice on *local_date* (fall-back overlap)."""
        local = datetime.combine(self.parse_date(local_date), self.parse_wall_clock(wall_clock), tzinfo=self.zone(zone))
        return dateutil_tz.datetime_ambiguous(local)

    def is_skipped(self, local_date: DateLike, wall_clock: WallClockLike, zone: Any = None) -> bool:
        """Whether a wall-clock time falls in a spring-forward gap on *local_date*."""
        local = datetime.combine(self.parse_date(local_date), self.parse_wall_clock(wall_clock), tzinfo=self.zone(zone))
        return not dateutil_tz.datetime_exists(local)

    def day_bounds(self, day: DateLike, zone: Any = None) -> tuple[datetime, datetime]:
        """UTC instants bounding the local day ``[00:00, next 00:00)``."""
        parsed = self.parse_date(day)
        start = self.to_absolute_instant(parsed, time(0), zone)
        end = self.to_absolute_instant(parsed + timedelta(days=1), time(0), zone)
        return start, end

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def format_for_display(
        self,
        value: Union[InstantLike, time],
        pattern: str = "DATETIME_SHORT",
        zone: Any = None,
    ) -> str:
        """Format an instant or a wall-clock time for display in *zone*.

        Patterns are either a preset name from ``DISPLAY_PRESETS`` or a
        ``strftime`` pattern. Wall-clock values are already local and are
        formatted as-is on today's date in *zone*.
        """
        tzinfo = self.zone(zone)
        if isinstance(value, time) or (isinstance(value, str) and _WALL_CLOCK_RE.match(value)):
            clock = self.parse_wall_clock(value)
            moment = datetime.combine(datetime.now(tzinfo).date(), clock, tzinfo=tzinfo)
        else:
            moment = self.parse_instant(value).astimezone(tzinfo)

        preset = DISPLAY_PRESETS.get(pattern)
        if preset is not None:
            return preset(moment)
        try:
            return moment.strftime(pattern)
        except ValueError as e:
            raise ConversionError(f"Invalid display pattern {pattern!r}", pattern) from e

    def safe_format(
        self,
        value: Union[InstantLike, time, None],
        pattern: str = "DATETIME_SHORT",
        zone: Any = None,
    ) -> str:
        """Like :meth:`format_for_display` but returns the raw value on failure."""
        if value is None:
            return ""
        try:
            return self.format_for_display(value, pattern, zone)
        except ConversionError as e:
            logger.debug(f"Displaying raw value after conversion failure: {e}")
            return str(value)
