"""Error taxonomy for the calendar core."""

from typing import Any, Optional


class CalendarError(Exception):
    """Base class for all calendar errors."""


class ZoneResolutionError(CalendarError):
    """A zone identifier could not be resolved.

    Never surfaced to callers: the time zone service resolves it to a
    fallback zone and records it on the diagnostics channel.
    """

    def __init__(self, candidate: Any, fallback: str):
        self.candidate = candidate
        self.fallback = fallback
        super().__init__(f"Unresolvable time zone {candidate!r}, using {fallback}")


class ConversionError(CalendarError, ValueError):
    """A malformed instant or wall-clock value, or an impossible combination."""

    def __init__(self, message: str, value: Any = None):
        self.value = value
        super().__init__(message)


class FetchError(CalendarError):
    """The persistence collaborator failed for one data source."""

    def __init__(self, source: str, message: str, cause: Optional[BaseException] = None):
        self.source = source
        self.cause = cause
        super().__init__(f"{source}: {message}")


class ValidationError(CalendarError, ValueError):
    """Input rejected at data-entry time (rule intervals, booking policy, status changes)."""
