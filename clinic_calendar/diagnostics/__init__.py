"""Diagnostics side-channel for calendar rendering."""

from clinic_calendar.diagnostics.events import (
    CycleCompleteEvent,
    DiagnosticEvent,
    EventType,
    FetchFailedEvent,
    RecordExcludedEvent,
    StaleResultEvent,
    ZoneFallbackEvent,
)
from clinic_calendar.diagnostics.log import DiagnosticsLog

__all__ = [
    "CycleCompleteEvent",
    "DiagnosticEvent",
    "DiagnosticsLog",
    "EventType",
    "FetchFailedEvent",
    "RecordExcludedEvent",
    "StaleResultEvent",
    "ZoneFallbackEvent",
]
