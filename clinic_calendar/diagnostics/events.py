"""Structured diagnostic events for calendar rendering cycles."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of diagnostic events."""

    ZONE_FALLBACK = "zone_fallback"
    RECORD_EXCLUDED = "record_excluded"
    FETCH_FAILED = "fetch_failed"
    STALE_RESULT_DISCARDED = "stale_result_discarded"
    CYCLE_COMPLETE = "cycle_complete"


class DiagnosticEvent(BaseModel):
    """Base class for all diagnostic events."""

    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    generation: Optional[int] = None
    clinician_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ZoneFallbackEvent(DiagnosticEvent):
    """A configured zone could not be resolved and a fallback was used."""

    event_type: EventType = EventType.ZONE_FALLBACK
    candidate: Optional[str] = None
    resolved_zone: str


class RecordExcludedEvent(DiagnosticEvent):
    """A record was left out of reconciliation or projection."""

    event_type: EventType = EventType.RECORD_EXCLUDED
    record_type: str
    record_id: Optional[str] = None
    error_type: str = "ConversionError"
    error_message: str
    raw_value: Optional[str] = None


class FetchFailedEvent(DiagnosticEvent):
    """One data source could not be fetched."""

    event_type: EventType = EventType.FETCH_FAILED
    source: str
    error_type: str
    error_message: str


class StaleResultEvent(DiagnosticEvent):
    """A superseded load finished and its result was dropped."""

    event_type: EventType = EventType.STALE_RESULT_DISCARDED
    latest_generation: int


class CycleCompleteEvent(DiagnosticEvent):
    """Summary of a completed render cycle."""

    event_type: EventType = EventType.CYCLE_COMPLETE
    time_blocks: int = 0
    appointment_blocks: int = 0
    failed_sources: list[str] = Field(default_factory=list)
    duration_ms: Optional[float] = None
