"""Diagnostics side-channel for excluded records, zone fallbacks and fetch failures."""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Optional

from clinic_calendar.diagnostics.events import (
    DiagnosticEvent,
    EventType,
    FetchFailedEvent,
    RecordExcludedEvent,
    ZoneFallbackEvent,
)

logger = logging.getLogger(__name__)


class DiagnosticsLog:
    """Collects diagnostic events emitted while a calendar view is built.

    Events are kept in memory so a response can carry them back to the
    caller, and are optionally appended to a JSON Lines file for later
    analysis of misconfigured zones or corrupt rows.
    """

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        enabled: bool = True,
        max_value_length: int = 200,
    ):
        """Initialize the diagnostics log.

        Args:
            log_dir: Directory for the JSON Lines sink (None keeps events in memory only)
            enabled: Whether events are recorded at all
            max_value_length: Max length of raw values copied into events
        """
        self.enabled = enabled
        self.max_value_length = max_value_length

        self.log_dir = log_dir
        self._log_file: Optional[Path] = None
        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            self._log_file = log_dir / "calendar_diagnostics.jsonl"

        self._events: list[DiagnosticEvent] = []
        self._callbacks: list[Callable[[DiagnosticEvent], None]] = []

    @property
    def events(self) -> list[DiagnosticEvent]:
        return list(self._events)

    def add_callback(self, callback: Callable[[DiagnosticEvent], None]) -> None:
        """Add callback for real-time event monitoring."""
        self._callbacks.append(callback)

    def clear(self) -> None:
        self._events.clear()

    def record(self, event: DiagnosticEvent) -> None:
        """Store an event and forward it to the sink and callbacks."""
        if not self.enabled:
            return

        self._events.append(event)

        if self._log_file is not None:
            try:
                with open(self._log_file, "a") as f:
                    f.write(event.model_dump_json() + "\n")
            except OSError as e:
                logger.warning(f"Failed to write diagnostic event: {e}")

        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Diagnostics callback failed: {e}")

    def _truncate(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value)
        if len(text) <= self.max_value_length:
            return text
        return text[: self.max_value_length] + "..."

    # Convenience recorders

    def zone_fallback(self, candidate: Any, resolved_zone: str) -> None:
        self.record(
            ZoneFallbackEvent(
                candidate=self._truncate(candidate),
                resolved_zone=resolved_zone,
            )
        )

    def record_excluded(
        self,
        record_type: str,
        record_id: Optional[str],
        error: Exception,
        raw_value: Any = None,
        generation: Optional[int] = None,
    ) -> None:
        self.record(
            RecordExcludedEvent(
                record_type=record_type,
                record_id=record_id,
                error_type=type(error).__name__,
                error_message=str(error)[:200],
                raw_value=self._truncate(raw_value),
                generation=generation,
            )
        )

    def fetch_failed(
        self,
        source: str,
        error: BaseException,
        clinician_id: Optional[str] = None,
        generation: Optional[int] = None,
    ) -> None:
        self.record(
            FetchFailedEvent(
                source=source,
                error_type=type(error).__name__,
                error_message=str(error)[:200],
                clinician_id=clinician_id,
                generation=generation,
            )
        )

    # Utility methods

    def of_type(self, event_type: EventType) -> list[DiagnosticEvent]:
        return [e for e in self._events if e.event_type == event_type]

    def get_recent_events(self, limit: int = 100) -> list[dict[str, Any]]:
        """Read recent events back from the JSON Lines sink."""
        if self._log_file is None or not self._log_file.exists():
            return []

        events = []
        with open(self._log_file) as f:
            for line in f:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue

        return events[-limit:]

    def get_stats(self) -> dict[str, Any]:
        """Count in-memory events by type."""
        counts: dict[str, int] = {}
        for event in self._events:
            counts[event.event_type.value] = counts.get(event.event_type.value, 0) + 1
        return {"total": len(self._events), "by_type": counts}
