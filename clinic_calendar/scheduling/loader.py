"""Concurrent loading of one clinician's calendar for a range of days.

Rules, exceptions, time-off and appointments are fetched concurrently and joined before
reconciliation. Each source degrades independently: a failing fetch is
reported in its ``SourceResult`` and the view is built from the rest. Every
``load`` call starts a new generation; a load whose join finishes after a
newer one has started returns ``None``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from clinic_calendar.diagnostics.events import CycleCompleteEvent, StaleResultEvent
from clinic_calendar.scheduling import records
from clinic_calendar.scheduling.errors import FetchError
from clinic_calendar.scheduling.models import AppointmentBlock, TimeBlock, TimeOffBlock
from clinic_calendar.scheduling.projector import AppointmentProjector
from clinic_calendar.scheduling.reconciler import AvailabilityReconciler
from clinic_calendar.scheduling.slot_index import SlotQueryIndex
from clinic_calendar.scheduling.store import CalendarStore
from clinic_calendar.scheduling.timezone import TimeZoneConversionService

if TYPE_CHECKING:
    from clinic_calendar.diagnostics import DiagnosticsLog

logger = logging.getLogger(__name__)

RULES = "rules"
EXCEPTIONS = "exceptions"
APPOINTMENTS = "appointments"
TIME_OFF = "time_off"


class SourceState(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(frozen=True)
class SourceResult:
    """Outcome of fetching one data source."""

    source: str
    state: SourceState
    rows: tuple[dict[str, Any], ...] = ()
    error: Optional[FetchError] = None

    @property
    def failed(self) -> bool:
        return self.state == SourceState.FAILED


@dataclass(frozen=True)
class CalendarQuery:
    """What to load: a clinician, the visible days and an optional view zone.

    Rule and exception wall-clock times are anchored in the clinician's
    configured zone; blocks are converted to the view zone. With no zone the
    view uses the configured zone too.
    """

    clinician_id: str
    days: tuple[date, ...]
    zone: Optional[str] = None
    include_cancelled: bool = True

    def __post_init__(self) -> None:
        if not self.days:
            raise ValueError("CalendarQuery needs at least one visible day")
        object.__setattr__(self, "days", tuple(sorted(set(self.days))))


@dataclass(frozen=True)
class CalendarSnapshot:
    """Immutable result of one load."""

    query: CalendarQuery
    generation: int
    zone: str
    home_zone: str
    time_blocks: tuple[TimeBlock, ...]
    time_off: tuple[TimeOffBlock, ...]
    appointment_blocks: tuple[AppointmentBlock, ...]
    index: SlotQueryIndex
    sources: dict[str, SourceResult] = field(default_factory=dict)

    @property
    def failed_sources(self) -> list[str]:
        return [name for name, result in self.sources.items() if result.failed]

    @property
    def is_degraded(self) -> bool:
        return bool(self.failed_sources)


class CalendarDataLoader:
    """Fetches, normalizes, reconciles and indexes calendar data."""

    def __init__(
        self,
        store: CalendarStore,
        tz_service: TimeZoneConversionService,
        diagnostics: Optional["DiagnosticsLog"] = None,
        fetch_timeout: float = 10.0,
    ) -> None:
        self.store = store
        self.tz = tz_service
        self.diagnostics = diagnostics
        self.fetch_timeout = fetch_timeout
        self.reconciler = AvailabilityReconciler(tz_service, diagnostics)
        self.projector = AppointmentProjector(tz_service, diagnostics)
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    async def home_zone(self, clinician_id: str) -> str:
        """The clinician's configured zone, in which rule wall-clock times are anchored."""
        try:
            row = await asyncio.wait_for(self.store.fetch_settings(clinician_id), self.fetch_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Could not load settings for clinician {clinician_id}: {e}")
            if self.diagnostics is not None:
                self.diagnostics.fetch_failed("settings", e, clinician_id=clinician_id)
            return self.tz.default_zone
        return self.tz.ensure_valid_zone((row or {}).get("time_zone"))

    def _in_zone(self, block: TimeBlock, zone: str) -> TimeBlock:
        return block.model_copy(
            update={"start": self.tz.to_zone(block.start, zone), "end": self.tz.to_zone(block.end, zone)}
        )

    async def _fetch(self, source: str, coro) -> list[dict[str, Any]]:
        try:
            return await asyncio.wait_for(coro, self.fetch_timeout)
        except asyncio.TimeoutError as e:
            raise FetchError(source, f"timed out after {self.fetch_timeout:g}s", e) from e
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(source, str(e) or type(e).__name__, e) from e

    async def load(self, query: CalendarQuery) -> Optional[CalendarSnapshot]:
        self._generation += 1
        generation = self._generation
        started = time.perf_counter()

        home_zone = await self.home_zone(query.clinician_id)
        zone = self.tz.ensure_valid_zone(query.zone) if query.zone else home_zone
        range_start, _ = self.tz.day_bounds(query.days[0], zone)
        _, range_end = self.tz.day_bounds(query.days[-1], zone)

        # Home days whose occurrences can reach into the visible range
        home_days = query.days
        if home_zone != zone:
            home_days = tuple(
                sorted({d + timedelta(days=offset) for d in query.days for offset in (-1, 0, 1)})
            )

        tasks = {
            RULES: self._fetch(RULES, self.store.fetch_rules(query.clinician_id)),
            EXCEPTIONS: self._fetch(
                EXCEPTIONS,
                self.store.fetch_exceptions(query.clinician_id, home_days[0], home_days[-1]),
            ),
            TIME_OFF: self._fetch(
                TIME_OFF,
                self.store.fetch_time_off(query.clinician_id, home_days[0], home_days[-1]),
            ),
            APPOINTMENTS: self._fetch(
                APPOINTMENTS,
                self.store.fetch_appointments(query.clinician_id, range_start, range_end),
            ),
        }
        outcomes = await asyncio.gather(*tasks.values(), return_exceptions=True)

        if generation != self._generation:
            logger.info(f"Discarding calendar load {generation}; load {self._generation} is newer")
            if self.diagnostics is not None:
                self.diagnostics.record(
                    StaleResultEvent(
                        generation=generation,
                        latest_generation=self._generation,
                        clinician_id=query.clinician_id,
                    )
                )
            return None

        sources: dict[str, SourceResult] = {}
        for source, outcome in zip(tasks.keys(), outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                error = outcome if isinstance(outcome, FetchError) else FetchError(source, str(outcome), outcome)
                logger.warning(f"Calendar source failed: {error}")
                if self.diagnostics is not None:
                    self.diagnostics.fetch_failed(
                        source, error, clinician_id=query.clinician_id, generation=generation
                    )
                sources[source] = SourceResult(source, SourceState.FAILED, error=error)
            else:
                rows = tuple(outcome or ())
                sources[source] = SourceResult(source, SourceState.OK if rows else SourceState.EMPTY, rows)

        rules = records.load_rules(sources[RULES].rows, self.diagnostics, generation)
        exceptions = records.load_exceptions(sources[EXCEPTIONS].rows, self.diagnostics, generation)
        time_off = records.load_time_off(sources[TIME_OFF].rows, self.diagnostics, generation)
        appointments = records.load_appointments(sources[APPOINTMENTS].rows, self.diagnostics, generation)

        by_day = self.reconciler.reconcile_range(home_days, rules, exceptions, home_zone, time_off)
        time_blocks = tuple(
            self._in_zone(block, zone)
            for day in home_days
            for block in by_day[day]
            if block.start < range_end and block.end > range_start
        )
        appointment_blocks = tuple(
            self.projector.project(appointments, zone, query.days, include_cancelled=query.include_cancelled)
        )
        index = SlotQueryIndex(query.days, time_blocks, appointment_blocks, zone, self.tz)

        snapshot = CalendarSnapshot(
            query=query,
            generation=generation,
            zone=zone,
            home_zone=home_zone,
            time_blocks=time_blocks,
            time_off=tuple(time_off),
            appointment_blocks=appointment_blocks,
            index=index,
            sources=sources,
        )

        duration_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            f"Loaded calendar for {query.clinician_id}: {len(time_blocks)} blocks, "
            f"{len(appointment_blocks)} appointments in {duration_ms:.1f}ms"
        )
        if self.diagnostics is not None:
            self.diagnostics.record(
                CycleCompleteEvent(
                    generation=generation,
                    clinician_id=query.clinician_id,
                    time_blocks=len(time_blocks),
                    appointment_blocks=len(appointment_blocks),
                    failed_sources=snapshot.failed_sources,
                    duration_ms=duration_ms,
                )
            )
        return snapshot
