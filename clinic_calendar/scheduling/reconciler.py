"""Availability reconciliation: weekly rules plus date exceptions to time blocks."""

import logging
from collections import defaultdict
from datetime import date, time
from typing import TYPE_CHECKING, Any, Iterable, NamedTuple, Optional, Sequence

from clinic_calendar.scheduling.errors import ConversionError
from clinic_calendar.scheduling.models import (
    AvailabilityException,
    AvailabilityRule,
    DayOfWeek,
    TimeBlock,
    TimeOffBlock,
)
from clinic_calendar.scheduling.timezone import TimeZoneConversionService

if TYPE_CHECKING:
    from clinic_calendar.diagnostics import DiagnosticsLog

logger = logging.getLogger(__name__)


class _Interval(NamedTuple):
    source_id: str
    start_time: time
    end_time: time
    is_exception: bool
    is_standalone: bool


class AvailabilityReconciler:
    """Produces the merged availability of one clinician for a calendar day.

    Exceptions take precedence over the rule occurrence they reference: any
    exception naming a rule on a date removes that rule's occurrence, and only
    a non-deleted exception with both times contributes its own interval.
    A day covered by active time-off has no availability at all.
    """

    def __init__(
        self,
        tz_service: TimeZoneConversionService,
        diagnostics: Optional["DiagnosticsLog"] = None,
    ) -> None:
        self.tz = tz_service
        self.diagnostics = diagnostics

    def reconcile(
        self,
        day: date,
        rules: Iterable[AvailabilityRule],
        exceptions: Iterable[AvailabilityException],
        zone: Any = None,
        time_off: Iterable[TimeOffBlock] = (),
    ) -> list[TimeBlock]:
        """Return the merged ``TimeBlock`` list for *day* in *zone*."""
        off = next((t for t in time_off if t.covers(day)), None)
        if off is not None:
            logger.debug(f"No availability on {day}: time-off {off.id}")
            return []

        weekday = DayOfWeek.for_date(day)
        day_rules = [r for r in rules if r.active and r.day_of_week == weekday]
        day_exceptions = [e for e in exceptions if e.specific_date == day]

        excluded_ids = {
            e.original_availability_id
            for e in day_exceptions
            if e.original_availability_id is not None
        }

        intervals = [
            _Interval(r.id, r.start_time, r.end_time, False, False)
            for r in day_rules
            if r.id not in excluded_ids
        ]
        intervals.extend(
            _Interval(e.id, e.start_time, e.end_time, not e.is_standalone, e.is_standalone)
            for e in self._authoritative(day_exceptions)
            if not e.is_deleted and e.has_interval
        )

        blocks = [b for b in (self._localize(day, i, zone) for i in intervals) if b is not None]
        blocks.sort(key=lambda b: (b.start, b.end, b.source_ids))
        return self._merge(blocks)

    def reconcile_range(
        self,
        days: Sequence[date],
        rules: Iterable[AvailabilityRule],
        exceptions: Iterable[AvailabilityException],
        zone: Any = None,
        time_off: Iterable[TimeOffBlock] = (),
    ) -> dict[date, list[TimeBlock]]:
        """Reconcile each of *days*, grouping exceptions by date once."""
        rules = list(rules)
        time_off = [t for t in time_off if t.active]
        by_date: dict[date, list[AvailabilityException]] = defaultdict(list)
        for exc in exceptions:
            by_date[exc.specific_date].append(exc)
        return {day: self.reconcile(day, rules, by_date.get(day, []), zone, time_off) for day in days}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _authoritative(exceptions: list[AvailabilityException]) -> list[AvailabilityException]:
        """Keep the last-listed exception per referenced rule; standalone ones all count."""
        latest: dict[str, AvailabilityException] = {}
        standalone: list[AvailabilityException] = []
        for exc in exceptions:
            if exc.original_availability_id is None:
                standalone.append(exc)
            else:
                latest[exc.original_availability_id] = exc
        return standalone + list(latest.values())

    def _localize(self, day: date, interval: _Interval, zone: Any) -> Optional[TimeBlock]:
        try:
            start = self.tz.localize(day, interval.start_time, zone)
            end = self.tz.localize(day, interval.end_time, zone)
            if start >= end:
                raise ConversionError(
                    f"Interval {interval.start_time:%H:%M}-{interval.end_time:%H:%M} "
                    f"collapses on {day.isoformat()} across a clock change"
                )
        except ConversionError as e:
            logger.warning(f"Excluding availability {interval.source_id} on {day}: {e}")
            if self.diagnostics is not None:
                self.diagnostics.record_excluded(
                    "time_block",
                    interval.source_id,
                    e,
                    raw_value=f"{day.isoformat()} {interval.start_time}-{interval.end_time}",
                )
            return None

        return TimeBlock(
            day=day,
            start=start,
            end=end,
            source_ids=(interval.source_id,),
            is_exception=interval.is_exception,
            is_standalone=interval.is_standalone,
        )

    @staticmethod
    def _merge(blocks: list[TimeBlock]) -> list[TimeBlock]:
        merged: list[TimeBlock] = []
        for block in blocks:
            if merged and merged[-1].day == block.day and merged[-1].end >= block.start:
                prev = merged[-1]
                merged[-1] = TimeBlock(
                    day=prev.day,
                    start=prev.start,
                    end=block.end if block.end > prev.end else prev.end,
                    source_ids=prev.source_ids + block.source_ids,
                    is_exception=prev.is_exception or block.is_exception,
                    is_standalone=prev.is_standalone or block.is_standalone,
                )
            else:
                merged.append(block)
        return merged
