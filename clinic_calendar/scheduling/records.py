"""Raw persistence rows to typed records.

Rows arrive from the persistence collaborator as plain mappings: instants as
ISO-8601 UTC text, wall-clock times as ``HH:MM[:SS]`` text and weekdays as
English names. This module is the single place they are converted. A row that
fails conversion is excluded and reported; the rest of the batch still loads.
"""

import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from clinic_calendar.scheduling.errors import ConversionError
from clinic_calendar.scheduling.models import (
    Appointment,
    AvailabilityException,
    AvailabilityRule,
    TimeOffBlock,
)

if TYPE_CHECKING:
    from clinic_calendar.diagnostics import DiagnosticsLog

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def rule_from_row(row: Mapping[str, Any]) -> AvailabilityRule:
    return AvailabilityRule(
        id=_text(row.get("id")),
        clinician_id=_text(row.get("clinician_id")),
        day_of_week=row.get("day_of_week"),
        start_time=row.get("start_time"),
        end_time=row.get("end_time"),
        active=row.get("is_active", row.get("active", True)),
    )


def exception_from_row(row: Mapping[str, Any]) -> AvailabilityException:
    return AvailabilityException(
        id=_text(row.get("id")),
        clinician_id=_text(row.get("clinician_id")),
        specific_date=row.get("specific_date"),
        original_availability_id=row.get("original_availability_id"),
        start_time=row.get("start_time"),
        end_time=row.get("end_time"),
        is_deleted=row.get("is_deleted") or False,
    )


def appointment_from_row(row: Mapping[str, Any]) -> Appointment:
    return Appointment(
        id=_text(row.get("id")),
        client_id=_text(row.get("client_id")),
        clinician_id=_text(row.get("clinician_id")),
        start_at=row.get("start_at"),
        end_at=row.get("end_at"),
        status=row.get("status") or "scheduled",
        type=row.get("type") or "appointment",
        client_name=row.get("client_name"),
    )


def time_off_from_row(row: Mapping[str, Any]) -> TimeOffBlock:
    return TimeOffBlock(
        id=_text(row.get("id")),
        clinician_id=_text(row.get("clinician_id")),
        start_date=row.get("start_date"),
        end_date=row.get("end_date"),
        note=row.get("note") or "Time Off",
        active=row.get("is_active", True),
    )


def _first_error(exc: PydanticValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    err = errors[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    msg = err.get("msg", "invalid value")
    return f"{loc}: {msg}" if loc else msg


def collect(
    rows: Iterable[Mapping[str, Any]],
    parse: Callable[[Mapping[str, Any]], RecordT],
    record_type: str,
    diagnostics: Optional["DiagnosticsLog"] = None,
    generation: Optional[int] = None,
) -> list[RecordT]:
    """Parse *rows* with *parse*, skipping and reporting the ones that fail."""
    records: list[RecordT] = []
    for row in rows:
        try:
            records.append(parse(row))
        except (PydanticValidationError, ConversionError) as e:
            if isinstance(e, PydanticValidationError):
                error: Exception = ConversionError(_first_error(e), dict(row))
            else:
                error = e
            record_id = _text(row.get("id"))
            logger.warning(f"Excluding {record_type} {record_id}: {error}")
            if diagnostics is not None:
                diagnostics.record_excluded(
                    record_type,
                    record_id,
                    error,
                    raw_value=dict(row),
                    generation=generation,
                )
    return records


def load_rules(rows, diagnostics=None, generation=None) -> list[AvailabilityRule]:
    return collect(rows, rule_from_row, "availability_rule", diagnostics, generation)


def load_exceptions(rows, diagnostics=None, generation=None) -> list[AvailabilityException]:
    return collect(rows, exception_from_row, "availability_exception", diagnostics, generation)


def load_appointments(rows, diagnostics=None, generation=None) -> list[Appointment]:
    return collect(rows, appointment_from_row, "appointment", diagnostics, generation)


def load_time_off(rows, diagnostics=None, generation=None) -> list[TimeOffBlock]:
    return collect(rows, time_off_from_row, "time_off", diagnostics, generation)
