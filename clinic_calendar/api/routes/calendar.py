"""Calendar API endpoints: assembled views, availability and bookings."""

import logging
import re
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_calendar.api.dependencies import get_diagnostics, get_store, get_tz_service
from clinic_calendar.config import Settings, get_settings
from clinic_calendar.core.database import get_db
from clinic_calendar.core.models import AvailabilityExceptionDB, AvailabilityRuleDB, TimeOffBlockDB
from clinic_calendar.core.repository import (
    AppointmentRepository,
    AvailabilityExceptionRepository,
    AvailabilityRuleRepository,
    AvailabilitySettingsRepository,
    ClientRepository,
    ClinicianRepository,
    TimeOffRepository,
)
from clinic_calendar.core.store import SqlCalendarStore, appointment_row
from clinic_calendar.diagnostics import DiagnosticsLog
from clinic_calendar.scheduling.booking import BookableSlot, BookingPolicy
from clinic_calendar.scheduling.errors import ConversionError, ValidationError
from clinic_calendar.scheduling.loader import CalendarDataLoader, CalendarQuery, CalendarSnapshot
from clinic_calendar.scheduling.models import AppointmentStatus, AvailabilitySettings, DayOfWeek
from clinic_calendar.scheduling.records import appointment_from_row
from clinic_calendar.scheduling.timezone import TimeZoneConversionService, ZoneOption
from clinic_calendar.scheduling.view import MonthView, ViewAssembler, WeekView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar")

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


# ---------------------------------------------------------------------------
# Pydantic request/response schemas
# ---------------------------------------------------------------------------

class WeekResponse(BaseModel):
    clinician_id: str
    view: WeekView
    sources: dict[str, str]
    failed_sources: list[str] = []
    diagnostics: list[dict[str, Any]] = []


class MonthResponse(BaseModel):
    clinician_id: str
    view: MonthView
    sources: dict[str, str]
    failed_sources: list[str] = []
    diagnostics: list[dict[str, Any]] = []


class SettingsUpdate(BaseModel):
    time_zone: str | None = None
    slot_minutes: int | None = Field(default=None, ge=5, le=240)
    min_notice_days: int | None = Field(default=None, ge=0)
    max_advance_days: int | None = Field(default=None, ge=0)


class AvailabilityRuleIn(BaseModel):
    day_of_week: Union[int, str]
    start_time: str
    end_time: str


class AvailabilityRuleResponse(BaseModel):
    id: str
    clinician_id: str
    day_of_week: str
    start_time: str
    end_time: str
    active: bool


class AvailabilityExceptionIn(BaseModel):
    specific_date: date
    original_availability_id: uuid.UUID | None = None
    start_time: str | None = None
    end_time: str | None = None
    is_deleted: bool = False


class AvailabilityExceptionResponse(BaseModel):
    id: str
    clinician_id: str
    specific_date: date
    original_availability_id: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    is_deleted: bool


class AppointmentCreate(BaseModel):
    clinician_id: uuid.UUID
    client_id: uuid.UUID
    start_at: datetime
    end_at: datetime
    type: str = "appointment"
    notes: str | None = None


class AppointmentResponse(BaseModel):
    id: str
    clinician_id: str
    client_id: str
    start_at: datetime
    end_at: datetime
    status: str
    type: str
    local_start: str
    local_end: str
    time_zone: str


class StatusUpdate(BaseModel):
    status: AppointmentStatus


class SlotsResponse(BaseModel):
    clinician_id: str
    day: date
    zone: str
    slots: list[BookableSlot]
    failed_sources: list[str] = []


class TimeOffIn(BaseModel):
    start_date: date
    end_date: date
    note: str | None = None


class TimeOffResponse(BaseModel):
    id: str
    clinician_id: str
    start_date: date
    end_date: date
    note: str
    active: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _rule_to_response(rule: AvailabilityRuleDB) -> AvailabilityRuleResponse:
    return AvailabilityRuleResponse(
        id=str(rule.id),
        clinician_id=str(rule.clinician_id),
        day_of_week=rule.day_of_week,
        start_time=rule.start_time,
        end_time=rule.end_time,
        active=rule.is_active,
    )


def _exception_to_response(exc: AvailabilityExceptionDB) -> AvailabilityExceptionResponse:
    return AvailabilityExceptionResponse(
        id=str(exc.id),
        clinician_id=str(exc.clinician_id),
        specific_date=exc.specific_date,
        original_availability_id=str(exc.original_availability_id) if exc.original_availability_id else None,
        start_time=exc.start_time,
        end_time=exc.end_time,
        is_deleted=exc.is_deleted,
    )


def _time_off_to_response(block: TimeOffBlockDB) -> TimeOffResponse:
    return TimeOffResponse(
        id=str(block.id),
        clinician_id=str(block.clinician_id),
        start_date=block.start_date,
        end_date=block.end_date,
        note=block.note,
        active=block.is_active,
    )


def _clock_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return f"{TimeZoneConversionService.parse_wall_clock(value):%H:%M:%S}"


async def _require_clinician(db: AsyncSession, clinician_id: uuid.UUID) -> None:
    if await ClinicianRepository(db).get_by_id(clinician_id) is None:
        raise HTTPException(status_code=404, detail="Clinician not found")


async def _clinician_settings(
    db: AsyncSession, clinician_id: uuid.UUID, settings: Settings, tz: TimeZoneConversionService
) -> AvailabilitySettings:
    row = await AvailabilitySettingsRepository(db).get(clinician_id)
    if row is None:
        return AvailabilitySettings(
            clinician_id=str(clinician_id),
            time_zone=tz.default_zone,
            slot_minutes=settings.slot_minutes,
            min_notice_days=settings.min_notice_days,
            max_advance_days=settings.max_advance_days,
        )
    return AvailabilitySettings(
        clinician_id=str(clinician_id),
        time_zone=tz.ensure_valid_zone(row.time_zone),
        slot_minutes=row.slot_minutes,
        min_notice_days=row.min_notice_days,
        max_advance_days=row.max_advance_days,
    )


async def _load(
    store: SqlCalendarStore,
    tz: TimeZoneConversionService,
    diagnostics: DiagnosticsLog,
    settings: Settings,
    query: CalendarQuery,
) -> CalendarSnapshot:
    # One loader per request: no newer generation can supersede this load.
    loader = CalendarDataLoader(store, tz, diagnostics, fetch_timeout=settings.fetch_timeout_seconds)
    return await loader.load(query)


def _diagnostics_payload(diagnostics: DiagnosticsLog) -> list[dict[str, Any]]:
    return [event.model_dump(mode="json") for event in diagnostics.events]


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

@router.get("/time-zones", response_model=list[ZoneOption])
async def list_time_zones():
    return TimeZoneConversionService.zone_options()


@router.get("/clinicians/{clinician_id}/week", response_model=WeekResponse)
async def get_week(
    clinician_id: uuid.UUID,
    start: Optional[date] = Query(None, description="Any day in the week to show"),
    tz_name: Optional[str] = Query(None, alias="tz", description="View time zone"),
    db: AsyncSession = Depends(get_db),
    store: SqlCalendarStore = Depends(get_store),
    tz: TimeZoneConversionService = Depends(get_tz_service),
    diagnostics: DiagnosticsLog = Depends(get_diagnostics),
    settings: Settings = Depends(get_settings),
):
    """Assembled week grid for one clinician."""
    await _require_clinician(db, clinician_id)
    clinician_settings = await _clinician_settings(db, clinician_id, settings, tz)
    zone = tz.ensure_valid_zone(tz_name or clinician_settings.time_zone)

    assembler = ViewAssembler(
        tz,
        slot_minutes=clinician_settings.slot_minutes,
        day_start_hour=settings.day_start_hour,
        day_end_hour=settings.day_end_hour,
        week_starts_on=settings.week_starts_on,
    )
    anchor = start or datetime.now(tz.zone(zone)).date()
    days = assembler.week_days(anchor)

    query = CalendarQuery(str(clinician_id), tuple(days), zone, include_cancelled=False)
    snapshot = await _load(store, tz, diagnostics, settings, query)

    return WeekResponse(
        clinician_id=str(clinician_id),
        view=assembler.assemble_week(days, snapshot.index, zone),
        sources={name: result.state.value for name, result in snapshot.sources.items()},
        failed_sources=snapshot.failed_sources,
        diagnostics=_diagnostics_payload(diagnostics),
    )


@router.get("/clinicians/{clinician_id}/month", response_model=MonthResponse)
async def get_month(
    clinician_id: uuid.UUID,
    month: Optional[str] = Query(None, description="Month to show as YYYY-MM"),
    tz_name: Optional[str] = Query(None, alias="tz", description="View time zone"),
    db: AsyncSession = Depends(get_db),
    store: SqlCalendarStore = Depends(get_store),
    tz: TimeZoneConversionService = Depends(get_tz_service),
    diagnostics: DiagnosticsLog = Depends(get_diagnostics),
    settings: Settings = Depends(get_settings),
):
    """Per-day availability and bookings for a month."""
    await _require_clinician(db, clinician_id)
    clinician_settings = await _clinician_settings(db, clinician_id, settings, tz)
    zone = tz.ensure_valid_zone(tz_name or clinician_settings.time_zone)

    if month:
        m = _MONTH_RE.match(month)
        if not m or not 1 <= int(m.group(2)) <= 12:
            raise HTTPException(status_code=422, detail=f"Invalid month {month!r}, expected YYYY-MM")
        anchor = date(int(m.group(1)), int(m.group(2)), 1)
    else:
        anchor = datetime.now(tz.zone(zone)).date().replace(day=1)

    assembler = ViewAssembler(tz, week_starts_on=settings.week_starts_on)
    days = assembler.month_days(anchor)
    query = CalendarQuery(str(clinician_id), tuple(days), zone)
    snapshot = await _load(store, tz, diagnostics, settings, query)

    return MonthResponse(
        clinician_id=str(clinician_id),
        view=assembler.assemble_month(anchor, snapshot.index, zone),
        sources={name: result.state.value for name, result in snapshot.sources.items()},
        failed_sources=snapshot.failed_sources,
        diagnostics=_diagnostics_payload(diagnostics),
    )


@router.get("/clinicians/{clinician_id}/slots", response_model=SlotsResponse)
async def get_bookable_slots(
    clinician_id: uuid.UUID,
    day: date = Query(..., alias="date", description="Local date to book on"),
    tz_name: Optional[str] = Query(None, alias="tz", description="Time zone of the date and the slots"),
    db: AsyncSession = Depends(get_db),
    store: SqlCalendarStore = Depends(get_store),
    tz: TimeZoneConversionService = Depends(get_tz_service),
    diagnostics: DiagnosticsLog = Depends(get_diagnostics),
    settings: Settings = Depends(get_settings),
):
    """Openings a client can book on one day, stepped by the clinician's slot length."""
    await _require_clinician(db, clinician_id)
    clinician_settings = await _clinician_settings(db, clinician_id, settings, tz)
    zone = tz.ensure_valid_zone(tz_name or clinician_settings.time_zone)

    query = CalendarQuery(str(clinician_id), (day,), zone, include_cancelled=False)
    snapshot = await _load(store, tz, diagnostics, settings, query)

    policy = BookingPolicy(tz, clinician_settings.min_notice_days, clinician_settings.max_advance_days)
    slots = policy.bookable_slots(
        day,
        snapshot.time_blocks,
        snapshot.appointment_blocks,
        clinician_settings.slot_minutes,
        zone,
        home_zone=clinician_settings.time_zone,
    )
    return SlotsResponse(
        clinician_id=str(clinician_id),
        day=day,
        zone=zone,
        slots=slots,
        failed_sources=snapshot.failed_sources,
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@router.get("/clinicians/{clinician_id}/settings", response_model=AvailabilitySettings)
async def get_clinician_settings(
    clinician_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    tz: TimeZoneConversionService = Depends(get_tz_service),
    settings: Settings = Depends(get_settings),
):
    await _require_clinician(db, clinician_id)
    return await _clinician_settings(db, clinician_id, settings, tz)


@router.put("/clinicians/{clinician_id}/settings", response_model=AvailabilitySettings)
async def update_clinician_settings(
    clinician_id: uuid.UUID,
    body: SettingsUpdate,
    db: AsyncSession = Depends(get_db),
    tz: TimeZoneConversionService = Depends(get_tz_service),
    settings: Settings = Depends(get_settings),
):
    """Create or update availability settings; unknown zones fall back to the default."""
    await _require_clinician(db, clinician_id)
    current = await _clinician_settings(db, clinician_id, settings, tz)
    await AvailabilitySettingsRepository(db).upsert(
        clinician_id,
        time_zone=tz.ensure_valid_zone(body.time_zone) if body.time_zone else current.time_zone,
        slot_minutes=body.slot_minutes if body.slot_minutes is not None else current.slot_minutes,
        min_notice_days=body.min_notice_days if body.min_notice_days is not None else current.min_notice_days,
        max_advance_days=body.max_advance_days if body.max_advance_days is not None else current.max_advance_days,
    )
    return await _clinician_settings(db, clinician_id, settings, tz)


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------

@router.get("/clinicians/{clinician_id}/availability", response_model=list[AvailabilityRuleResponse])
async def list_availability(clinician_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    await _require_clinician(db, clinician_id)
    rules = await AvailabilityRuleRepository(db).list_by_clinician(clinician_id)
    return [_rule_to_response(r) for r in rules]


@router.post("/clinicians/{clinician_id}/availability", response_model=AvailabilityRuleResponse, status_code=201)
async def create_availability(
    clinician_id: uuid.UUID,
    body: AvailabilityRuleIn,
    db: AsyncSession = Depends(get_db),
):
    """Add a weekly availability rule."""
    await _require_clinician(db, clinician_id)
    try:
        day = DayOfWeek.parse(body.day_of_week)
        start_time, end_time = BookingPolicy.validate_rule_interval(body.start_time, body.end_time)
    except (ValueError, ConversionError, ValidationError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    rule = await AvailabilityRuleRepository(db).create(
        clinician_id=clinician_id,
        day_of_week=day.label,
        start_time=f"{start_time:%H:%M:%S}",
        end_time=f"{end_time:%H:%M:%S}",
    )
    logger.info(f"Created availability rule {rule.id} for clinician {clinician_id}")
    return _rule_to_response(rule)


@router.delete("/availability/{rule_id}", response_model=AvailabilityRuleResponse)
async def remove_availability(rule_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """Soft-remove a rule; existing exceptions keep their reference."""
    rule = await AvailabilityRuleRepository(db).deactivate(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="Availability rule not found")
    return _rule_to_response(rule)


@router.post("/clinicians/{clinician_id}/exceptions", response_model=AvailabilityExceptionResponse)
async def upsert_exception(
    clinician_id: uuid.UUID,
    body: AvailabilityExceptionIn,
    db: AsyncSession = Depends(get_db),
):
    """Modify or delete one rule occurrence, or add a standalone interval."""
    await _require_clinician(db, clinician_id)

    if body.original_availability_id is not None:
        rule = await AvailabilityRuleRepository(db).get_by_id(body.original_availability_id)
        if rule is None or rule.clinician_id != clinician_id:
            raise HTTPException(status_code=404, detail="Availability rule not found")

    try:
        start_time = _clock_text(body.start_time)
        end_time = _clock_text(body.end_time)
        if not body.is_deleted:
            if start_time is None or end_time is None:
                if body.original_availability_id is None:
                    raise ValidationError("A standalone exception needs a start and end time")
            else:
                BookingPolicy.validate_rule_interval(start_time, end_time)
    except (ConversionError, ValidationError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    exc = await AvailabilityExceptionRepository(db).upsert(
        clinician_id=clinician_id,
        specific_date=body.specific_date,
        original_availability_id=body.original_availability_id,
        start_time=start_time,
        end_time=end_time,
        is_deleted=body.is_deleted,
    )
    return _exception_to_response(exc)


@router.get("/clinicians/{clinician_id}/time-off", response_model=list[TimeOffResponse])
async def list_time_off(clinician_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    await _require_clinician(db, clinician_id)
    blocks = await TimeOffRepository(db).list_by_clinician(clinician_id)
    return [_time_off_to_response(b) for b in blocks]


@router.post("/clinicians/{clinician_id}/time-off", response_model=TimeOffResponse, status_code=201)
async def create_time_off(
    clinician_id: uuid.UUID,
    body: TimeOffIn,
    db: AsyncSession = Depends(get_db),
):
    """Block out whole days, ``start_date`` through ``end_date`` inclusive."""
    await _require_clinician(db, clinician_id)
    if body.start_date > body.end_date:
        raise HTTPException(status_code=422, detail="Time off must start on or before its end date")

    block = await TimeOffRepository(db).create(
        clinician_id=clinician_id,
        start_date=body.start_date,
        end_date=body.end_date,
        note=(body.note or "").strip() or "Time Off",
    )
    logger.info(f"Created time off {block.id} for clinician {clinician_id}")
    return _time_off_to_response(block)


@router.delete("/time-off/{time_off_id}", response_model=TimeOffResponse)
async def remove_time_off(time_off_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    block = await TimeOffRepository(db).deactivate(time_off_id)
    if block is None:
        raise HTTPException(status_code=404, detail="Time off not found")
    return _time_off_to_response(block)


# ---------------------------------------------------------------------------
# Appointments
# ---------------------------------------------------------------------------

@router.post("/appointments", response_model=AppointmentResponse, status_code=201)
async def book_appointment(
    body: AppointmentCreate,
    db: AsyncSession = Depends(get_db),
    store: SqlCalendarStore = Depends(get_store),
    tz: TimeZoneConversionService = Depends(get_tz_service),
    diagnostics: DiagnosticsLog = Depends(get_diagnostics),
    settings: Settings = Depends(get_settings),
):
    """Book an appointment after window, availability and conflict checks."""
    await _require_clinician(db, body.clinician_id)
    if await ClientRepository(db).get_by_id(body.client_id) is None:
        raise HTTPException(status_code=404, detail="Client not found")

    clinician_settings = await _clinician_settings(db, body.clinician_id, settings, tz)
    zone = clinician_settings.time_zone
    policy = BookingPolicy(tz, clinician_settings.min_notice_days, clinician_settings.max_advance_days)
    try:
        start_at, end_at = policy.validate_booking(body.start_at, body.end_at, zone)
    except (ConversionError, ValidationError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    # Local days the booking touches in the clinician's zone
    first_day = tz.to_zone(start_at, zone).date()
    last_day = tz.to_zone(end_at, zone).date()
    days = tuple(first_day + timedelta(days=i) for i in range((last_day - first_day).days + 1))
    snapshot = await _load(store, tz, diagnostics, settings, CalendarQuery(str(body.clinician_id), days, zone))
    if snapshot.is_degraded:
        raise HTTPException(
            status_code=503,
            detail=f"Could not check availability: {', '.join(snapshot.failed_sources)} unavailable",
        )
    if not policy.fits_availability(start_at, end_at, snapshot.time_blocks):
        raise HTTPException(status_code=422, detail="The clinician is not available at that time")

    repo = AppointmentRepository(db)
    nearby = await repo.list_between(body.clinician_id, start_at - timedelta(days=1), end_at)
    existing = [appointment_from_row(appointment_row(a)) for a in nearby]
    conflicts = policy.conflicts(start_at, end_at, existing)
    if conflicts:
        raise HTTPException(
            status_code=409,
            detail=f"Conflicts with appointment(s): {', '.join(c.id for c in conflicts)}",
        )

    appt = await repo.create(
        clinician_id=body.clinician_id,
        client_id=body.client_id,
        start_at=start_at,
        end_at=end_at,
        type=body.type,
        notes=body.notes,
    )
    logger.info(f"Booked appointment {appt.id} for clinician {body.clinician_id}")
    return AppointmentResponse(
        id=str(appt.id),
        clinician_id=str(appt.clinician_id),
        client_id=str(appt.client_id),
        start_at=start_at,
        end_at=end_at,
        status=appt.status,
        type=appt.type,
        local_start=tz.format_for_display(start_at, "DATETIME_SHORT", zone),
        local_end=tz.format_for_display(end_at, "DATETIME_SHORT", zone),
        time_zone=zone,
    )


@router.patch("/appointments/{appointment_id}/status")
async def change_appointment_status(
    appointment_id: uuid.UUID,
    body: StatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    repo = AppointmentRepository(db)
    appt = await repo.get_by_id(appointment_id)
    if appt is None:
        raise HTTPException(status_code=404, detail="Appointment not found")
    try:
        new_status = BookingPolicy.validate_transition(appt.status, body.status)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    await repo.update_status(appointment_id, new_status.value)
    return {"id": str(appointment_id), "status": new_status.value}
