"""SQL implementation of the calendar store."""

from __future__ import annotations

import asyncio
import uuid
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from clinic_calendar.core.models import (
    AppointmentDB,
    AvailabilityExceptionDB,
    AvailabilityRuleDB,
    AvailabilitySettingsDB,
    TimeOffBlockDB,
)
from clinic_calendar.core.repository import (
    AppointmentRepository,
    AvailabilityExceptionRepository,
    AvailabilityRuleRepository,
    AvailabilitySettingsRepository,
    TimeOffRepository,
    as_utc,
)


def _uuid(value: Any) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def _opt_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def rule_row(rule: AvailabilityRuleDB) -> dict[str, Any]:
    return {
        "id": str(rule.id),
        "clinician_id": str(rule.clinician_id),
        "day_of_week": rule.day_of_week,
        "start_time": rule.start_time,
        "end_time": rule.end_time,
        "is_active": rule.is_active,
    }


def exception_row(exc: AvailabilityExceptionDB) -> dict[str, Any]:
    return {
        "id": str(exc.id),
        "clinician_id": str(exc.clinician_id),
        "original_availability_id": _opt_str(exc.original_availability_id),
        "specific_date": exc.specific_date.isoformat(),
        "start_time": exc.start_time,
        "end_time": exc.end_time,
        "is_deleted": exc.is_deleted,
    }


def appointment_row(appt: AppointmentDB, client_name: Optional[str] = None) -> dict[str, Any]:
    return {
        "id": str(appt.id),
        "client_id": str(appt.client_id),
        "clinician_id": str(appt.clinician_id),
        "start_at": as_utc(appt.start_at).isoformat() if appt.start_at else None,
        "end_at": as_utc(appt.end_at).isoformat() if appt.end_at else None,
        "status": appt.status,
        "type": appt.type,
        "client_name": client_name,
    }


def settings_row(settings: AvailabilitySettingsDB) -> dict[str, Any]:
    return {
        "clinician_id": str(settings.clinician_id),
        "time_zone": settings.time_zone,
        "slot_minutes": settings.slot_minutes,
        "min_notice_days": settings.min_notice_days,
        "max_advance_days": settings.max_advance_days,
    }


def time_off_row(block: TimeOffBlockDB) -> dict[str, Any]:
    return {
        "id": str(block.id),
        "clinician_id": str(block.clinician_id),
        "start_date": block.start_date.isoformat(),
        "end_date": block.end_date.isoformat(),
        "note": block.note,
        "is_active": block.is_active,
    }


class SqlCalendarStore:
    """Calendar store backed by an async SQLAlchemy session.

    Rows use the same text encodings as any other store so the scheduling
    core normalizes them the same way. An ``AsyncSession`` does not allow
    concurrent operations, so fetches on the shared session are serialized.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._lock = asyncio.Lock()

    async def fetch_rules(self, clinician_id: str) -> list[dict[str, Any]]:
        async with self._lock:
            rules = await AvailabilityRuleRepository(self.session).list_by_clinician(_uuid(clinician_id))
            return [rule_row(r) for r in rules]

    async def fetch_exceptions(self, clinician_id: str, start_date: date, end_date: date) -> list[dict[str, Any]]:
        async with self._lock:
            repo = AvailabilityExceptionRepository(self.session)
            return [exception_row(e) for e in await repo.list_between(_uuid(clinician_id), start_date, end_date)]

    async def fetch_appointments(self, clinician_id: str, start_at: datetime, end_at: datetime) -> list[dict[str, Any]]:
        async with self._lock:
            repo = AppointmentRepository(self.session)
            rows = await repo.list_with_client_names(_uuid(clinician_id), start_at, end_at)
            return [appointment_row(appt, name) for appt, name in rows]

    async def fetch_settings(self, clinician_id: str) -> Optional[dict[str, Any]]:
        async with self._lock:
            settings = await AvailabilitySettingsRepository(self.session).get(_uuid(clinician_id))
            return settings_row(settings) if settings is not None else None

    async def fetch_time_off(self, clinician_id: str, start_date: date, end_date: date) -> list[dict[str, Any]]:
        async with self._lock:
            repo = TimeOffRepository(self.session)
            return [time_off_row(t) for t in await repo.list_overlapping(_uuid(clinician_id), start_date, end_date)]
