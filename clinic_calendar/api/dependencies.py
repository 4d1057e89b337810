"""FastAPI dependencies for the calendar services."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_calendar.config import Settings, get_settings
from clinic_calendar.core.database import get_db
from clinic_calendar.core.store import SqlCalendarStore
from clinic_calendar.diagnostics import DiagnosticsLog
from clinic_calendar.scheduling.timezone import TimeZoneConversionService


def get_diagnostics(settings: Settings = Depends(get_settings)) -> DiagnosticsLog:
    """One diagnostics log per request, so responses carry only their own events."""
    return DiagnosticsLog(log_dir=settings.diagnostics_dir)


def get_tz_service(
    settings: Settings = Depends(get_settings),
    diagnostics: DiagnosticsLog = Depends(get_diagnostics),
) -> TimeZoneConversionService:
    return TimeZoneConversionService(settings.default_time_zone, diagnostics)


def get_store(db: AsyncSession = Depends(get_db)) -> SqlCalendarStore:
    return SqlCalendarStore(db)
