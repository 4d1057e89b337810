"""Main entry point for the clinic calendar."""

import logging
import sys

from clinic_calendar.config import get_settings


def setup_logging():
    """Configure logging based on settings."""
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def main():
    """Main entry point - runs CLI."""
    setup_logging()

    from clinic_calendar.cli.commands import app

    app()


async def load_week(clinician_id: str, anchor=None, zone=None, store=None):
    """Programmatic API for loading one clinician's week view.

    Example:
        import asyncio
        from clinic_calendar.main import load_week
        from clinic_calendar.scheduling import StaticCalendarStore

        view = asyncio.run(load_week("c1", store=StaticCalendarStore(rules=[...])))
    """
    from datetime import date

    from clinic_calendar.diagnostics import DiagnosticsLog
    from clinic_calendar.scheduling import (
        CalendarDataLoader,
        CalendarQuery,
        StaticCalendarStore,
        TimeZoneConversionService,
        ViewAssembler,
    )

    settings = get_settings()
    diagnostics = DiagnosticsLog(log_dir=settings.diagnostics_dir)
    tz = TimeZoneConversionService(settings.default_time_zone, diagnostics)
    loader = CalendarDataLoader(
        store or StaticCalendarStore(),
        tz,
        diagnostics,
        fetch_timeout=settings.fetch_timeout_seconds,
    )
    assembler = ViewAssembler(
        tz,
        slot_minutes=settings.slot_minutes,
        day_start_hour=settings.day_start_hour,
        day_end_hour=settings.day_end_hour,
        week_starts_on=settings.week_starts_on,
    )

    days = assembler.week_days(anchor or date.today())
    snapshot = await loader.load(CalendarQuery(clinician_id, tuple(days), zone, include_cancelled=False))
    return assembler.assemble_week(days, snapshot.index, snapshot.zone)


if __name__ == "__main__":
    main()
