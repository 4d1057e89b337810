"""Persistence for the clinic calendar."""

from clinic_calendar.core.store import SqlCalendarStore

__all__ = ["SqlCalendarStore"]
