"""Availability reconciliation and time zone conversion for the clinic calendar."""

from clinic_calendar.scheduling.booking import BookableSlot, BookingPolicy
from clinic_calendar.scheduling.errors import (
    CalendarError,
    ConversionError,
    FetchError,
    ValidationError,
    ZoneResolutionError,
)
from clinic_calendar.scheduling.loader import (
    CalendarDataLoader,
    CalendarQuery,
    CalendarSnapshot,
    SourceResult,
    SourceState,
)
from clinic_calendar.scheduling.models import (
    Appointment,
    AppointmentBlock,
    AppointmentStatus,
    AvailabilityException,
    AvailabilityRule,
    AvailabilitySettings,
    DayOfWeek,
    TimeBlock,
    TimeOffBlock,
)
from clinic_calendar.scheduling.projector import AppointmentProjector
from clinic_calendar.scheduling.reconciler import AvailabilityReconciler
from clinic_calendar.scheduling.slot_index import SlotQueryIndex
from clinic_calendar.scheduling.store import CalendarStore, StaticCalendarStore
from clinic_calendar.scheduling.timezone import TimeZoneConversionService, ZoneOption
from clinic_calendar.scheduling.view import (
    CellKind,
    CellView,
    DaySummary,
    MonthView,
    ViewAssembler,
    WeekView,
)

__all__ = [
    "Appointment",
    "AppointmentBlock",
    "AppointmentProjector",
    "AppointmentStatus",
    "AvailabilityException",
    "AvailabilityReconciler",
    "AvailabilityRule",
    "AvailabilitySettings",
    "BookableSlot",
    "BookingPolicy",
    "CalendarDataLoader",
    "CalendarError",
    "CalendarQuery",
    "CalendarSnapshot",
    "CalendarStore",
    "CellKind",
    "CellView",
    "ConversionError",
    "DayOfWeek",
    "DaySummary",
    "FetchError",
    "MonthView",
    "SlotQueryIndex",
    "SourceResult",
    "SourceState",
    "StaticCalendarStore",
    "TimeBlock",
    "TimeOffBlock",
    "TimeZoneConversionService",
    "ValidationError",
    "ViewAssembler",
    "WeekView",
    "ZoneOption",
    "ZoneResolutionError",
]
