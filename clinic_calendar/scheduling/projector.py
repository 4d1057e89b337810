"""Projection of UTC appointments onto local calendar days."""

import logging
from datetime import date
from typing import TYPE_CHECKING, Any, Iterable, Optional

from clinic_calendar.scheduling.errors import ConversionError
from clinic_calendar.scheduling.models import Appointment, AppointmentBlock, AppointmentStatus
from clinic_calendar.scheduling.timezone import TimeZoneConversionService

if TYPE_CHECKING:
    from clinic_calendar.diagnostics import DiagnosticsLog

logger = logging.getLogger(__name__)


class AppointmentProjector:
    """Places each appointment on the local date of its start instant."""

    def __init__(
        self,
        tz_service: TimeZoneConversionService,
        diagnostics: Optional["DiagnosticsLog"] = None,
    ) -> None:
        self.tz = tz_service
        self.diagnostics = diagnostics

    def project(
        self,
        appointments: Iterable[Appointment],
        zone: Any,
        visible_days: Iterable[date],
        include_cancelled: bool = True,
    ) -> list[AppointmentBlock]:
        """Return one block per valid appointment starting on a visible day.

        Appointments crossing local midnight stay on their start date.
        """
        visible = set(visible_days)
        blocks: list[AppointmentBlock] = []

        for appt in appointments:
            if not include_cancelled and appt.status == AppointmentStatus.CANCELLED:
                continue
            try:
                block = self._project_one(appt, zone)
            except ConversionError as e:
                logger.warning(f"Excluding appointment {appt.id}: {e}")
                if self.diagnostics is not None:
                    self.diagnostics.record_excluded(
                        "appointment",
                        appt.id,
                        e,
                        raw_value=f"{appt.start_at}/{appt.end_at}",
                    )
                continue
            if block.day in visible:
                blocks.append(block)

        blocks.sort(key=lambda b: (b.start, b.end, b.id))
        return blocks

    def _project_one(self, appt: Appointment, zone: Any) -> AppointmentBlock:
        if appt.start_at is None or appt.end_at is None:
            raise ConversionError("Appointment is missing its start or end instant")
        if appt.end_at < appt.start_at:
            raise ConversionError(
                f"Appointment ends before it starts ({appt.end_at.isoformat()} < {appt.start_at.isoformat()})"
            )

        start = self.tz.to_zone(appt.start_at, zone)
        end = self.tz.to_zone(appt.end_at, zone)
        return AppointmentBlock(
            id=appt.id,
            day=start.date(),
            start=start,
            end=end,
            client_id=appt.client_id,
            client_name=appt.client_name,
            type=appt.type,
            status=appt.status,
        )
