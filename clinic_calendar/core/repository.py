"""CRUD repositories for calendar models."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_calendar.core.models import (
    AppointmentDB,
    AvailabilityExceptionDB,
    AvailabilityRuleDB,
    AvailabilitySettingsDB,
    Client,
    Clinician,
    TimeOffBlockDB,
)


def as_utc(value: datetime) -> datetime:
    """Normalize an instant to aware UTC (naive values are already UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ClinicianRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Clinician:
        clinician = Clinician(**kwargs)
        self.session.add(clinician)
        await self.session.flush()
        return clinician

    async def get_by_id(self, clinician_id: uuid.UUID) -> Optional[Clinician]:
        return await self.session.get(Clinician, clinician_id)


class ClientRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Client:
        client = Client(**kwargs)
        self.session.add(client)
        await self.session.flush()
        return client

    async def get_by_id(self, client_id: uuid.UUID) -> Optional[Client]:
        return await self.session.get(Client, client_id)


class AvailabilityRuleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> AvailabilityRuleDB:
        rule = AvailabilityRuleDB(**kwargs)
        self.session.add(rule)
        await self.session.flush()
        return rule

    async def get_by_id(self, rule_id: uuid.UUID) -> Optional[AvailabilityRuleDB]:
        return await self.session.get(AvailabilityRuleDB, rule_id)

    async def list_by_clinician(self, clinician_id: uuid.UUID, active_only: bool = True) -> Sequence[AvailabilityRuleDB]:
        stmt = select(AvailabilityRuleDB).where(AvailabilityRuleDB.clinician_id == clinician_id)
        if active_only:
            stmt = stmt.where(AvailabilityRuleDB.is_active.is_(True))
        stmt = stmt.order_by(AvailabilityRuleDB.day_of_week, AvailabilityRuleDB.start_time)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def deactivate(self, rule_id: uuid.UUID) -> Optional[AvailabilityRuleDB]:
        rule = await self.get_by_id(rule_id)
        if not rule:
            return None
        rule.is_active = False
        rule.updated_at = datetime.now(timezone.utc)
        await self.session.flush()
        return rule


class AvailabilityExceptionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_occurrence(
        self, original_availability_id: uuid.UUID, specific_date: date
    ) -> Optional[AvailabilityExceptionDB]:
        stmt = select(AvailabilityExceptionDB).where(
            AvailabilityExceptionDB.original_availability_id == original_availability_id,
            AvailabilityExceptionDB.specific_date == specific_date,
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def upsert(
        self,
        clinician_id: uuid.UUID,
        specific_date: date,
        original_availability_id: Optional[uuid.UUID] = None,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        is_deleted: bool = False,
    ) -> AvailabilityExceptionDB:
        """Create or replace the exception for one rule occurrence.

        Standalone exceptions (no rule reference) are always created.
        """
        existing = None
        if original_availability_id is not None:
            existing = await self.get_for_occurrence(original_availability_id, specific_date)

        if existing is not None:
            existing.start_time = start_time
            existing.end_time = end_time
            existing.is_deleted = is_deleted
            existing.updated_at = datetime.now(timezone.utc)
            await self.session.flush()
            return existing

        exc = AvailabilityExceptionDB(
            clinician_id=clinician_id,
            specific_date=specific_date,
            original_availability_id=original_availability_id,
            start_time=start_time,
            end_time=end_time,
            is_deleted=is_deleted,
        )
        self.session.add(exc)
        await self.session.flush()
        return exc

    async def list_between(self, clinician_id: uuid.UUID, start: date, end: date) -> Sequence[AvailabilityExceptionDB]:
        stmt = (
            select(AvailabilityExceptionDB)
            .where(
                AvailabilityExceptionDB.clinician_id == clinician_id,
                AvailabilityExceptionDB.specific_date >= start,
                AvailabilityExceptionDB.specific_date <= end,
            )
            .order_by(AvailabilityExceptionDB.specific_date, AvailabilityExceptionDB.updated_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


class AppointmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> AppointmentDB:
        for key in ("start_at", "end_at"):
            if isinstance(kwargs.get(key), datetime):
                kwargs[key] = as_utc(kwargs[key])
        appt = AppointmentDB(**kwargs)
        self.session.add(appt)
        await self.session.flush()
        return appt

    async def get_by_id(self, appointment_id: uuid.UUID) -> Optional[AppointmentDB]:
        return await self.session.get(AppointmentDB, appointment_id)

    async def list_between(
        self,
        clinician_id: uuid.UUID,
        start_at: datetime,
        end_at: datetime,
        include_cancelled: bool = True,
    ) -> Sequence[AppointmentDB]:
        """Appointments starting in ``[start_at, end_at)``."""
        stmt = select(AppointmentDB).where(
            AppointmentDB.clinician_id == clinician_id,
            AppointmentDB.start_at >= as_utc(start_at),
            AppointmentDB.start_at < as_utc(end_at),
        )
        if not include_cancelled:
            stmt = stmt.where(AppointmentDB.status != "cancelled")
        stmt = stmt.order_by(AppointmentDB.start_at)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_with_client_names(
        self, clinician_id: uuid.UUID, start_at: datetime, end_at: datetime
    ) -> list[tuple[AppointmentDB, Optional[str]]]:
        stmt = (
            select(AppointmentDB, Client.first_name, Client.last_name)
            .outerjoin(Client, Client.id == AppointmentDB.client_id)
            .where(
                AppointmentDB.clinician_id == clinician_id,
                AppointmentDB.start_at >= as_utc(start_at),
                AppointmentDB.start_at < as_utc(end_at),
            )
            .order_by(AppointmentDB.start_at)
        )
        result = await self.session.execute(stmt)
        return [
            (appt, f"{first} {last}" if first is not None else None)
            for appt, first, last in result.all()
        ]

    async def update_status(self, appointment_id: uuid.UUID, status: str) -> Optional[AppointmentDB]:
        appt = await self.get_by_id(appointment_id)
        if not appt:
            return None
        appt.status = status
        appt.updated_at = datetime.now(timezone.utc)
        await self.session.flush()
        return appt


class AvailabilitySettingsRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, clinician_id: uuid.UUID) -> Optional[AvailabilitySettingsDB]:
        return await self.session.get(AvailabilitySettingsDB, clinician_id)

    async def upsert(self, clinician_id: uuid.UUID, **kwargs) -> AvailabilitySettingsDB:
        settings = await self.get(clinician_id)
        if settings is None:
            values = {k: v for k, v in kwargs.items() if v is not None}
            settings = AvailabilitySettingsDB(clinician_id=clinician_id, **values)
            self.session.add(settings)
        else:
            for k, v in kwargs.items():
                if v is not None:
                    setattr(settings, k, v)
            settings.updated_at = datetime.now(timezone.utc)
        await self.session.flush()
        return settings


class TimeOffRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> TimeOffBlockDB:
        block = TimeOffBlockDB(**kwargs)
        self.session.add(block)
        await self.session.flush()
        return block

    async def get_by_id(self, block_id: uuid.UUID) -> Optional[TimeOffBlockDB]:
        return await self.session.get(TimeOffBlockDB, block_id)

    async def list_overlapping(self, clinician_id: uuid.UUID, start: date, end: date) -> Sequence[TimeOffBlockDB]:
        """Active blocks sharing at least one day with ``[start, end]``."""
        stmt = (
            select(TimeOffBlockDB)
            .where(
                TimeOffBlockDB.clinician_id == clinician_id,
                TimeOffBlockDB.is_active.is_(True),
                TimeOffBlockDB.start_date <= end,
                TimeOffBlockDB.end_date >= start,
            )
            .order_by(TimeOffBlockDB.start_date)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_by_clinician(self, clinician_id: uuid.UUID) -> Sequence[TimeOffBlockDB]:
        stmt = (
            select(TimeOffBlockDB)
            .where(TimeOffBlockDB.clinician_id == clinician_id, TimeOffBlockDB.is_active.is_(True))
            .order_by(TimeOffBlockDB.start_date)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def deactivate(self, block_id: uuid.UUID) -> Optional[TimeOffBlockDB]:
        block = await self.get_by_id(block_id)
        if not block:
            return None
        block.is_active = False
        block.updated_at = datetime.now(timezone.utc)
        await self.session.flush()
        return block
