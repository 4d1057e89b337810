"""Tests for calendar repositories and the SQL store using async SQLite."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from clinic_calendar.core.models import Base
from clinic_calendar.core.repository import (
    AppointmentRepository,
    AvailabilityExceptionRepository,
    AvailabilityRuleRepository,
    AvailabilitySettingsRepository,
    ClientRepository,
    ClinicianRepository,
    TimeOffRepository,
    as_utc,
)
from clinic_calendar.core.store import SqlCalendarStore
from clinic_calendar.scheduling import (
    CalendarDataLoader,
    CalendarQuery,
    CalendarStore,
    StaticCalendarStore,
    TimeZoneConversionService,
)

CT = ZoneInfo("America/Chicago")
MONDAY = date(2025, 6, 9)


@pytest.fixture
async def session():
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as sess:
        yield sess
        await sess.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def clinician(session: AsyncSession):
    return await ClinicianRepository(session).create(first_name="Ada", last_name="Reyes")


@pytest.fixture
async def client(session: AsyncSession):
    return await ClientRepository(session).create(first_name="Jane", last_name="Doe")


@pytest.fixture
async def rule(session: AsyncSession, clinician):
    return await AvailabilityRuleRepository(session).create(
        clinician_id=clinician.id, day_of_week="Monday", start_time="09:00:00", end_time="12:00:00"
    )


# --- Helpers ---

def test_as_utc_treats_naive_as_utc():
    assert as_utc(datetime(2025, 6, 9, 15, 0)) == datetime(2025, 6, 9, 15, 0, tzinfo=timezone.utc)
    assert as_utc(datetime(2025, 6, 9, 10, 0, tzinfo=CT)) == datetime(2025, 6, 9, 15, 0, tzinfo=timezone.utc)


# --- Rules ---

async def test_rule_list_and_deactivate(session: AsyncSession, clinician, rule):
    repo = AvailabilityRuleRepository(session)
    assert [r.id for r in await repo.list_by_clinician(clinician.id)] == [rule.id]

    await repo.deactivate(rule.id)
    assert await repo.list_by_clinician(clinician.id) == []
    assert len(await repo.list_by_clinician(clinician.id, active_only=False)) == 1


async def test_deactivate_unknown_rule(session: AsyncSession, clinician):
    assert await AvailabilityRuleRepository(session).deactivate(uuid.uuid4()) is None


# --- Exceptions ---

async def test_exception_upsert_replaces_occurrence(session: AsyncSession, clinician, rule):
    repo = AvailabilityExceptionRepository(session)
    first = await repo.upsert(clinician.id, MONDAY, rule.id, "10:00:00", "11:00:00")
    second = await repo.upsert(clinician.id, MONDAY, rule.id, is_deleted=True)

    assert second.id == first.id
    rows = await repo.list_between(clinician.id, MONDAY, MONDAY)
    assert len(rows) == 1
    assert rows[0].is_deleted
    assert rows[0].start_time is None


async def test_standalone_exceptions_are_always_created(session: AsyncSession, clinician):
    repo = AvailabilityExceptionRepository(session)
    await repo.upsert(clinician.id, MONDAY, None, "13:00:00", "14:00:00")
    await repo.upsert(clinician.id, MONDAY, None, "15:00:00", "16:00:00")
    assert len(await repo.list_between(clinician.id, MONDAY, MONDAY)) == 2


async def test_exception_date_range(session: AsyncSession, clinician, rule):
    repo = AvailabilityExceptionRepository(session)
    await repo.upsert(clinician.id, MONDAY, rule.id, is_deleted=True)
    await repo.upsert(clinician.id, date(2025, 6, 16), rule.id, is_deleted=True)

    rows = await repo.list_between(clinician.id, date(2025, 6, 8), date(2025, 6, 14))
    assert [r.specific_date for r in rows] == [MONDAY]


# --- Appointments ---

async def test_appointment_stored_as_utc(session: AsyncSession, clinician, client):
    repo = AppointmentRepository(session)
    appt = await repo.create(
        client_id=client.id,
        clinician_id=clinician.id,
        start_at=datetime(2025, 6, 9, 10, 0, tzinfo=CT),
        end_at=datetime(2025, 6, 9, 10, 30, tzinfo=CT),
    )
    assert appt.start_at == datetime(2025, 6, 9, 15, 0, tzinfo=timezone.utc)


async def test_appointment_range_is_half_open(session: AsyncSession, clinician, client):
    repo = AppointmentRepository(session)
    start = datetime(2025, 6, 9, 15, 0, tzinfo=timezone.utc)
    await repo.create(client_id=client.id, clinician_id=clinician.id, start_at=start, end_at=start + timedelta(minutes=30))
    cancelled = await repo.create(
        client_id=client.id,
        clinician_id=clinician.id,
        start_at=start + timedelta(hours=2),
        end_at=start + timedelta(hours=3),
        status="cancelled",
    )

    assert len(await repo.list_between(clinician.id, start, start + timedelta(days=1))) == 2
    assert len(await repo.list_between(clinician.id, start + timedelta(minutes=1), start + timedelta(days=1))) == 1
    visible = await repo.list_between(clinician.id, start, start + timedelta(days=1), include_cancelled=False)
    assert cancelled.id not in [a.id for a in visible]


async def test_appointment_status_update(session: AsyncSession, clinician, client):
    repo = AppointmentRepository(session)
    start = datetime(2025, 6, 9, 15, 0, tzinfo=timezone.utc)
    appt = await repo.create(client_id=client.id, clinician_id=clinician.id, start_at=start, end_at=start + timedelta(hours=1))

    updated = await repo.update_status(appt.id, "completed")
    assert updated.status == "completed"


# --- Settings ---

async def test_settings_upsert(session: AsyncSession, clinician):
    repo = AvailabilitySettingsRepository(session)
    assert await repo.get(clinician.id) is None

    created = await repo.upsert(clinician.id, time_zone="America/Denver", slot_minutes=None)
    assert created.time_zone == "America/Denver"
    assert created.slot_minutes == 30

    updated = await repo.upsert(clinician.id, slot_minutes=15)
    assert updated.time_zone == "America/Denver"
    assert updated.slot_minutes == 15


# --- Time off ---

async def test_time_off_overlap_and_deactivate(session: AsyncSession, clinician):
    repo = TimeOffRepository(session)
    vacation = await repo.create(clinician_id=clinician.id, start_date=date(2025, 6, 9), end_date=date(2025, 6, 13))
    await repo.create(clinician_id=clinician.id, start_date=date(2025, 7, 1), end_date=date(2025, 7, 1))

    assert vacation.note == "Time Off"
    found = await repo.list_overlapping(clinician.id, date(2025, 6, 13), date(2025, 6, 20))
    assert [b.id for b in found] == [vacation.id]
    assert await repo.list_overlapping(clinician.id, date(2025, 6, 14), date(2025, 6, 30)) == []

    await repo.deactivate(vacation.id)
    assert len(await repo.list_by_clinician(clinician.id)) == 1
    assert await repo.list_overlapping(clinician.id, date(2025, 6, 9), date(2025, 6, 9)) == []
    assert await repo.deactivate(uuid.uuid4()) is None


# --- SQL store ---

async def test_store_rows_use_text_encodings(session: AsyncSession, clinician, client, rule):
    start = datetime(2025, 6, 9, 15, 0, tzinfo=timezone.utc)
    await AppointmentRepository(session).create(
        client_id=client.id, clinician_id=clinician.id, start_at=start, end_at=start + timedelta(minutes=30)
    )
    store = SqlCalendarStore(session)

    rules = await store.fetch_rules(str(clinician.id))
    assert rules[0]["day_of_week"] == "Monday"
    assert rules[0]["start_time"] == "09:00:00"

    appts = await store.fetch_appointments(str(clinician.id), start, start + timedelta(days=1))
    assert appts[0]["start_at"] == "2025-06-09T15:00:00+00:00"
    assert appts[0]["client_name"] == "Jane Doe"

    assert await store.fetch_settings(str(clinician.id)) is None


async def test_loader_over_sql_store(session: AsyncSession, clinician, client, rule):
    await AvailabilityExceptionRepository(session).upsert(clinician.id, MONDAY, rule.id, "10:00:00", "11:00:00")
    await AvailabilitySettingsRepository(session).upsert(clinician.id, time_zone="America/Chicago")
    await AppointmentRepository(session).create(
        client_id=client.id,
        clinician_id=clinician.id,
        start_at=datetime(2025, 6, 9, 15, 0, tzinfo=timezone.utc),
        end_at=datetime(2025, 6, 9, 15, 30, tzinfo=timezone.utc),
    )

    loader = CalendarDataLoader(SqlCalendarStore(session), TimeZoneConversionService())
    week = tuple(date(2025, 6, 8 + i) for i in range(7))
    snapshot = await loader.load(CalendarQuery(str(clinician.id), week))

    assert snapshot.zone == "America/Chicago"
    assert not snapshot.is_degraded
    assert [(b.start, b.end) for b in snapshot.time_blocks] == [
        (datetime(2025, 6, 9, 10, tzinfo=CT), datetime(2025, 6, 9, 11, tzinfo=CT))
    ]
    assert snapshot.index.appointment_at(MONDAY, time(10, 0)).client_name == "Jane Doe"


async def test_loader_applies_sql_time_off(session: AsyncSession, clinician, rule):
    await TimeOffRepository(session).create(clinician_id=clinician.id, start_date=MONDAY, end_date=MONDAY)
    store = SqlCalendarStore(session)

    rows = await store.fetch_time_off(str(clinician.id), MONDAY, MONDAY)
    assert rows[0]["start_date"] == "2025-06-09"

    snapshot = await CalendarDataLoader(store, TimeZoneConversionService()).load(
        CalendarQuery(str(clinician.id), (MONDAY,))
    )
    assert snapshot.time_blocks == ()


def test_sql_and_static_stores_share_the_protocol():
    assert isinstance(SqlCalendarStore(session=None), CalendarStore)
    assert isinstance(StaticCalendarStore(), CalendarStore)
