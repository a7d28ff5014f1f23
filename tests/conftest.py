from collections import defaultdict
from collections.abc import AsyncGenerator
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine

# Load environment variables from .env file
load_dotenv()

from appointment_router.config import Settings
from appointment_router.core.exceptions import ConflictError
from appointment_router.database import create_engine, create_session_factory
from appointment_router.dependencies import get_appointment_service
from appointment_router.domain.appointment import Appointment, AppointmentStatus, CountryISO
from appointment_router.domain.events import AppointmentConfirmedEvent
from appointment_router.domain.strategies import ChileStrategy, DatabaseConfig, PeruStrategy
from appointment_router.main import app
from appointment_router.models.appointments import metadata as appointments_metadata
from appointment_router.models.country_appointments import metadata as country_metadata
from appointment_router.repositories.appointment_repository import SqlAppointmentsRepository
from appointment_router.services.appointment_service import AppointmentService


class InMemoryAppointmentsRepository:
    """Repository fake with the same conditional-write semantics as the SQL one."""

    def __init__(self) -> None:
        self.items: dict[str, Appointment] = {}
        self.update_calls = 0

    async def save(self, appointment: Appointment) -> None:
        key = (appointment.insured_id, appointment.schedule_id)
        if appointment.appointment_id in self.items or any(
            (a.insured_id, a.schedule_id) == key for a in self.items.values()
        ):
            raise ConflictError("appointment", "Appointment already exists")
        self.items[appointment.appointment_id] = appointment

    async def find_by_id(self, appointment_id: str) -> Appointment | None:
        return self.items.get(appointment_id)

    async def find_by_insured_id(self, insured_id: str) -> list[Appointment]:
        found = [a for a in self.items.values() if a.insured_id == insured_id]
        return sorted(found, key=lambda a: a.appointment_id, reverse=True)

    async def find_by_insured_and_schedule(self, insured_id: str, schedule_id: int) -> Appointment | None:
        for appointment in self.items.values():
            if appointment.insured_id == insured_id and appointment.schedule_id == schedule_id:
                return appointment
        return None

    async def update_status(
        self,
        appointment: Appointment,
        expected_status: AppointmentStatus,
    ) -> Appointment | None:
        self.update_calls += 1
        current = self.items.get(appointment.appointment_id)
        if current is None or current.insured_id != appointment.insured_id or current.status != expected_status:
            return None
        self.items[appointment.appointment_id] = appointment
        return appointment

    async def find_pending_created_before(self, cutoff: datetime, limit: int = 100) -> list[Appointment]:
        pending = [a for a in self.items.values() if a.is_pending() and a.created_at < cutoff]
        return sorted(pending, key=lambda a: a.created_at)[:limit]


class RecordingEventPublisher:
    """Publisher fake that records what was published."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []
        self.confirmed: list[AppointmentConfirmedEvent] = []
        self.fail_with: Exception | None = None
        self.fail_confirmed_with: Exception | None = None

    async def publish_event(self, event_data: dict[str, Any]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.events.append(event_data)

    async def publish_appointment_confirmed(self, event: AppointmentConfirmedEvent) -> None:
        if self.fail_confirmed_with is not None:
            raise self.fail_confirmed_with
        self.confirmed.append(event)


class InMemoryCountryStore:
    """Country store fake; a duplicate appointment ID is a no-op."""

    def __init__(self, database: str = "appointments_test") -> None:
        self.records: dict[str, Appointment] = {}
        self.database = database
        self.fail_with: Exception | None = None

    async def write(self, appointment: Appointment) -> bool:
        if self.fail_with is not None:
            raise self.fail_with
        if appointment.appointment_id in self.records:
            return False
        self.records[appointment.appointment_id] = appointment
        return True

    def database_config(self) -> DatabaseConfig:
        return DatabaseConfig(host="localhost", database=self.database, port=5432)


class InMemoryBroker:
    """
    Stream broker fake.

    Every pending entry counts as idle, so ``claim_stuck_messages`` redelivers
    all unacknowledged entries.
    """

    def __init__(self) -> None:
        self.streams: dict[str, list[tuple[str, dict[str, str]]]] = defaultdict(list)
        self.groups: dict[tuple[str, str], dict[str, Any]] = {}
        self._seq = 0

    async def publish(self, stream_key: str, fields: dict[str, str]) -> str:
        self._seq += 1
        message_id = f"{self._seq}-0"
        self.streams[stream_key].append((message_id, dict(fields)))
        return message_id

    async def create_group(self, stream_key: str, group_name: str, start_id: str = "0") -> bool:
        if (stream_key, group_name) in self.groups:
            return False
        self.groups[(stream_key, group_name)] = {"offset": 0, "pending": {}}
        return True

    async def consume_group(
        self,
        group_name: str,
        consumer_name: str,
        stream_key: str,
        count: int = 10,
        block: int = 1000,
    ) -> list[tuple[str, dict[str, str]]]:
        group = self.groups[(stream_key, group_name)]
        entries = self.streams[stream_key][group["offset"] : group["offset"] + count]
        group["offset"] += len(entries)
        for message_id, _ in entries:
            group["pending"][message_id] = group["pending"].get(message_id, 0) + 1
        return entries

    async def ack(self, stream_key: str, group_name: str, *message_ids: str) -> None:
        for message_id in message_ids:
            self.groups[(stream_key, group_name)]["pending"].pop(message_id, None)

    async def claim_stuck_messages(
        self,
        stream_key: str,
        group_name: str,
        consumer_name: str,
        min_idle_time: int = 60000,
        count: int = 10,
    ) -> list[tuple[str, dict[str, str]]]:
        pending = self.groups[(stream_key, group_name)]["pending"]
        claimed_ids = list(pending)[:count]
        for message_id in claimed_ids:
            pending[message_id] += 1
        return [(mid, fields) for mid, fields in self.streams[stream_key] if mid in claimed_ids]

    async def delivery_count(self, stream_key: str, group_name: str, message_id: str) -> int:
        return self.groups[(stream_key, group_name)]["pending"].get(message_id, 0)

    def pending(self, stream_key: str, group_name: str) -> dict[str, int]:
        return dict(self.groups[(stream_key, group_name)]["pending"])


@pytest.fixture
def test_settings() -> Settings:
    """Settings with default stream names and no retry delay."""
    return Settings(DB_RETRY_BASE_DELAY=0.0)


@pytest.fixture
def repository() -> InMemoryAppointmentsRepository:
    return InMemoryAppointmentsRepository()


@pytest.fixture
def publisher() -> RecordingEventPublisher:
    return RecordingEventPublisher()


@pytest.fixture
def pe_store() -> InMemoryCountryStore:
    return InMemoryCountryStore("appointments_pe")


@pytest.fixture
def cl_store() -> InMemoryCountryStore:
    return InMemoryCountryStore("appointments_cl")


@pytest.fixture
def service(
    repository: InMemoryAppointmentsRepository,
    publisher: RecordingEventPublisher,
    pe_store: InMemoryCountryStore,
    cl_store: InMemoryCountryStore,
) -> AppointmentService:
    """Appointment service wired to in-memory fakes."""
    return AppointmentService(
        repository=repository,
        event_publisher=publisher,
        strategies={
            CountryISO.PE: PeruStrategy(pe_store),
            CountryISO.CL: ChileStrategy(cl_store),
        },
    )


@pytest.fixture
def pending_appointment() -> Appointment:
    return Appointment.create(insured_id="12345", schedule_id=100, country_iso="PE")


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Appointments database on SQLite with every table created."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'appointments.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(appointments_metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def country_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Country database on SQLite."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'country.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(country_metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sql_repository(sqlite_engine: AsyncEngine) -> SqlAppointmentsRepository:
    return SqlAppointmentsRepository(create_session_factory(sqlite_engine))


@pytest.fixture
def sample_appointment_data() -> dict:
    """Sample creation request body."""
    return {
        "insuredId": "12345",
        "scheduleId": 100,
        "countryISO": "PE",
    }


@pytest.fixture
def broker() -> InMemoryBroker:
    return InMemoryBroker()


@pytest_asyncio.fixture
async def client(service: AppointmentService) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client backed by the in-memory service."""
    app.dependency_overrides[get_appointment_service] = lambda: service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
