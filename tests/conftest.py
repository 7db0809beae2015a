from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from clinic_scheduler.config import settings
from clinic_scheduler.database import create_session_factory, create_tables
from clinic_scheduler.dependencies import build_services
from clinic_scheduler.main import app
from clinic_scheduler.services.appointment_service import AppointmentService
from clinic_scheduler.services.notification_hub import ChangeNotificationHub
from clinic_scheduler.services.slot_service import SlotAvailabilityService
from clinic_scheduler.store.memory import InMemoryDocumentStore
from clinic_scheduler.store.sql import SQLDocumentStore

COLLECTION = "appointments"

# Monday 13 Jan 2025
APPOINTMENT_DATE = "Monday, 13 Jan 2025"

# Fixed local wall clock for cutoff checks: two days before APPOINTMENT_DATE
NOW = datetime(2025, 1, 11, 9, 0)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Create an isolated in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def slot_service(store: InMemoryDocumentStore) -> SlotAvailabilityService:
    """Create a slot availability service over the test store."""
    return SlotAvailabilityService(store, COLLECTION)


@pytest.fixture
def appointment_service(
    store: InMemoryDocumentStore,
    slot_service: SlotAvailabilityService,
) -> AppointmentService:
    """Create a lifecycle service with a fixed clock."""
    return AppointmentService(store, slot_service, collection=COLLECTION, clock=lambda: NOW)


@pytest.fixture
def hub(store: InMemoryDocumentStore) -> ChangeNotificationHub:
    """Create a notification hub over the test store."""
    return ChangeNotificationHub(store, COLLECTION)


@pytest.fixture
def seed_appointment(
    store: InMemoryDocumentStore,
) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Factory inserting an appointment document straight into the store."""

    async def _seed(**overrides: Any) -> dict[str, Any]:
        data = {
            "user_id": "user-1",
            "doctor_id": "D1",
            "doctor_name": "Dr. Jane Tan",
            "branch_id": "B1",
            "branch_name": "Central Clinic",
            "service_id": "S1",
            "service_name": "General Consultation",
            "date": APPOINTMENT_DATE,
            "time_slot": "9:30 AM",
            "status": "Booked",
        }
        data.update(overrides)
        return await store.create_document(COLLECTION, data)

    return _seed


@pytest.fixture
def sample_appointment_data() -> dict[str, Any]:
    """Sample booking payload."""
    return {
        "user_id": "user-1",
        "doctor_id": "D1",
        "doctor_name": "Dr. Jane Tan",
        "branch_id": "B1",
        "branch_name": "Central Clinic",
        "service_id": "S1",
        "service_name": "General Consultation",
        "date": APPOINTMENT_DATE,
        "time_slot": "9:30 AM",
    }


@pytest_asyncio.fixture
async def sql_store() -> AsyncGenerator[SQLDocumentStore, None]:
    """Create a SQL store over a private in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)

    yield SQLDocumentStore(create_session_factory(engine))

    await engine.dispose()


@pytest_asyncio.fixture
async def client(store: InMemoryDocumentStore) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client backed by the in-memory store."""
    services = build_services(settings, store=store)
    app.state.services = services

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    await services.close()
    app.state.services = None
