"""Service composition and FastAPI dependencies."""

from dataclasses import dataclass
from typing import Annotated

import structlog
from fastapi import Depends, Request, WebSocket
from sqlalchemy.ext.asyncio import AsyncEngine

from clinic_scheduler.config import Settings
from clinic_scheduler.core.exceptions import ServiceUnavailableException
from clinic_scheduler.core.redis_client import RedisEventPublisher, get_redis_client
from clinic_scheduler.database import create_engine_from_url, create_session_factory, create_tables
from clinic_scheduler.services.appointment_service import AppointmentService
from clinic_scheduler.services.notification_hub import ChangeNotificationHub
from clinic_scheduler.services.slot_service import SlotAvailabilityService
from clinic_scheduler.store.base import DocumentStore
from clinic_scheduler.store.feed import ChangeFeed
from clinic_scheduler.store.memory import InMemoryDocumentStore
from clinic_scheduler.store.sql import SQLDocumentStore

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    """Explicitly constructed service graph owned by the application."""

    store: DocumentStore
    slots: SlotAvailabilityService
    appointments: AppointmentService
    hub: ChangeNotificationHub
    engine: AsyncEngine | None = None
    redis_enabled: bool = False

    async def close(self) -> None:
        """Release subscriptions and connections."""
        self.hub.close()
        if self.engine is not None:
            await self.engine.dispose()


def build_services(settings: Settings, store: DocumentStore | None = None) -> Services:
    """
    Wire store, slot resolver, lifecycle service and notification hub.

    Args:
        settings: Application settings
        store: Pre-built store; built from settings when omitted

    Returns:
        Service graph
    """
    engine = None

    if store is None:
        publisher = None
        if settings.redis_enabled:
            publisher = RedisEventPublisher(get_redis_client(), settings.redis_channel_prefix)
        feed = ChangeFeed(publisher)

        if settings.store_backend == "memory":
            store = InMemoryDocumentStore(feed)
        elif settings.store_backend == "sql":
            engine = create_engine_from_url(settings.database_url, echo=settings.debug)
            store = SQLDocumentStore(create_session_factory(engine), feed=feed)
        else:
            raise ValueError(f"Unknown store backend: {settings.store_backend}")

    collection = settings.appointments_collection
    slots = SlotAvailabilityService(store, collection, default_slots=settings.default_time_slots)

    services = Services(
        store=store,
        slots=slots,
        appointments=AppointmentService(
            store,
            slots,
            collection=collection,
            cancellation_cutoff_hours=settings.cancellation_cutoff_hours,
            enforce_cancellation_cutoff=settings.enforce_cancellation_cutoff,
        ),
        hub=ChangeNotificationHub(store, collection),
        engine=engine,
        redis_enabled=settings.redis_enabled,
    )
    logger.info("services_built", store_backend=type(store).__name__)
    return services


async def prepare_services(services: Services) -> None:
    """Create tables for SQL-backed stores."""
    if services.engine is not None:
        await create_tables(services.engine)
        logger.info("database_tables_ready")


def _services_from_state(state: object) -> Services:
    services = getattr(state, "services", None)
    if services is None:
        raise ServiceUnavailableException("Services are not initialized")
    return services


def get_services(request: Request) -> Services:
    """Service graph attached to the application state."""
    return _services_from_state(request.app.state)


def get_ws_services(websocket: WebSocket) -> Services:
    """Service graph for websocket routes."""
    return _services_from_state(websocket.app.state)


def get_appointment_service(services: Annotated[Services, Depends(get_services)]) -> AppointmentService:
    return services.appointments


def get_slot_service(services: Annotated[Services, Depends(get_services)]) -> SlotAvailabilityService:
    return services.slots


# Type aliases for dependency injection
ServicesDep = Annotated[Services, Depends(get_services)]
AppointmentServiceDep = Annotated[AppointmentService, Depends(get_appointment_service)]
SlotServiceDep = Annotated[SlotAvailabilityService, Depends(get_slot_service)]
