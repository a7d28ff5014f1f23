"""Application wiring: engines, Redis, messaging topology and the service."""

from dataclasses import dataclass

import redis.asyncio as redis
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from appointment_router.config import Settings
from appointment_router.core.redis_client import create_redis_client
from appointment_router.database import create_engine, create_session_factory
from appointment_router.domain.appointment import CountryISO
from appointment_router.domain.events import CONFIRMED_DETAIL_TYPE, CONFIRMED_EVENT_SOURCE
from appointment_router.domain.strategies import CountryStrategyFactory
from appointment_router.messaging.broker import EventBroker
from appointment_router.messaging.fanout import EventBus, EventRule, FanOutTopic, Subscription
from appointment_router.messaging.publisher import StreamEventPublisher
from appointment_router.repositories.appointment_repository import SqlAppointmentsRepository
from appointment_router.repositories.country_writer import CountryAppointmentWriter
from appointment_router.services.appointment_service import AppointmentService

logger = structlog.get_logger(__name__)


def build_topic(settings: Settings, broker: EventBroker) -> FanOutTopic:
    """Appointment topic with one country-filtered queue per country."""
    return FanOutTopic(
        "appointments",
        broker,
        [
            Subscription(queue=settings.queue_pe, filter_policy={"countryISO": [CountryISO.PE.value]}),
            Subscription(queue=settings.queue_cl, filter_policy={"countryISO": [CountryISO.CL.value]}),
        ],
    )


def build_event_bus(settings: Settings, broker: EventBroker) -> EventBus:
    """Event bus routing confirmations to the completion queue."""
    return EventBus(
        settings.event_bus_stream,
        broker,
        [
            EventRule(
                name="appointment-confirmed",
                event_pattern={
                    "source": [CONFIRMED_EVENT_SOURCE],
                    "detail-type": [CONFIRMED_DETAIL_TYPE],
                },
                target=settings.queue_completed,
            )
        ],
    )


def queue_for(settings: Settings, country: CountryISO) -> str:
    return {CountryISO.PE: settings.queue_pe, CountryISO.CL: settings.queue_cl}[country]


@dataclass
class Container:
    """Long-lived resources shared by the API and the workers."""

    settings: Settings
    engine: AsyncEngine
    country_engines: dict[CountryISO, AsyncEngine]
    redis: redis.Redis
    broker: EventBroker
    service: AppointmentService

    async def close(self) -> None:
        """Dispose engines and close the Redis connection."""
        await self.engine.dispose()
        for engine in self.country_engines.values():
            await engine.dispose()
        await self.redis.aclose()
        logger.info("container_closed")


def build_container(settings: Settings, redis_client: redis.Redis | None = None) -> Container:
    """
    Build every long-lived dependency once.

    Args:
        settings: Application settings
        redis_client: Redis client to use instead of one built from settings

    Returns:
        Wired container
    """
    engine = create_engine(settings.database_url, application_name=settings.app_name)
    country_engines = {
        CountryISO.PE: create_engine(settings.database_url_pe, application_name=f"{settings.app_name} PE"),
        CountryISO.CL: create_engine(settings.database_url_cl, application_name=f"{settings.app_name} CL"),
    }

    client = redis_client or create_redis_client(settings)
    broker = EventBroker(client, max_len=settings.stream_max_len)

    publisher = StreamEventPublisher(
        topic=build_topic(settings, broker),
        event_bus=build_event_bus(settings, broker),
    )

    strategies = {
        country: CountryStrategyFactory.create(
            country,
            CountryAppointmentWriter(
                country,
                country_engines[country],
                max_attempts=settings.db_max_attempts,
                base_delay=settings.db_retry_base_delay,
            ),
        )
        for country in CountryStrategyFactory.get_supported_countries()
    }

    service = AppointmentService(
        repository=SqlAppointmentsRepository(create_session_factory(engine)),
        event_publisher=publisher,
        strategies=strategies,
    )

    logger.info(
        "container_built",
        environment=settings.environment,
        countries=[c.value for c in strategies],
    )
    return Container(
        settings=settings,
        engine=engine,
        country_engines=country_engines,
        redis=client,
        broker=broker,
        service=service,
    )
