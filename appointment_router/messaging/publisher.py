"""Event publisher over the fan-out topic and the event bus."""

from typing import Any

import redis.asyncio as redis
import structlog

from appointment_router.core.exceptions import InfrastructureError, ValidationError
from appointment_router.domain.appointment import CountryISO
from appointment_router.domain.events import AppointmentConfirmedEvent
from appointment_router.messaging.fanout import EventBus, FanOutTopic
from appointment_router.messaging.mapper import MessageMapper

logger = structlog.get_logger(__name__)


class StreamEventPublisher:
    """
    Publishes creation events to the country topic and confirmation events to
    the event bus.
    """

    def __init__(self, topic: FanOutTopic, event_bus: EventBus, mapper: MessageMapper | None = None):
        self.topic = topic
        self.event_bus = event_bus
        self.mapper = mapper or MessageMapper()

    async def publish_event(self, event_data: dict[str, Any]) -> None:
        """
        Publish a creation event ``{source, detailType, detail}``.

        Raises:
            ValidationError: If ``detail.countryISO`` is missing or unsupported
            InfrastructureError: If the topic cannot be reached
        """
        detail = event_data.get("detail") or {}
        country = detail.get("countryISO")

        if not country:
            raise ValidationError(
                "countryISO is required for topic routing",
                {"field": "countryISO", "detail_type": event_data.get("detailType")},
            )

        message = self.mapper.to_creation_message(event_data, country)
        if not self.mapper.validate_country_filter_attributes(message.attributes):
            raise ValidationError(
                f"Unsupported countryISO for topic routing: {country}",
                {
                    "field": "countryISO",
                    "value": country,
                    "valid_countries": [c.value for c in CountryISO],
                },
            )

        try:
            queues = await self.topic.publish(message)
        except redis.RedisError as e:
            logger.error(
                "creation_event_publish_failed",
                appointment_id=detail.get("appointmentId"),
                error=str(e),
            )
            raise InfrastructureError(
                "appointment publish",
                str(e),
                {"appointment_id": detail.get("appointmentId"), "country_iso": country},
            ) from e

        logger.info(
            "creation_event_published",
            appointment_id=detail.get("appointmentId"),
            country_iso=country,
            queues=queues,
        )

    async def publish_appointment_confirmed(self, event: AppointmentConfirmedEvent) -> None:
        """
        Put a confirmation event on the event bus.

        Raises:
            InfrastructureError: If the event bus cannot be reached
        """
        try:
            targets = await self.event_bus.put_event(event.to_wire())
        except redis.RedisError as e:
            logger.error(
                "confirmation_event_publish_failed",
                appointment_id=event.detail.appointment_id,
                error=str(e),
            )
            raise InfrastructureError(
                "confirmation publish",
                str(e),
                {"appointment_id": event.detail.appointment_id},
            ) from e

        logger.info(
            "confirmation_event_published",
            appointment_id=event.detail.appointment_id,
            source=event.detail.source,
            targets=targets,
        )
