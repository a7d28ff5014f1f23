"""Queue message handlers bound to the appointment service."""

import json

import structlog

from appointment_router.core.exceptions import DomainError, NotFoundError, ValidationError
from appointment_router.domain.appointment import CountryISO
from appointment_router.messaging.mapper import StreamMessage
from appointment_router.messaging.worker import DeadLetterCallback, MessageHandler, RetryableMessageError
from appointment_router.services.appointment_service import AppointmentService

logger = structlog.get_logger(__name__)


def country_queue_handler(service: AppointmentService, country: CountryISO) -> MessageHandler:
    """
    Handler for a country queue.

    Retryable failures are raised as ``RetryableMessageError``. An appointment
    the country rules reject is marked as failed. Messages that fail
    validation are discarded without touching the stored appointment.
    """

    async def handle(fields: dict[str, str]) -> None:
        message = StreamMessage.from_fields(fields)
        result = await service.process_appointment(country, message.data)

        if result.success:
            return

        if result.retryable:
            raise RetryableMessageError(result.message)

        if result.rejected and result.appointment_id:
            try:
                await service.fail_appointment(result.appointment_id, result.message)
            except NotFoundError:
                logger.warning("rejected_appointment_unknown", appointment_id=result.appointment_id)

        raise DomainError(
            result.message,
            "PROCESSING_REJECTED",
            {"appointment_id": result.appointment_id, "country_iso": country.value},
        )

    return handle


def country_dead_letter_handler(service: AppointmentService) -> DeadLetterCallback:
    """Marks the appointment of a dead-lettered country message as failed."""

    async def on_dead_letter(fields: dict[str, str], reason: str) -> None:
        appointment_id = StreamMessage.from_fields(fields).data.get("appointmentId")
        if not isinstance(appointment_id, str):
            logger.warning("dead_letter_without_appointment_id", reason=reason)
            return
        await service.fail_appointment(appointment_id, f"Processing retries exhausted: {reason}")

    return on_dead_letter


def completed_queue_handler(service: AppointmentService) -> MessageHandler:
    """Handler for the completion queue fed by the event bus."""

    async def handle(fields: dict[str, str]) -> None:
        try:
            event = json.loads(fields["event"])
        except (KeyError, TypeError, json.JSONDecodeError) as e:
            raise ValidationError("Malformed event-bus message", {"error": str(e)}) from e

        await service.confirm_appointment_from_event(event)

    return handle
