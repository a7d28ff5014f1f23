"""Process Appointment use case for the country pipelines."""

from typing import Any

import pydantic
import structlog

from appointment_router.core.exceptions import AppException, InfrastructureError, ValidationError
from appointment_router.domain.appointment import INSURED_ID_PATTERN, Appointment, CountryISO, utc_now
from appointment_router.domain.events import PIPELINE_SOURCES, create_appointment_confirmed_event
from appointment_router.domain.ports import EventPublisher
from appointment_router.domain.strategies import CountryStrategy
from appointment_router.schemas.appointments import AppointmentMessage, ProcessAppointmentResult

logger = structlog.get_logger(__name__)


class ProcessAppointment:
    """
    Processes appointments delivered to one country queue.

    Application errors are reported in the result, with ``retryable`` set
    for infrastructure failures and ``rejected`` when the country rules turn
    the appointment down. Unexpected exceptions propagate so the queue
    redelivers the message.
    """

    def __init__(self, country: CountryISO, strategy: CountryStrategy, event_publisher: EventPublisher):
        if strategy.country_code != country:
            raise ValueError(f"Strategy for {strategy.country_code.value} cannot process {country.value}")
        self.country = country
        self.strategy = strategy
        self.event_publisher = event_publisher

    @property
    def source(self) -> str:
        """Pipeline name used as the confirmation event source."""
        return PIPELINE_SOURCES[self.country]

    async def execute(self, message: dict[str, Any]) -> ProcessAppointmentResult:
        """
        Process one appointment message.

        Args:
            message: Appointment fields in camelCase, as published on creation
        """
        appointment_id = message.get("appointmentId") if isinstance(message, dict) else None
        if not isinstance(appointment_id, str):
            appointment_id = None
        log = logger.bind(appointment_id=appointment_id, country=self.country.value)
        db_written = False

        try:
            appointment = self._parse(message)

            result = await self.strategy.process_appointment(appointment)
            if not result.success:
                log.warning("appointment_processing_rejected", reason=result.message)
                return self._result(appointment_id, False, result.message, rejected=True)
            db_written = True

            event = create_appointment_confirmed_event(
                appointment_id=appointment.appointment_id,
                insured_id=appointment.insured_id,
                schedule_id=appointment.schedule_id,
                country_iso=appointment.country_iso,
                source=self.source,
                processed_at=result.processed_at,
            )
            await self.event_publisher.publish_appointment_confirmed(event)

        except InfrastructureError as e:
            log.error("appointment_processing_failed", operation=e.operation, error=e.message)
            return self._result(appointment_id, False, e.message, db_written=db_written, retryable=True)
        except AppException as e:
            log.warning("appointment_processing_invalid", code=e.code, error=e.message)
            return self._result(appointment_id, False, e.message, db_written=db_written)

        log.info("appointment_processed", source=self.source)
        return self._result(
            appointment_id,
            True,
            f"Appointment processed and confirmed in {self.strategy.country_name}",
            db_written=True,
            event_published=True,
        )

    def _parse(self, message: dict[str, Any]) -> Appointment:
        if not isinstance(message, dict):
            raise ValidationError("Appointment message must be an object")

        try:
            parsed = AppointmentMessage.model_validate(message)
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Invalid appointment message",
                {"errors": e.errors(include_url=False, include_context=False)},
            ) from e

        if not INSURED_ID_PATTERN.match(parsed.insured_id):
            raise ValidationError(
                "Insured ID must be exactly 5 digits",
                {"field": "insuredId", "value": parsed.insured_id},
            )

        if parsed.country_iso != self.country.value:
            raise ValidationError(
                f"Message for {parsed.country_iso} delivered to the {self.country.value} pipeline",
                {"field": "countryISO", "value": parsed.country_iso, "expected": self.country.value},
            )

        return parsed.to_entity()

    @staticmethod
    def _result(
        appointment_id: str | None,
        success: bool,
        message: str,
        db_written: bool = False,
        event_published: bool = False,
        retryable: bool = False,
        rejected: bool = False,
    ) -> ProcessAppointmentResult:
        return ProcessAppointmentResult(
            appointment_id=appointment_id,
            success=success,
            message=message,
            processed_at=utc_now(),
            db_written=db_written,
            event_published=event_published,
            retryable=retryable,
            rejected=rejected,
        )


class ProcessAppointmentPE(ProcessAppointment):
    """Peru pipeline."""

    def __init__(self, strategy: CountryStrategy, event_publisher: EventPublisher):
        super().__init__(CountryISO.PE, strategy, event_publisher)


class ProcessAppointmentCL(ProcessAppointment):
    """Chile pipeline."""

    def __init__(self, strategy: CountryStrategy, event_publisher: EventPublisher):
        super().__init__(CountryISO.CL, strategy, event_publisher)
