"""Create Appointment use case."""

import structlog

from appointment_router.core.exceptions import ConflictError, InfrastructureError
from appointment_router.domain.appointment import Appointment
from appointment_router.domain.events import CREATED_DETAIL_TYPE, CREATED_EVENT_SOURCE
from appointment_router.domain.ports import AppointmentsRepository, EventPublisher
from appointment_router.domain.validators import validate_appointment_data
from appointment_router.schemas.appointments import CreateAppointmentRequest, CreateAppointmentResponse

logger = structlog.get_logger(__name__)


def creation_event(appointment: Appointment) -> dict:
    """Creation event for an appointment, routed by its ``countryISO``."""
    return {
        "source": CREATED_EVENT_SOURCE,
        "detailType": CREATED_DETAIL_TYPE,
        "detail": appointment.to_dict(),
    }


class CreateAppointment:
    """
    Schedules an appointment and hands it to its country pipeline.

    Creation is idempotent on (insured_id, schedule_id): repeated requests for
    the same pair resolve to the first appointment and publish nothing.
    """

    def __init__(self, repository: AppointmentsRepository, event_publisher: EventPublisher):
        self.repository = repository
        self.event_publisher = event_publisher

    async def execute(self, request: CreateAppointmentRequest) -> CreateAppointmentResponse:
        """
        Execute the use case.

        Raises:
            ValidationError: If the request breaks a business rule (no I/O done)
            InfrastructureError: If persisting or publishing fails
        """
        validate_appointment_data(request.insured_id, request.schedule_id, request.country_iso)
        log = logger.bind(insured_id=request.insured_id, schedule_id=request.schedule_id)

        existing = await self.repository.find_by_insured_and_schedule(
            request.insured_id,
            request.schedule_id,
        )
        if existing is not None:
            log.info("appointment_already_scheduled", appointment_id=existing.appointment_id)
            return self._response(existing)

        appointment = Appointment.create(
            insured_id=request.insured_id,
            schedule_id=request.schedule_id,
            country_iso=request.country_iso,
            center_id=request.center_id,
            specialty_id=request.specialty_id,
            medic_id=request.medic_id,
            slot_datetime=request.slot_datetime,
        )

        try:
            await self.repository.save(appointment)
        except ConflictError:
            winner = await self.repository.find_by_insured_and_schedule(
                request.insured_id,
                request.schedule_id,
            )
            if winner is None:
                raise
            log.info("appointment_creation_race_lost", appointment_id=winner.appointment_id)
            return self._response(winner)

        try:
            await self.event_publisher.publish_event(creation_event(appointment))
        except InfrastructureError as e:
            log.error(
                "appointment_publish_failed",
                appointment_id=appointment.appointment_id,
                error=e.message,
            )
            raise InfrastructureError(
                "appointment publish",
                "Appointment saved but its creation event could not be published",
                {"appointment_id": appointment.appointment_id},
            ) from e

        log.info(
            "appointment_created",
            appointment_id=appointment.appointment_id,
            country_iso=appointment.country_iso.value,
        )
        return self._response(appointment)

    @staticmethod
    def _response(appointment: Appointment) -> CreateAppointmentResponse:
        return CreateAppointmentResponse(
            appointment_id=appointment.appointment_id,
            insured_id=appointment.insured_id,
            schedule_id=appointment.schedule_id,
            country_iso=appointment.country_iso.value,
            status=appointment.status,
            created_at=appointment.created_at,
            message=f"Appointment scheduled for {appointment.country_iso.value}. Processing in progress.",
        )
