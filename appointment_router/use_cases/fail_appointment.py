"""Fail Appointment use case."""

import structlog

from appointment_router.core.exceptions import ConflictError, NotFoundError
from appointment_router.domain.ports import AppointmentsRepository
from appointment_router.schemas.appointments import FailAppointmentResult

logger = structlog.get_logger(__name__)


class FailAppointment:
    """Marks an appointment as failed once its country pipeline gives up on it."""

    def __init__(self, repository: AppointmentsRepository):
        self.repository = repository

    async def execute(self, appointment_id: str, reason: str) -> FailAppointmentResult:
        """
        Mark an appointment as failed.

        Raises:
            NotFoundError: If the appointment does not exist
            DomainError: If the appointment is already completed
            ConflictError: If the appointment changed status concurrently
        """
        appointment = await self.repository.find_by_id(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)

        previous_status = appointment.status
        failed = appointment.mark_as_failed()
        stored = await self.repository.update_status(failed, expected_status=previous_status)

        if stored is None:
            raise ConflictError(
                "appointment",
                "Appointment status changed before it could be marked as failed",
                {"appointment_id": appointment_id, "expected_status": previous_status.value},
            )

        logger.warning(
            "appointment_failed",
            appointment_id=appointment_id,
            previous_status=previous_status.value,
            reason=reason,
        )
        return FailAppointmentResult(
            appointment_id=stored.appointment_id,
            previous_status=previous_status,
            new_status=stored.status,
            updated_at=stored.updated_at,
            reason=reason,
        )
