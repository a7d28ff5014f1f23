"""Republish Pending Appointments use case."""

from datetime import datetime

import structlog

from appointment_router.core.exceptions import InfrastructureError
from appointment_router.domain.ports import AppointmentsRepository, EventPublisher
from appointment_router.use_cases.create_appointment import creation_event

logger = structlog.get_logger(__name__)


class RepublishPendingAppointments:
    """
    Reconciliation sweep for appointments saved without a published creation
    event.

    Any appointment still pending after the cutoff gets its creation event
    published again; country pipelines and confirmation tolerate duplicates.
    """

    def __init__(self, repository: AppointmentsRepository, event_publisher: EventPublisher, batch_size: int = 100):
        self.repository = repository
        self.event_publisher = event_publisher
        self.batch_size = batch_size

    async def execute(self, older_than: datetime) -> int:
        """
        Republish creation events for pending appointments created before
        ``older_than``.

        Returns:
            Number of events republished

        Raises:
            InfrastructureError: If the pending appointments cannot be read
        """
        pending = await self.repository.find_pending_created_before(older_than, limit=self.batch_size)
        republished = 0

        for appointment in pending:
            try:
                await self.event_publisher.publish_event(creation_event(appointment))
            except InfrastructureError as e:
                logger.error(
                    "appointment_republish_failed",
                    appointment_id=appointment.appointment_id,
                    error=e.message,
                )
                continue
            republished += 1

        logger.info(
            "pending_appointments_republished",
            cutoff=older_than.isoformat(),
            found=len(pending),
            republished=republished,
        )
        return republished
