"""Ports (interfaces) the use cases depend on.

Concrete adapters live in ``appointment_router.repositories`` and
``appointment_router.messaging``.
"""

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from appointment_router.domain.appointment import Appointment, AppointmentStatus
from appointment_router.domain.events import AppointmentConfirmedEvent


@runtime_checkable
class AppointmentsRepository(Protocol):
    """Conditional-write store keyed by (insured_id, appointment_id)."""

    async def save(self, appointment: Appointment) -> None:
        """
        Insert a new appointment.

        Raises:
            ConflictError: If the identity or idempotency key already exists
            InfrastructureError: On store failure
        """
        ...

    async def find_by_id(self, appointment_id: str) -> Appointment | None:
        """Look up an appointment by its ID alone."""
        ...

    async def find_by_insured_id(self, insured_id: str) -> list[Appointment]:
        """List an insured's appointments, newest first."""
        ...

    async def find_by_insured_and_schedule(
        self,
        insured_id: str,
        schedule_id: int,
    ) -> Appointment | None:
        """Look up by idempotency key."""
        ...

    async def update_status(
        self,
        appointment: Appointment,
        expected_status: AppointmentStatus,
    ) -> Appointment | None:
        """
        Persist ``appointment.status`` and ``appointment.updated_at``.

        The write only applies while the stored status still equals
        ``expected_status``; otherwise nothing changes and None is returned.
        """
        ...

    async def find_pending_created_before(
        self,
        cutoff: datetime,
        limit: int = 100,
    ) -> list[Appointment]:
        """Pending appointments older than ``cutoff``, oldest first."""
        ...


@runtime_checkable
class EventPublisher(Protocol):
    """Outbound messaging."""

    async def publish_event(self, event_data: dict[str, Any]) -> None:
        """
        Publish a creation event ``{source, detailType, detail}``.

        Raises:
            ValidationError: If ``detail.countryISO`` is missing or unsupported
            InfrastructureError: On transport failure
        """
        ...

    async def publish_appointment_confirmed(self, event: AppointmentConfirmedEvent) -> None:
        """Publish a confirmation event on the event bus."""
        ...
