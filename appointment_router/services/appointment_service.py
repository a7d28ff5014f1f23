"""Appointment service: single entry point to the appointment use cases."""

from datetime import datetime
from typing import Any

from appointment_router.core.exceptions import ValidationError
from appointment_router.domain.appointment import AppointmentStatus, CountryISO
from appointment_router.domain.events import AppointmentConfirmedData
from appointment_router.domain.ports import AppointmentsRepository, EventPublisher
from appointment_router.domain.strategies import CountryStrategy
from appointment_router.schemas.appointments import (
    AppointmentListResponse,
    BatchConfirmationResult,
    ConfirmAppointmentResult,
    CreateAppointmentRequest,
    CreateAppointmentResponse,
    FailAppointmentResult,
    ProcessAppointmentResult,
)
from appointment_router.use_cases.confirm_appointment import ConfirmAppointment
from appointment_router.use_cases.create_appointment import CreateAppointment
from appointment_router.use_cases.fail_appointment import FailAppointment
from appointment_router.use_cases.list_appointments import ListAppointmentsByInsured
from appointment_router.use_cases.process_appointment import (
    ProcessAppointment,
    ProcessAppointmentCL,
    ProcessAppointmentPE,
)
from appointment_router.use_cases.republish_pending import RepublishPendingAppointments


class AppointmentService:
    """Service wiring every appointment use case to its ports once."""

    def __init__(
        self,
        repository: AppointmentsRepository,
        event_publisher: EventPublisher,
        strategies: dict[CountryISO, CountryStrategy],
    ):
        """
        Initialize service.

        Args:
            repository: Appointments store
            event_publisher: Outbound messaging
            strategies: One strategy per supported country
        """
        missing = set(CountryISO) - set(strategies)
        if missing:
            raise ValueError(f"Missing country strategies: {sorted(c.value for c in missing)}")

        self.repository = repository
        self.event_publisher = event_publisher

        self.create = CreateAppointment(repository, event_publisher)
        self.list_by_insured = ListAppointmentsByInsured(repository)
        self.confirm = ConfirmAppointment(repository)
        self.fail = FailAppointment(repository)
        self.republish = RepublishPendingAppointments(repository, event_publisher)
        self.processors: dict[CountryISO, ProcessAppointment] = {
            CountryISO.PE: ProcessAppointmentPE(strategies[CountryISO.PE], event_publisher),
            CountryISO.CL: ProcessAppointmentCL(strategies[CountryISO.CL], event_publisher),
        }

    async def create_appointment(self, request: CreateAppointmentRequest) -> CreateAppointmentResponse:
        return await self.create.execute(request)

    async def list_appointments_by_insured(self, insured_id: str) -> AppointmentListResponse:
        return await self.list_by_insured.execute(insured_id)

    async def list_appointments_by_insured_with_pagination(
        self,
        insured_id: str,
        page: int = 1,
        limit: int = 10,
        status: AppointmentStatus | str | None = None,
    ) -> AppointmentListResponse:
        return await self.list_by_insured.execute_with_pagination(insured_id, page, limit, status)

    async def confirm_appointment_from_event(self, event: Any) -> ConfirmAppointmentResult:
        return await self.confirm.execute_from_event(event)

    async def confirm_appointment(self, detail: AppointmentConfirmedData) -> ConfirmAppointmentResult:
        return await self.confirm.execute(detail)

    async def confirm_appointments_batch(self, events: list[Any]) -> BatchConfirmationResult:
        return await self.confirm.execute_batch(events)

    async def process_appointment(
        self,
        country: CountryISO | str,
        message: dict[str, Any],
    ) -> ProcessAppointmentResult:
        """
        Process a country queue message.

        Raises:
            ValidationError: If the country has no pipeline
        """
        try:
            processor = self.processors[CountryISO(country)]
        except ValueError:
            raise ValidationError(
                f"Unsupported country: {country}",
                {"supported_countries": [c.value for c in CountryISO]},
            ) from None
        return await processor.execute(message)

    async def fail_appointment(self, appointment_id: str, reason: str) -> FailAppointmentResult:
        return await self.fail.execute(appointment_id, reason)

    async def republish_pending(self, older_than: datetime) -> int:
        return await self.republish.execute(older_than)
