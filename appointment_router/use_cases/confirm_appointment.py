"""Confirm Appointment use case."""

from typing import Any

import pydantic
import structlog

from appointment_router.core.exceptions import AppException, ConflictError, NotFoundError, ValidationError
from appointment_router.domain.appointment import Appointment, AppointmentStatus
from appointment_router.domain.events import (
    PIPELINE_SOURCES,
    AppointmentConfirmedData,
    AppointmentConfirmedEvent,
    is_appointment_confirmed_event,
)
from appointment_router.domain.ports import AppointmentsRepository
from appointment_router.schemas.appointments import (
    BatchConfirmationFailure,
    BatchConfirmationResult,
    ConfirmAppointmentResult,
)

logger = structlog.get_logger(__name__)


class ConfirmAppointment:
    """
    Marks appointments as completed when a country pipeline confirms them.

    Confirmation is idempotent: replaying an event for a completed appointment
    succeeds without writing and reports ``previous_status="completed"``.
    """

    MAX_TRANSITION_ATTEMPTS = 3

    def __init__(self, repository: AppointmentsRepository):
        self.repository = repository

    async def execute_from_event(self, event: Any) -> ConfirmAppointmentResult:
        """
        Confirm from a raw event-bus event.

        Raises:
            ValidationError: If the envelope or detail is malformed
        """
        if not is_appointment_confirmed_event(event):
            raise ValidationError(
                "Not an AppointmentConfirmed event",
                {
                    "source": event.get("source") if isinstance(event, dict) else None,
                    "detail_type": event.get("detail-type") if isinstance(event, dict) else None,
                },
            )

        try:
            parsed = AppointmentConfirmedEvent.model_validate(event)
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Invalid AppointmentConfirmed event detail",
                {"errors": e.errors(include_url=False, include_context=False)},
            ) from e

        return await self.execute(parsed.detail)

    async def execute(self, detail: AppointmentConfirmedData) -> ConfirmAppointmentResult:
        """
        Confirm an appointment.

        Raises:
            NotFoundError: If the appointment does not exist
            ValidationError: If the event does not describe the stored appointment
            ConflictError: If the appointment keeps changing status concurrently
        """
        log = logger.bind(appointment_id=detail.appointment_id, source=detail.source)

        appointment = await self.repository.find_by_id(detail.appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", detail.appointment_id)

        self._check_subject(appointment, detail)

        if appointment.is_completed():
            log.info("appointment_confirmation_replayed")
            return self._replay_result(appointment, detail)

        for _ in range(self.MAX_TRANSITION_ATTEMPTS):
            previous_status = appointment.status
            stored = await self.repository.update_status(
                appointment.mark_as_completed(), expected_status=previous_status
            )
            if stored is not None:
                break

            current = await self.repository.find_by_id(detail.appointment_id)
            if current is None:
                raise NotFoundError("Appointment", detail.appointment_id)
            if current.is_completed():
                log.info("appointment_confirmation_raced", status=current.status.value)
                return self._replay_result(current, detail)

            # A concurrent failure is overridden by the late confirmation
            log.info(
                "appointment_confirmation_retried",
                expected_status=previous_status.value,
                current_status=current.status.value,
            )
            appointment = current
        else:
            raise ConflictError(
                "appointment",
                "Appointment status changed during confirmation",
                {
                    "appointment_id": detail.appointment_id,
                    "expected_status": previous_status.value,
                    "current_status": appointment.status.value,
                },
            )

        log.info(
            "appointment_confirmed",
            previous_status=previous_status.value,
            insured_id=stored.insured_id,
        )
        return ConfirmAppointmentResult(
            appointment_id=stored.appointment_id,
            previous_status=previous_status,
            new_status=stored.status,
            updated_at=stored.updated_at,
            processed_by=detail.source,
        )

    async def execute_batch(self, events: list[Any]) -> BatchConfirmationResult:
        """Confirm each event independently; failures are collected, not raised."""
        batch = BatchConfirmationResult()

        for index, event in enumerate(events):
            try:
                batch.succeeded.append(await self.execute_from_event(event))
            except AppException as e:
                appointment_id = None
                if isinstance(event, dict) and isinstance(event.get("detail"), dict):
                    candidate = event["detail"].get("appointmentId")
                    appointment_id = candidate if isinstance(candidate, str) else None
                logger.warning(
                    "appointment_confirmation_failed",
                    index=index,
                    appointment_id=appointment_id,
                    code=e.code,
                    error=e.message,
                )
                batch.failed.append(
                    BatchConfirmationFailure(
                        index=index,
                        appointment_id=appointment_id,
                        code=e.code,
                        message=e.message,
                    )
                )

        logger.info(
            "appointment_confirmation_batch_processed",
            succeeded=len(batch.succeeded),
            failed=len(batch.failed),
        )
        return batch

    @staticmethod
    def _check_subject(appointment: Appointment, detail: AppointmentConfirmedData) -> None:
        if appointment.insured_id != detail.insured_id:
            raise ValidationError(
                "Event insured ID does not match the appointment",
                {"appointment_id": appointment.appointment_id, "field": "insuredId"},
            )

        if appointment.country_iso != detail.country_iso:
            raise ValidationError(
                "Event country does not match the appointment",
                {
                    "appointment_id": appointment.appointment_id,
                    "field": "countryISO",
                    "value": detail.country_iso.value,
                    "expected": appointment.country_iso.value,
                },
            )

        expected_source = PIPELINE_SOURCES[appointment.country_iso]
        if detail.source != expected_source:
            raise ValidationError(
                "Event source does not match the appointment country",
                {
                    "appointment_id": appointment.appointment_id,
                    "field": "source",
                    "value": detail.source,
                    "expected": expected_source,
                },
            )

    @staticmethod
    def _replay_result(appointment: Appointment, detail: AppointmentConfirmedData) -> ConfirmAppointmentResult:
        return ConfirmAppointmentResult(
            appointment_id=appointment.appointment_id,
            previous_status=AppointmentStatus.COMPLETED,
            new_status=AppointmentStatus.COMPLETED,
            updated_at=appointment.updated_at,
            processed_by=detail.source,
        )
