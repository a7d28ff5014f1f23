"""Appointment schemas for request/response validation."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from appointment_router.domain.appointment import Appointment, AppointmentStatus


class CamelModel(BaseModel):
    """Base schema exchanged with clients and queues in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateAppointmentRequest(CamelModel):
    """Schema for scheduling a new appointment."""

    insured_id: str = Field(..., description="5-digit insured identifier", examples=["12345"])
    schedule_id: int = Field(..., strict=True, description="Requested slot identifier")
    country_iso: str = Field(..., alias="countryISO", description="PE or CL")
    center_id: int | None = None
    specialty_id: int | None = None
    medic_id: int | None = None
    slot_datetime: datetime | None = None


class CreateAppointmentResponse(CamelModel):
    """Schema for the creation response, also returned on idempotent replays."""

    appointment_id: str
    insured_id: str
    schedule_id: int
    country_iso: str = Field(..., alias="countryISO")
    status: AppointmentStatus
    created_at: datetime
    message: str


class AppointmentResponse(CamelModel):
    """Schema for appointment response."""

    appointment_id: str
    insured_id: str
    schedule_id: int
    country_iso: str = Field(..., alias="countryISO")
    status: AppointmentStatus
    created_at: datetime
    updated_at: datetime
    center_id: int | None = None
    specialty_id: int | None = None
    medic_id: int | None = None
    slot_datetime: datetime | None = None

    @classmethod
    def from_entity(cls, appointment: Appointment) -> "AppointmentResponse":
        return cls(
            appointment_id=appointment.appointment_id,
            insured_id=appointment.insured_id,
            schedule_id=appointment.schedule_id,
            country_iso=appointment.country_iso.value,
            status=appointment.status,
            created_at=appointment.created_at,
            updated_at=appointment.updated_at,
            center_id=appointment.center_id,
            specialty_id=appointment.specialty_id,
            medic_id=appointment.medic_id,
            slot_datetime=appointment.slot_datetime,
        )


class AppointmentListResponse(CamelModel):
    """Schema for an insured's appointments; pagination fields set when paginated."""

    appointments: list[AppointmentResponse]
    total: int
    insured_id: str
    page: int | None = None
    limit: int | None = None
    has_more: bool | None = None


class AppointmentMessage(CamelModel):
    """Appointment as carried in creation events and country queue messages."""

    appointment_id: str = Field(..., min_length=1)
    insured_id: str = Field(..., min_length=1)
    schedule_id: int = Field(..., strict=True)
    country_iso: str = Field(..., alias="countryISO")
    status: AppointmentStatus = AppointmentStatus.PENDING
    created_at: datetime
    updated_at: datetime
    center_id: int | None = None
    specialty_id: int | None = None
    medic_id: int | None = None
    slot_datetime: datetime | None = None

    def to_entity(self) -> Appointment:
        """
        Reconstruct the entity.

        Raises:
            ValidationError: If identity fields violate entity invariants
        """
        return Appointment.from_persistence(**self.model_dump())


class ProcessAppointmentResult(CamelModel):
    """Outcome of processing one country queue message."""

    appointment_id: str | None
    success: bool
    message: str
    processed_at: datetime
    db_written: bool = False
    event_published: bool = False
    retryable: bool = False
    rejected: bool = False


class ConfirmAppointmentResult(CamelModel):
    """Outcome of a confirmation; ``previous_status`` is ``completed`` on replays."""

    appointment_id: str
    previous_status: AppointmentStatus
    new_status: AppointmentStatus = AppointmentStatus.COMPLETED
    updated_at: datetime
    processed_by: str


class BatchConfirmationFailure(CamelModel):
    """A confirmation event from a batch that could not be applied."""

    index: int
    appointment_id: str | None = None
    code: str
    message: str


class BatchConfirmationResult(CamelModel):
    """Outcome of a batch of confirmation events."""

    succeeded: list[ConfirmAppointmentResult] = Field(default_factory=list)
    failed: list[BatchConfirmationFailure] = Field(default_factory=list)


class FailAppointmentResult(CamelModel):
    """Outcome of marking an appointment as failed."""

    appointment_id: str
    previous_status: AppointmentStatus
    new_status: AppointmentStatus = AppointmentStatus.FAILED
    updated_at: datetime
    reason: str
