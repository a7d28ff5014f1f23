"""Appointment aggregate and its status state machine."""

import re
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from appointment_router.core.exceptions import DomainError, ValidationError
from appointment_router.core.ulid import generate_ulid, is_valid_ulid

INSURED_ID_PATTERN = re.compile(r"^[0-9]{5}\Z")


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CountryISO(str, Enum):
    """Countries with a processing pipeline."""

    PE = "PE"
    CL = "CL"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class Appointment:
    """
    Medical appointment aggregate.

    Instances are immutable; status transitions return a new snapshot.
    Every construction path validates identity fields and never corrects them.
    """

    appointment_id: str
    insured_id: str
    schedule_id: int
    country_iso: CountryISO
    status: AppointmentStatus
    created_at: datetime
    updated_at: datetime
    center_id: int | None = None
    specialty_id: int | None = None
    medic_id: int | None = None
    slot_datetime: datetime | None = None

    def __post_init__(self) -> None:
        if not is_valid_ulid(self.appointment_id):
            raise ValidationError(
                "Invalid appointment ID format",
                {"field": "appointment_id", "value": self.appointment_id},
            )

        if not isinstance(self.insured_id, str) or not INSURED_ID_PATTERN.match(self.insured_id):
            raise ValidationError(
                "Insured ID must be exactly 5 digits",
                {"field": "insured_id", "value": self.insured_id},
            )

        if (
            isinstance(self.schedule_id, bool)
            or not isinstance(self.schedule_id, int)
            or self.schedule_id <= 0
        ):
            raise ValidationError(
                "Schedule ID must be a positive number",
                {"field": "schedule_id", "value": self.schedule_id},
            )

        try:
            country = CountryISO(self.country_iso)
        except ValueError:
            raise ValidationError(
                "Country ISO must be PE or CL",
                {"field": "country_iso", "value": self.country_iso},
            ) from None
        object.__setattr__(self, "country_iso", country)

        try:
            status = AppointmentStatus(self.status)
        except ValueError:
            raise ValidationError(
                "Status must be pending, completed or failed",
                {"field": "status", "value": self.status},
            ) from None
        object.__setattr__(self, "status", status)

    @classmethod
    def create(
        cls,
        insured_id: str,
        schedule_id: int,
        country_iso: CountryISO | str,
        center_id: int | None = None,
        specialty_id: int | None = None,
        medic_id: int | None = None,
        slot_datetime: datetime | None = None,
    ) -> "Appointment":
        """
        Create a new pending appointment with a generated ID.

        Args:
            insured_id: 5-digit insured identifier
            schedule_id: Requested slot identifier
            country_iso: Country that will process the appointment
            center_id: Optional medical center
            specialty_id: Optional specialty
            medic_id: Optional doctor
            slot_datetime: Optional slot date and time

        Returns:
            New Appointment in ``pending`` status
        """
        now = utc_now()
        return cls(
            appointment_id=generate_ulid(now),
            insured_id=insured_id,
            schedule_id=schedule_id,
            country_iso=country_iso,  # type: ignore[arg-type]
            status=AppointmentStatus.PENDING,
            created_at=now,
            updated_at=now,
            center_id=center_id,
            specialty_id=specialty_id,
            medic_id=medic_id,
            slot_datetime=slot_datetime,
        )

    @classmethod
    def from_persistence(cls, **props: Any) -> "Appointment":
        """Reconstruct an appointment from stored or transported fields."""
        return cls(**props)

    def mark_as_completed(self) -> "Appointment":
        """
        Transition to ``completed``.

        Raises:
            DomainError: If the appointment is already completed
        """
        if self.status == AppointmentStatus.COMPLETED:
            raise DomainError(
                "Appointment is already completed",
                "ALREADY_COMPLETED",
                {"appointment_id": self.appointment_id},
            )
        return self._with_status(AppointmentStatus.COMPLETED)

    def mark_as_failed(self) -> "Appointment":
        """
        Transition to ``failed``.

        Raises:
            DomainError: If the appointment is completed
        """
        if self.status == AppointmentStatus.COMPLETED:
            raise DomainError(
                "Cannot mark completed appointment as failed",
                "CANNOT_FAIL_COMPLETED",
                {"appointment_id": self.appointment_id},
            )
        return self._with_status(AppointmentStatus.FAILED)

    def _with_status(self, status: AppointmentStatus) -> "Appointment":
        # updated_at never moves backwards, even with a skewed clock
        return replace(self, status=status, updated_at=max(utc_now(), self.updated_at))

    def is_pending(self) -> bool:
        return self.status == AppointmentStatus.PENDING

    def is_completed(self) -> bool:
        return self.status == AppointmentStatus.COMPLETED

    def is_failed(self) -> bool:
        return self.status == AppointmentStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        """Serialize to camelCase JSON-ready fields."""
        return {
            "appointmentId": self.appointment_id,
            "insuredId": self.insured_id,
            "scheduleId": self.schedule_id,
            "countryISO": self.country_iso.value,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "centerId": self.center_id,
            "specialtyId": self.specialty_id,
            "medicId": self.medic_id,
            "slotDatetime": self.slot_datetime.isoformat() if self.slot_datetime else None,
        }
