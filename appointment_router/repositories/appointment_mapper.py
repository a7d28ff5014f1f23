"""Mapping between Appointment entities and table rows."""

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from appointment_router.domain.appointment import Appointment


def _aware(value: datetime | None) -> datetime | None:
    # Some drivers (SQLite) return naive datetimes; stored values are always UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class AppointmentMapper:
    """Converts between the domain entity and the ``appointments`` table."""

    @staticmethod
    def to_row(appointment: Appointment) -> dict[str, Any]:
        return {
            "insured_id": appointment.insured_id,
            "appointment_id": appointment.appointment_id,
            "schedule_id": appointment.schedule_id,
            "country_iso": appointment.country_iso.value,
            "center_id": appointment.center_id,
            "specialty_id": appointment.specialty_id,
            "medic_id": appointment.medic_id,
            "slot_datetime": appointment.slot_datetime,
            "status": appointment.status.value,
            "created_at": appointment.created_at,
            "updated_at": appointment.updated_at,
        }

    @staticmethod
    def to_entity(row: Mapping[str, Any]) -> Appointment:
        """
        Reconstruct an entity from a row mapping.

        Raises:
            ValidationError: If the stored row violates entity invariants
        """
        return Appointment.from_persistence(
            appointment_id=row["appointment_id"],
            insured_id=row["insured_id"],
            schedule_id=row["schedule_id"],
            country_iso=row["country_iso"],
            status=row["status"],
            created_at=_aware(row["created_at"]),
            updated_at=_aware(row["updated_at"]),
            center_id=row["center_id"],
            specialty_id=row["specialty_id"],
            medic_id=row["medic_id"],
            slot_datetime=_aware(row["slot_datetime"]),
        )
