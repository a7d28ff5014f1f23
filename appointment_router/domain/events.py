"""Domain events exchanged between the processing pipelines."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from appointment_router.domain.appointment import CountryISO, utc_now

CONFIRMED_EVENT_SOURCE = "rimac.appointment"
CONFIRMED_DETAIL_TYPE = "AppointmentConfirmed"

CREATED_EVENT_SOURCE = "appointments.api"
CREATED_DETAIL_TYPE = "AppointmentCreated"

PIPELINE_SOURCES: dict[CountryISO, str] = {
    CountryISO.PE: "appointment_pe",
    CountryISO.CL: "appointment_cl",
}


class AppointmentConfirmedData(BaseModel):
    """Fact that a country pipeline finished processing an appointment."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    appointment_id: str = Field(..., alias="appointmentId", min_length=1)
    insured_id: str = Field(..., alias="insuredId", min_length=1)
    schedule_id: int = Field(..., alias="scheduleId", strict=True)
    country_iso: CountryISO = Field(..., alias="countryISO")
    processed_at: datetime = Field(..., alias="processedAt")
    source: str = Field(..., min_length=1, description="Pipeline that produced the event")


class AppointmentConfirmedEvent(BaseModel):
    """Event-bus envelope for ``AppointmentConfirmedData``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: Literal["rimac.appointment"] = CONFIRMED_EVENT_SOURCE
    detail_type: Literal["AppointmentConfirmed"] = Field(
        default=CONFIRMED_DETAIL_TYPE,
        alias="detail-type",
    )
    detail: AppointmentConfirmedData

    def to_wire(self) -> dict[str, Any]:
        """Serialize with wire field names and ISO-8601 timestamps."""
        return self.model_dump(mode="json", by_alias=True)


def create_appointment_confirmed_event(
    appointment_id: str,
    insured_id: str,
    schedule_id: int,
    country_iso: CountryISO,
    source: str,
    processed_at: datetime | None = None,
) -> AppointmentConfirmedEvent:
    """
    Build an AppointmentConfirmed event.

    Args:
        appointment_id: Confirmed appointment
        insured_id: Owner of the appointment
        schedule_id: Slot identifier
        country_iso: Country whose pipeline processed it
        source: Pipeline name, e.g. ``appointment_pe``
        processed_at: Processing time, defaults to now

    Returns:
        Event ready to publish
    """
    return AppointmentConfirmedEvent(
        detail=AppointmentConfirmedData(
            appointment_id=appointment_id,
            insured_id=insured_id,
            schedule_id=schedule_id,
            country_iso=country_iso,
            processed_at=processed_at or utc_now(),
            source=source,
        )
    )


def is_appointment_confirmed_event(event: Any) -> bool:
    """Check the envelope (not the detail) of an incoming event."""
    return (
        isinstance(event, dict)
        and "detail" in event
        and event.get("source") == CONFIRMED_EVENT_SOURCE
        and event.get("detail-type") == CONFIRMED_DETAIL_TYPE
    )
