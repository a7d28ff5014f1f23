"""Country-specific appointment processing strategies."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import ClassVar, Protocol, assert_never
from zoneinfo import ZoneInfo

import structlog

from appointment_router.core.exceptions import ValidationError
from appointment_router.domain.appointment import INSURED_ID_PATTERN, Appointment, CountryISO, utc_now
from appointment_router.domain.validators import country_supports_feature

logger = structlog.get_logger(__name__)

CHILE_TZ = ZoneInfo("America/Santiago")


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection coordinates of a country database."""

    host: str
    database: str
    port: int


@dataclass(frozen=True)
class AppointmentProcessResult:
    """Outcome of a strategy run; business failures are reported, not raised."""

    success: bool
    message: str
    appointment_id: str
    processed_at: datetime = field(default_factory=utc_now)


class CountryAppointmentStore(Protocol):
    """Durable, transactional store of one country."""

    async def write(self, appointment: Appointment) -> bool:
        """
        Insert the appointment inside a transaction.

        Returns:
            True if inserted, False if the appointment was already recorded

        Raises:
            InfrastructureError: When the write fails after retries
        """
        ...

    def database_config(self) -> DatabaseConfig:
        ...


class CountryStrategy(ABC):
    """Processing rules and durable write for one country."""

    country_code: ClassVar[CountryISO]
    country_name: ClassVar[str]

    def __init__(self, store: CountryAppointmentStore):
        """Initialize strategy with the country's store."""
        self.store = store

    async def process_appointment(self, appointment: Appointment) -> AppointmentProcessResult:
        """
        Validate and durably record an appointment in the country database.

        Args:
            appointment: Appointment to process

        Returns:
            Processing result; ``success`` is False when validation rejects it

        Raises:
            InfrastructureError: When the database write fails
        """
        log = logger.bind(appointment_id=appointment.appointment_id, country=self.country_code.value)
        log.info("country_processing_started")

        if not await self.validate_appointment(appointment):
            log.warning("country_validation_failed")
            return AppointmentProcessResult(
                success=False,
                message=f"Appointment validation failed for {self.country_name}",
                appointment_id=appointment.appointment_id,
            )

        inserted = await self.store.write(appointment)

        if inserted:
            message = f"Appointment successfully processed in {self.country_name}"
        else:
            message = f"Appointment already recorded in {self.country_name}"
        log.info("country_processing_completed", inserted=inserted)

        return AppointmentProcessResult(
            success=True,
            message=message,
            appointment_id=appointment.appointment_id,
        )

    async def validate_appointment(self, appointment: Appointment) -> bool:
        """Check country rules; mismatched country or malformed IDs are rejected."""
        if appointment.country_iso != self.country_code:
            logger.warning(
                "country_mismatch",
                expected=self.country_code.value,
                actual=appointment.country_iso.value,
            )
            return False

        if not INSURED_ID_PATTERN.match(appointment.insured_id):
            return False

        if appointment.schedule_id <= 0:
            return False

        return self._validate_country_rules(appointment)

    @abstractmethod
    def _validate_country_rules(self, appointment: Appointment) -> bool:
        """Rules specific to one country."""

    def get_database_config(self) -> DatabaseConfig:
        """Connection coordinates of this country's database."""
        return self.store.database_config()


class PeruStrategy(CountryStrategy):
    """Strategy for Peru (PE)."""

    country_code = CountryISO.PE
    country_name = "Peru"

    def _validate_country_rules(self, appointment: Appointment) -> bool:
        return True


class ChileStrategy(CountryStrategy):
    """Strategy for Chile (CL)."""

    country_code = CountryISO.CL
    country_name = "Chile"

    def _validate_country_rules(self, appointment: Appointment) -> bool:
        slot = appointment.slot_datetime
        if slot is None:
            return True
        # Weekday in Santiago time; naive slots are UTC
        if slot.tzinfo is None:
            slot = slot.replace(tzinfo=UTC)
        if slot.astimezone(CHILE_TZ).weekday() >= 5:
            return country_supports_feature(self.country_code, "weekend_appointments")
        return True


class CountryStrategyFactory:
    """Selects the strategy for a country code."""

    @staticmethod
    def create(country_iso: CountryISO | str, store: CountryAppointmentStore) -> CountryStrategy:
        """
        Create the strategy for a country.

        Raises:
            ValidationError: If the country is not supported
        """
        country = CountryStrategyFactory._parse(country_iso)

        match country:
            case CountryISO.PE:
                return PeruStrategy(store)
            case CountryISO.CL:
                return ChileStrategy(store)
            case _:
                assert_never(country)

    @staticmethod
    def get_supported_countries() -> list[CountryISO]:
        return list(CountryISO)

    @staticmethod
    def is_supported(country_iso: str) -> bool:
        return country_iso in {c.value for c in CountryISO}

    @staticmethod
    def _parse(country_iso: CountryISO | str) -> CountryISO:
        try:
            return CountryISO(country_iso)
        except ValueError:
            raise ValidationError(
                f"Unsupported country: {country_iso}",
                {
                    "field": "country_iso",
                    "value": country_iso,
                    "supported_countries": [c.value for c in CountryISO],
                },
            ) from None
