"""Transactional writer for country databases."""

import asyncio

import structlog
from sqlalchemy import insert
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from appointment_router.core.exceptions import InfrastructureError
from appointment_router.domain.appointment import Appointment, CountryISO, utc_now
from appointment_router.domain.strategies import DatabaseConfig
from appointment_router.models.country_appointments import country_appointments

logger = structlog.get_logger(__name__)

DEFAULT_PORTS = {"postgresql": 5432, "mysql": 3306}


class CountryAppointmentWriter:
    """
    Writes confirmed appointments into one country's database.

    Each write runs in its own transaction: committed only after the insert
    succeeds, rolled back on any failure. Transient connection errors are
    retried with exponential backoff.
    """

    def __init__(
        self,
        country: CountryISO,
        engine: AsyncEngine,
        max_attempts: int = 3,
        base_delay: float = 1.0,
    ):
        """
        Initialize writer.

        Args:
            country: Country this database belongs to
            engine: Async engine of the country database
            max_attempts: Total attempts for transient failures
            base_delay: Seconds before the first retry, doubled per attempt
        """
        self.country = country
        self.engine = engine
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    async def write(self, appointment: Appointment) -> bool:
        """
        Insert an appointment as ``confirmed``.

        Returns:
            True if inserted, False if it was already recorded

        Raises:
            InfrastructureError: If the write fails or retries are exhausted
        """
        now = utc_now()
        stmt = insert(country_appointments).values(
            appointment_id=appointment.appointment_id,
            insured_id=appointment.insured_id,
            schedule_id=appointment.schedule_id,
            center_id=appointment.center_id,
            specialty_id=appointment.specialty_id,
            medic_id=appointment.medic_id,
            slot_datetime=appointment.slot_datetime,
            country_iso=appointment.country_iso.value,
            status="confirmed",
            created_at=appointment.created_at,
            updated_at=now,
        )
        log = logger.bind(appointment_id=appointment.appointment_id, country=self.country.value)

        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self.engine.begin() as conn:
                    await conn.execute(stmt)
                log.info("country_record_written", attempt=attempt)
                return True
            except IntegrityError:
                log.info("country_record_already_exists")
                return False
            except (OperationalError, DBAPIError) as e:
                if not self._is_retryable(e) or attempt == self.max_attempts:
                    log.error("country_write_failed", attempt=attempt, error=str(e))
                    raise InfrastructureError(
                        f"{self.country.value} appointment write",
                        str(e),
                        {"appointment_id": appointment.appointment_id, "attempts": attempt},
                    ) from e

                delay = self.base_delay * 2 ** (attempt - 1)
                log.warning(
                    "country_write_retrying",
                    attempt=attempt,
                    retries_left=self.max_attempts - attempt,
                    delay=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
            except SQLAlchemyError as e:
                log.error("country_write_failed", attempt=attempt, error=str(e))
                raise InfrastructureError(
                    f"{self.country.value} appointment write",
                    str(e),
                    {"appointment_id": appointment.appointment_id},
                ) from e

        # Unreachable: the loop either returns or raises
        raise InfrastructureError(f"{self.country.value} appointment write", "no attempts made")

    def database_config(self) -> DatabaseConfig:
        """Connection coordinates derived from the engine URL."""
        url = self.engine.url
        backend = url.get_backend_name()
        return DatabaseConfig(
            host=url.host or "localhost",
            database=url.database or "",
            port=url.port or DEFAULT_PORTS.get(backend, 0),
        )

    @staticmethod
    def _is_retryable(error: DBAPIError) -> bool:
        return isinstance(error, OperationalError) or error.connection_invalidated
