"""SQL implementation of the appointments repository."""

from datetime import datetime

import structlog
from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from appointment_router.core.exceptions import ConflictError, InfrastructureError
from appointment_router.domain.appointment import Appointment, AppointmentStatus
from appointment_router.models.appointments import appointments
from appointment_router.repositories.appointment_mapper import AppointmentMapper

logger = structlog.get_logger(__name__)


class SqlAppointmentsRepository:
    """
    Appointments repository backed by the ``appointments`` table.

    Conditional writes rely on the table's constraints (creation) and on a
    status predicate in the UPDATE (transitions), never on locks.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize repository with a session factory."""
        self.session_factory = session_factory
        self.mapper = AppointmentMapper()

    async def save(self, appointment: Appointment) -> None:
        """
        Insert an appointment; fails closed if it already exists.

        Raises:
            ConflictError: If the appointment ID or (insured, schedule) pair exists
            InfrastructureError: On database failure
        """
        stmt = insert(appointments).values(**self.mapper.to_row(appointment))

        async with self.session_factory() as session:
            try:
                await session.execute(stmt)
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.warning(
                    "appointment_already_exists",
                    appointment_id=appointment.appointment_id,
                    insured_id=appointment.insured_id,
                    schedule_id=appointment.schedule_id,
                )
                raise ConflictError(
                    "appointment",
                    "Appointment already exists",
                    {
                        "appointment_id": appointment.appointment_id,
                        "insured_id": appointment.insured_id,
                        "schedule_id": appointment.schedule_id,
                    },
                ) from e
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(
                    "appointment_save_failed",
                    appointment_id=appointment.appointment_id,
                    error=str(e),
                )
                raise InfrastructureError("save appointment", str(e)) from e

        logger.info(
            "appointment_saved",
            appointment_id=appointment.appointment_id,
            insured_id=appointment.insured_id,
        )

    async def find_by_id(self, appointment_id: str) -> Appointment | None:
        """Find an appointment by its ID."""
        stmt = select(appointments).where(appointments.c.appointment_id == appointment_id)
        return await self._fetch_one(stmt, "find appointment by ID")

    async def find_by_insured_id(self, insured_id: str) -> list[Appointment]:
        """Find all appointments of an insured, newest first (ULIDs sort by time)."""
        stmt = (
            select(appointments)
            .where(appointments.c.insured_id == insured_id)
            .order_by(appointments.c.appointment_id.desc())
        )
        return await self._fetch_all(stmt, "find appointments by insured ID")

    async def find_by_insured_and_schedule(
        self,
        insured_id: str,
        schedule_id: int,
    ) -> Appointment | None:
        """Find an appointment by its idempotency key."""
        stmt = select(appointments).where(
            and_(
                appointments.c.insured_id == insured_id,
                appointments.c.schedule_id == schedule_id,
            )
        )
        return await self._fetch_one(stmt, "find appointment by insured and schedule")

    async def update_status(
        self,
        appointment: Appointment,
        expected_status: AppointmentStatus,
    ) -> Appointment | None:
        """
        Compare-and-swap the status of an existing appointment.

        Args:
            appointment: Snapshot carrying the new status and updated_at
            expected_status: Status the stored record must still have

        Returns:
            The stored appointment after the update, or None if the record
            does not exist or its status changed in the meantime

        Raises:
            InfrastructureError: On database failure
        """
        stmt = (
            update(appointments)
            .where(
                and_(
                    appointments.c.insured_id == appointment.insured_id,
                    appointments.c.appointment_id == appointment.appointment_id,
                    appointments.c.status == expected_status.value,
                )
            )
            .values(
                status=appointment.status.value,
                updated_at=appointment.updated_at,
            )
            .returning(appointments)
        )

        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt)
                row = result.fetchone()
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(
                    "appointment_status_update_failed",
                    appointment_id=appointment.appointment_id,
                    error=str(e),
                )
                raise InfrastructureError("update appointment status", str(e)) from e

        if row is None:
            logger.warning(
                "appointment_status_condition_failed",
                appointment_id=appointment.appointment_id,
                expected_status=expected_status.value,
            )
            return None

        logger.info(
            "appointment_status_updated",
            appointment_id=appointment.appointment_id,
            status=appointment.status.value,
        )
        return self.mapper.to_entity(row._mapping)

    async def find_pending_created_before(
        self,
        cutoff: datetime,
        limit: int = 100,
    ) -> list[Appointment]:
        """Find pending appointments created before a cutoff, oldest first."""
        stmt = (
            select(appointments)
            .where(
                and_(
                    appointments.c.status == AppointmentStatus.PENDING.value,
                    appointments.c.created_at < cutoff,
                )
            )
            .order_by(appointments.c.created_at.asc())
            .limit(limit)
        )
        return await self._fetch_all(stmt, "find stale pending appointments")

    async def _fetch_one(self, stmt, operation: str) -> Appointment | None:
        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt)
                row = result.first()
            except SQLAlchemyError as e:
                logger.error("appointment_query_failed", operation=operation, error=str(e))
                raise InfrastructureError(operation, str(e)) from e

        return self.mapper.to_entity(row._mapping) if row else None

    async def _fetch_all(self, stmt, operation: str) -> list[Appointment]:
        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt)
                rows = result.fetchall()
            except SQLAlchemyError as e:
                logger.error("appointment_query_failed", operation=operation, error=str(e))
                raise InfrastructureError(operation, str(e)) from e

        return [self.mapper.to_entity(row._mapping) for row in rows]
