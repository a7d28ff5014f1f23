"""List Appointments By Insured use case."""

from collections import Counter

import structlog

from appointment_router.core.exceptions import ValidationError
from appointment_router.domain.appointment import AppointmentStatus
from appointment_router.domain.ports import AppointmentsRepository
from appointment_router.domain.validators import validate_insured_id
from appointment_router.schemas.appointments import AppointmentListResponse, AppointmentResponse

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100


class ListAppointmentsByInsured:
    """Lists an insured's appointments, newest first."""

    def __init__(self, repository: AppointmentsRepository):
        self.repository = repository

    async def execute(self, insured_id: str) -> AppointmentListResponse:
        """
        List all appointments of an insured.

        Raises:
            ValidationError: If the insured ID is malformed
        """
        validate_insured_id(insured_id)

        appointments = await self.repository.find_by_insured_id(insured_id)
        summary = Counter(a.status.value for a in appointments)
        logger.info(
            "appointments_listed",
            insured_id=insured_id,
            total=len(appointments),
            by_status=dict(summary),
        )

        return AppointmentListResponse(
            appointments=[AppointmentResponse.from_entity(a) for a in appointments],
            total=len(appointments),
            insured_id=insured_id,
        )

    async def execute_with_pagination(
        self,
        insured_id: str,
        page: int = 1,
        limit: int = 10,
        status: AppointmentStatus | str | None = None,
    ) -> AppointmentListResponse:
        """
        List one page of an insured's appointments, optionally by status.

        ``total`` counts every appointment matching the status filter.

        Raises:
            ValidationError: If the insured ID, page, limit or status is invalid
        """
        validate_insured_id(insured_id)

        if page < 1:
            raise ValidationError("Page must be at least 1", {"field": "page", "value": page})
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"Limit must be between 1 and {MAX_PAGE_SIZE}",
                {"field": "limit", "value": limit},
            )

        status_filter = None
        if status is not None:
            try:
                status_filter = AppointmentStatus(status)
            except ValueError:
                raise ValidationError(
                    "Status must be pending, completed or failed",
                    {"field": "status", "value": status},
                ) from None

        appointments = await self.repository.find_by_insured_id(insured_id)
        if status_filter is not None:
            appointments = [a for a in appointments if a.status == status_filter]

        start = (page - 1) * limit
        page_items = appointments[start : start + limit]

        logger.info(
            "appointments_page_listed",
            insured_id=insured_id,
            page=page,
            limit=limit,
            status=status_filter.value if status_filter else None,
            total=len(appointments),
            returned=len(page_items),
        )

        return AppointmentListResponse(
            appointments=[AppointmentResponse.from_entity(a) for a in page_items],
            total=len(appointments),
            insured_id=insured_id,
            page=page,
            limit=limit,
            has_more=start + limit < len(appointments),
        )
