"""Appointment endpoints."""

from fastapi import APIRouter, Query, status

from appointment_router.dependencies import AppointmentServiceDep
from appointment_router.domain.appointment import AppointmentStatus
from appointment_router.schemas.appointments import (
    AppointmentListResponse,
    CreateAppointmentRequest,
    CreateAppointmentResponse,
)

router = APIRouter()


@router.post(
    "",
    response_model=CreateAppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Schedule an appointment",
)
async def create_appointment(
    data: CreateAppointmentRequest,
    service: AppointmentServiceDep,
) -> CreateAppointmentResponse:
    """
    Schedule an appointment and route it to its country for processing.

    Repeating a request for the same insured and schedule returns the
    appointment created first.

    Args:
        data: Appointment creation data
        service: Appointment service

    Returns:
        Scheduled appointment, still pending
    """
    return await service.create_appointment(data)


@router.get(
    "/{insured_id}",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List an insured's appointments",
)
async def list_appointments(
    insured_id: str,
    service: AppointmentServiceDep,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    page: int | None = Query(None, ge=1),
    limit: int | None = Query(None, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List an insured's appointments, newest first.

    Without ``status``, ``page`` or ``limit`` every appointment is returned;
    otherwise the result is one page (defaults: page 1, 10 per page).

    Args:
        insured_id: 5-digit insured identifier
        service: Appointment service
        status_filter: Filter by status
        page: Page number
        limit: Page size

    Returns:
        Appointments of the insured
    """
    if status_filter is None and page is None and limit is None:
        return await service.list_appointments_by_insured(insured_id)

    return await service.list_appointments_by_insured_with_pagination(
        insured_id,
        page=page or 1,
        limit=limit or 10,
        status=status_filter,
    )
