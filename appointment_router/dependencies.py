"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Request

from appointment_router.container import Container
from appointment_router.services.appointment_service import AppointmentService


def get_container(request: Request) -> Container:
    """Container built in the application lifespan."""
    return request.app.state.container


def get_appointment_service(container: Annotated[Container, Depends(get_container)]) -> AppointmentService:
    """Appointment service shared by every request."""
    return container.service


# Type aliases for dependency injection
AppContainer = Annotated[Container, Depends(get_container)]
AppointmentServiceDep = Annotated[AppointmentService, Depends(get_appointment_service)]
