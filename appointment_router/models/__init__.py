"""Database models."""

from appointment_router.models.appointments import appointments
from appointment_router.models.country_appointments import country_appointments

__all__ = [
    "appointments",
    "country_appointments",
]
