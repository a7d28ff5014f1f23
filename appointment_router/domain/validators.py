"""Business-rule validation for appointment data.

These checks are independent of the HTTP request schemas and run again inside
the use cases, so every entry point (API, queues, scripts) gets the same rules.
"""

from typing import Any, Literal

from appointment_router.core.exceptions import ValidationError
from appointment_router.domain.appointment import INSURED_ID_PATTERN, CountryISO

CountryFeature = Literal["emergency_appointments", "weekend_appointments", "telemedicine"]

COUNTRY_FEATURES: dict[CountryISO, frozenset[str]] = {
    CountryISO.PE: frozenset({"emergency_appointments", "weekend_appointments", "telemedicine"}),
    # No weekend appointments in Chile
    CountryISO.CL: frozenset({"emergency_appointments", "telemedicine"}),
}


def validate_insured_id(insured_id: Any) -> None:
    """
    Validate insured ID format (exactly 5 digits).

    Raises:
        ValidationError: If missing, not a string, or not 5 digits
    """
    if not insured_id or not isinstance(insured_id, str):
        raise ValidationError(
            "Insured ID is required and must be a string",
            {"field": "insured_id", "value": insured_id},
        )

    if not INSURED_ID_PATTERN.match(insured_id):
        raise ValidationError(
            "Insured ID must be exactly 5 digits",
            {"field": "insured_id", "value": insured_id, "format": 'Expected: 5 digits (e.g., "12345")'},
        )


def validate_schedule_id(schedule_id: Any) -> None:
    """
    Validate schedule ID (positive integer).

    Raises:
        ValidationError: If not an integer or not positive
    """
    if isinstance(schedule_id, bool) or not isinstance(schedule_id, int):
        raise ValidationError(
            "Schedule ID must be an integer",
            {"field": "schedule_id", "value": schedule_id, "type": type(schedule_id).__name__},
        )

    if schedule_id <= 0:
        raise ValidationError(
            "Schedule ID must be a positive number",
            {"field": "schedule_id", "value": schedule_id},
        )


def validate_country_iso(country_iso: Any) -> CountryISO:
    """
    Validate a country code and return it as a ``CountryISO``.

    Raises:
        ValidationError: If missing or not one of the supported countries
    """
    if not country_iso or not isinstance(country_iso, str):
        raise ValidationError(
            "Country ISO is required and must be a string",
            {"field": "country_iso", "value": country_iso},
        )

    try:
        return CountryISO(country_iso)
    except ValueError:
        raise ValidationError(
            "Country ISO must be PE or CL",
            {
                "field": "country_iso",
                "value": country_iso,
                "valid_countries": [c.value for c in CountryISO],
            },
        ) from None


def validate_appointment_data(insured_id: Any, schedule_id: Any, country_iso: Any) -> None:
    """Run every creation-time check, stopping at the first failure."""
    validate_insured_id(insured_id)
    validate_schedule_id(schedule_id)
    validate_country_iso(country_iso)


def sanitize_insured_id(insured_id: Any) -> str:
    """
    Normalize an insured ID to 5 digits.

    Trims whitespace and left-pads with zeros: ``"123"`` becomes ``"00123"``.

    Raises:
        ValidationError: If empty, non-numeric, or longer than 5 digits
    """
    if not insured_id or not isinstance(insured_id, str):
        raise ValidationError("Insured ID is required", {"field": "insured_id", "value": insured_id})

    trimmed = insured_id.strip()

    if not trimmed.isascii() or not trimmed.isdigit():
        raise ValidationError(
            "Insured ID must contain only digits",
            {"field": "insured_id", "value": insured_id},
        )

    if len(trimmed) > 5:
        raise ValidationError(
            "Insured ID cannot be longer than 5 digits",
            {"field": "insured_id", "value": insured_id, "length": len(trimmed)},
        )

    return trimmed.zfill(5)


def country_supports_feature(country_iso: CountryISO | str, feature: CountryFeature) -> bool:
    """Check whether a country offers a given appointment feature."""
    try:
        country = CountryISO(country_iso)
    except ValueError:
        return False
    return feature in COUNTRY_FEATURES[country]
