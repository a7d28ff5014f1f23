"""Conversion between domain events and stream entries."""

import json
from dataclasses import dataclass, field
from typing import Any

from appointment_router.core.exceptions import ValidationError
from appointment_router.domain.appointment import CountryISO, utc_now


@dataclass(frozen=True)
class StreamMessage:
    """
    A topic message as stored in a stream entry.

    Stream entries are flat string maps, so ``body`` and ``attributes`` are
    stored as JSON under the ``message`` and ``attributes`` fields.
    """

    subject: str
    body: dict[str, Any]
    attributes: dict[str, str] = field(default_factory=dict)

    def to_fields(self) -> dict[str, str]:
        return {
            "subject": self.subject,
            "message": json.dumps(self.body),
            "attributes": json.dumps(self.attributes),
        }

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> "StreamMessage":
        """
        Parse a stream entry.

        Raises:
            ValidationError: If the entry is not a topic message
        """
        try:
            body = json.loads(fields["message"])
            attributes = json.loads(fields.get("attributes") or "{}")
        except (KeyError, TypeError, json.JSONDecodeError) as e:
            raise ValidationError(
                "Malformed stream message",
                {"fields": sorted(fields), "error": str(e)},
            ) from e

        if not isinstance(body, dict) or not isinstance(attributes, dict):
            raise ValidationError("Stream message body and attributes must be objects")

        return cls(subject=fields.get("subject", ""), body=body, attributes=attributes)

    @property
    def data(self) -> dict[str, Any]:
        """Event payload carried in the body."""
        data = self.body.get("data")
        if not isinstance(data, dict):
            raise ValidationError("Stream message has no data payload", {"subject": self.subject})
        return data


class MessageMapper:
    """Builds topic messages with the attributes the fan-out filters on."""

    def to_creation_message(self, event_data: dict[str, Any], country_iso: str) -> StreamMessage:
        """
        Build the message for an appointment creation event.

        Args:
            event_data: ``{source, detailType, detail}``
            country_iso: Country used for routing
        """
        detail_type = event_data["detailType"]
        source = event_data["source"]
        return StreamMessage(
            subject=f"New Appointment - {country_iso}",
            body={
                "eventType": detail_type,
                "timestamp": utc_now().isoformat(),
                "source": source,
                "detailType": detail_type,
                "data": event_data["detail"],
            },
            attributes={
                "countryISO": country_iso,
                "eventType": detail_type,
                "source": source,
            },
        )

    @staticmethod
    def validate_country_filter_attributes(attributes: dict[str, Any]) -> bool:
        """True when the attributes carry a supported ``countryISO``."""
        country = attributes.get("countryISO")
        return isinstance(country, str) and country in {c.value for c in CountryISO}
