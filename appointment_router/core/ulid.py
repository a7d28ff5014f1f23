"""ULID helpers for time-ordered appointment identifiers."""

import re
from datetime import datetime

from ulid import ULID

ULID_PATTERN = re.compile(r"^[0-7][0123456789ABCDEFGHJKMNPQRSTVWXYZ]{25}\Z")


def generate_ulid(timestamp: datetime | None = None) -> str:
    """
    Generate a new ULID string.

    Args:
        timestamp: Optional datetime to encode instead of the current time

    Returns:
        26-character Crockford base32 ULID
    """
    if timestamp is None:
        return str(ULID())
    return str(ULID.from_datetime(timestamp))


def is_valid_ulid(value: object) -> bool:
    """Check whether a value is a canonical (uppercase) ULID string."""
    return isinstance(value, str) and bool(ULID_PATTERN.match(value))


def extract_timestamp(value: str) -> datetime:
    """
    Extract the creation time encoded in a ULID.

    Raises:
        ValueError: If the value is not a valid ULID
    """
    if not is_valid_ulid(value):
        raise ValueError("Invalid ULID format")
    return ULID.from_str(value).datetime
