"""Shared validation utilities"""

import re
from datetime import datetime, timezone

# Logical ids are UUIDs issued by the server, but seeded users carry short ids
_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")


def validate_identifier(value: str) -> str:
    """
    Validate a logical identifier (slot, request or user id).

    Raises:
        ValueError: If the identifier is empty or contains unexpected characters
    """
    if not isinstance(value, str):
        raise ValueError("Identifier must be a string")
    value = value.strip()
    if not _IDENTIFIER_RE.match(value):
        raise ValueError("Invalid identifier format")
    return value


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (the store drops tzinfo) and convert aware ones"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
