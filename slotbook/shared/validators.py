"""Shared validation utilities"""

import re
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Args:
        email: Email address string

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    # Basic email validation pattern
    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email


def validate_time_string(value: str) -> str:
    """
    Validate a wall-clock time in 24h "HH:MM" form.

    "24:00" is accepted as an end-of-day marker.
    """
    if value == "24:00":
        return value
    if not value or not TIME_PATTERN.match(value):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return value


def validate_time_range(start: str, end: str) -> None:
    """Raise ValueError unless start < end"""
    if time_to_minutes(start) >= time_to_minutes(end):
        raise ValueError(f"Start time {start} must be before end time {end}")


def validate_timezone(name: Optional[str]) -> str:
    """Validate an IANA timezone name, defaulting to UTC"""
    if not name:
        return "UTC"
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone '{name}'") from e
    return name


def time_to_minutes(value: str) -> int:
    """Parse "HH:MM" to minutes since midnight"""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def parse_instant(value: str) -> datetime:
    """
    Parse an ISO-8601 instant. A trailing "Z" is accepted.

    Naive values are rejected: a booking start must name its offset.
    """
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, TypeError, ValueError) as e:
        raise ValueError(f"Invalid datetime '{value}', expected ISO-8601") from e
    if parsed.tzinfo is None:
        raise ValueError(f"Datetime '{value}' must include a UTC offset")
    return parsed
