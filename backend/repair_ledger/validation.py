from __future__ import annotations

from datetime import date, datetime, time
from typing import Any

from .time_utils import parse_iso_datetime

MAX_NOTE_LENGTH = 2000
MAX_IDEMPOTENCY_KEY_LENGTH = 128


class ValidationError(ValueError):
    """400-level input problem."""


def require_json_object(data: Any) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def require_fields(data: dict, *fields: str) -> None:
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required")


def coerce_datetime(value: Any, field: str = "date") -> datetime:
    """
    Accept a datetime, a date (midnight UTC) or an ISO-8601 string.

    Rejects empty values: payment dates are mandatory.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        try:
            parsed = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 date or datetime")
        if parsed is not None:
            return parsed
    raise ValidationError(f"{field} is required")


def optional_text(value: Any, field: str, max_length: int) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if not value:
        return None
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value


def parse_int_arg(value: str | None, field: str, default: int | None = None) -> int | None:
    if value is None or value == "":
        return default
    stripped = value.strip()
    if stripped.startswith("-"):
        digits = stripped[1:]
    else:
        digits = stripped
    if not digits.isdigit():
        raise ValidationError(f"{field} must be an integer")
    return int(stripped)
