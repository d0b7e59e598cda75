"""Field-level validation rules shared by services."""
from __future__ import annotations

import re
from typing import Optional

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
COURSE_NUMBER_RE = re.compile(r"^\d+[A-Z]?$")

MAX_NAME_LENGTH = 100
MAX_COURSE_NAME_LENGTH = 200
MAX_RESPONSIBILITIES_LENGTH = 5000
MIN_HOURS_PER_WEEK = 1
MAX_HOURS_PER_WEEK = 40
MIN_OFFERING_YEAR = 2000
MAX_OFFERING_YEAR = 2100


def is_valid_email(value: Optional[str]) -> bool:
    return bool(value) and bool(EMAIL_RE.match(value.strip()))


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def normalize_name(value: Optional[str], *, code: str, max_length: int = MAX_NAME_LENGTH) -> str:
    """Trim and bound a required name, raising ValueError(code) when invalid."""
    cleaned = (value or "").strip()
    if not cleaned or len(cleaned) > max_length:
        raise ValueError(code)
    return cleaned


def normalize_optional_text(value: Optional[str], *, code: str, max_length: int) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    if len(cleaned) > max_length:
        raise ValueError(code)
    return cleaned or None


def normalize_hours(value: Optional[int], *, code: str = "invalid_hours") -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(code)
    try:
        hours = int(value)
    except (TypeError, ValueError):
        raise ValueError(code)
    if hours < MIN_HOURS_PER_WEEK or hours > MAX_HOURS_PER_WEEK:
        raise ValueError(code)
    return hours
