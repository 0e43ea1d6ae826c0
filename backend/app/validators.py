from __future__ import annotations

import re
from datetime import date, datetime

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
PHONE_ALLOWED = re.compile(r"[^\d+\-() ]")
_WHITESPACE = re.compile(r"\s+")

MAX_NAME_LENGTH = 80
MAX_PHONE_LENGTH = 32


def normalize_display_name(value: str | None, *, field: str = "name") -> str:
    cleaned = _WHITESPACE.sub(" ", (value or "")).strip()
    if not cleaned:
        raise ValueError(f"{field} must not be empty")
    if len(cleaned) > MAX_NAME_LENGTH:
        raise ValueError(f"{field} must be {MAX_NAME_LENGTH} characters or less")
    return cleaned


def normalize_phone(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = PHONE_ALLOWED.sub("", value).strip()
    if not cleaned:
        return None
    if len(cleaned) > MAX_PHONE_LENGTH:
        raise ValueError(f"phone must be {MAX_PHONE_LENGTH} characters or less")
    return cleaned


def is_hhmm(value: str | None) -> bool:
    return bool(value) and bool(TIME_RE.match(value))


def parse_day(value: str) -> date:
    """Parse a strict ``YYYY-MM-DD`` string."""
    if not DATE_RE.match(value or ""):
        raise ValueError("date must be YYYY-MM-DD format")
    return datetime.strptime(value, "%Y-%m-%d").date()


def ensure_hhmm(value: str, *, field: str = "time") -> str:
    if not is_hhmm(value):
        raise ValueError(f"{field} must be HH:mm format")
    return value
