"""Conversion helpers for common type coercion."""

from datetime import datetime, timezone
from typing import Iterable, Optional, Set
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

WEEKDAY_NAMES = {
    "mon": 0, "monday": 0,
    "tue": 1, "tues": 1, "tuesday": 1,
    "wed": 2, "wednesday": 2,
    "thu": 3, "thurs": 3, "thursday": 3,
    "fri": 4, "friday": 4,
    "sat": 5, "saturday": 5,
    "sun": 6, "sunday": 6,
}


def coerce_int(value: object) -> Optional[int]:
    """Return an int for valid string/int inputs, otherwise None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
    return None


def coerce_weekday(value: object) -> Optional[int]:
    """Return a Python weekday (0=Monday) for ints, digit strings or day names."""
    as_int = coerce_int(value)
    if as_int is not None:
        return as_int if 0 <= as_int <= 6 else None
    if isinstance(value, str):
        return WEEKDAY_NAMES.get(value.strip().lower())
    return None


def coerce_weekdays(values: Iterable[object]) -> Set[int]:
    """Coerce a weekday selector; raises ValueError on the first unknown value."""
    weekdays = set()
    for value in values:
        weekday = coerce_weekday(value)
        if weekday is None:
            raise ValueError(f"Unknown weekday: {value!r}")
        weekdays.add(weekday)
    return weekdays


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_timezone(name: Optional[str], fallback: str = "UTC") -> ZoneInfo:
    """ZoneInfo for an IANA name, falling back when it is empty or unknown."""
    for candidate in (name, fallback, "UTC"):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            continue
    return ZoneInfo("UTC")
