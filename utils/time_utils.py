from __future__ import annotations

from datetime import UTC, datetime, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


DEFAULT_DISPLAY_TIMEZONE = "Asia/Kolkata"


@lru_cache(maxsize=16)
def display_zone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name or DEFAULT_DISPLAY_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        return UTC


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_display_time(value: datetime, timezone_name: str = DEFAULT_DISPLAY_TIMEZONE) -> str:
    """Renders like ``19 October 2026, 03:45:12 PM IST``."""
    local = as_utc(value).astimezone(display_zone(timezone_name))
    return f"{local.day} {local.strftime('%B %Y, %I:%M:%S %p')} {local.tzname()}"
