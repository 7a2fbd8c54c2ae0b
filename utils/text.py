from __future__ import annotations

import re


_DURATION_PATTERN = re.compile(r"^(\d+)([smhd])$")
_DURATION_SECONDS = {"s": 1, "m": 60, "h": 60 * 60, "d": 60 * 60 * 24}
_MENTION_PATTERN = re.compile(r"^<@!?(\d+)>$")
EMBED_DESCRIPTION_LIMIT = 4096
EMBED_FIELD_LIMIT = 1024


def truncate(text: str, limit: int) -> str:
    value = text or ""
    if len(value) <= limit:
        return value
    return f"{value[: max(0, limit - 3)]}..."


def short_list(lines: list[str], *, limit: int = 50) -> str:
    if not lines:
        return "-"
    if len(lines) <= limit:
        return "\n".join(lines)
    return "\n".join(lines[:limit]) + f"\n... +{len(lines) - limit} more"


def ordinal(value: int) -> str:
    number = int(value)
    if 10 <= number % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(number % 10, "th")
    return f"{number}{suffix}"


def parse_duration_seconds(raw: str) -> int | None:
    """``10m`` -> 600. Returns None for anything that is not ``<positive int><s|m|h|d>``."""
    match = _DURATION_PATTERN.match((raw or "").strip().lower())
    if match is None:
        return None
    seconds = int(match.group(1)) * _DURATION_SECONDS[match.group(2)]
    return seconds if seconds > 0 else None


def parse_user_mention(raw: str) -> int | None:
    text = (raw or "").strip()
    match = _MENTION_PATTERN.match(text)
    if match is not None:
        return int(match.group(1))
    if text.isdigit():
        return int(text)
    return None
