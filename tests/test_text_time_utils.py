from __future__ import annotations

from datetime import UTC, datetime

import pytest

from utils.text import ordinal, parse_duration_seconds, parse_user_mention, short_list, truncate
from utils.time_utils import as_utc, display_zone, format_display_time


@pytest.mark.parametrize(
    ("value", "expected"),
    [(1, "1st"), (2, "2nd"), (3, "3rd"), (4, "4th"), (11, "11th"), (12, "12th"), (13, "13th"), (21, "21st"), (112, "112th")],
)
def test_ordinal(value, expected):
    assert ordinal(value) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("30s", 30), ("10m", 600), ("2H", 7200), ("1d", 86400), ("0m", None), ("10", None), ("m10", None), ("", None)],
)
def test_parse_duration_seconds(raw, expected):
    assert parse_duration_seconds(raw) == expected


def test_parse_user_mention():
    assert parse_user_mention("<@123>") == 123
    assert parse_user_mention("<@!456>") == 456
    assert parse_user_mention("789") == 789
    assert parse_user_mention("someone") is None


def test_truncate_and_short_list():
    assert truncate("abcdef", 5) == "ab..."
    assert truncate("abc", 5) == "abc"
    assert short_list([]) == "-"
    assert short_list(["a", "b", "c"], limit=2) == "a\nb\n... +1 more"


def test_display_time_uses_configured_zone():
    moment = datetime(2026, 10, 19, 10, 15, 12, tzinfo=UTC)

    assert format_display_time(moment) == "19 October 2026, 03:45:12 PM IST"
    assert format_display_time(moment, "UTC") == "19 October 2026, 10:15:12 AM UTC"


def test_unknown_zone_falls_back_to_utc():
    assert display_zone("Not/AZone") is UTC


def test_naive_datetimes_are_treated_as_utc():
    assert as_utc(datetime(2026, 1, 1)).tzinfo is UTC
