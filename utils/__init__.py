from utils.text import ordinal, parse_duration_seconds, parse_user_mention, short_list, truncate
from utils.time_utils import as_utc, format_display_time, utc_now

__all__ = [
    "as_utc",
    "format_display_time",
    "ordinal",
    "parse_duration_seconds",
    "parse_user_mention",
    "short_list",
    "truncate",
    "utc_now",
]
