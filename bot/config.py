from __future__ import annotations

from dataclasses import dataclass
import os


TRUTHY_VALUES = {"1", "true", "yes", "on"}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///invite_ledger.db"
DEFAULT_COMMAND_PREFIXES = ("?", "!", ".")
DEFAULT_SERVER_ADDRESS = "play.bitcraftnetwork.fun"
DEFAULT_SERVER_PORT = 25571
DEFAULT_BEDROCK_ADDRESS = "play.bitcraftnetwork.fun:25582"


def env_bool(name: str, *, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in TRUTHY_VALUES


def env_int(name: str, *, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    text = raw.strip()
    if not text:
        return default
    try:
        return int(text)
    except ValueError as exc:
        raise ValueError(f"Invalid integer env {name}={raw!r}") from exc


def env_float(name: str, *, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid number env {name}={raw!r}") from exc


def env_int_list(name: str) -> tuple[int, ...]:
    raw = os.getenv(name)
    if raw is None:
        return ()
    values: list[int] = []
    for part in raw.split(","):
        text = part.strip()
        if not text:
            continue
        try:
            values.append(int(text))
        except ValueError as exc:
            raise ValueError(f"Invalid integer in env {name}={raw!r}") from exc
    return tuple(values)


def env_prefixes(name: str) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return DEFAULT_COMMAND_PREFIXES
    prefixes = tuple(part.strip() for part in raw.split(",") if part.strip())
    return prefixes or DEFAULT_COMMAND_PREFIXES


@dataclass(frozen=True)
class BotConfig:
    discord_token: str
    database_url: str = DEFAULT_DATABASE_URL
    db_echo: bool = False
    enable_message_content_intent: bool = True
    command_prefixes: tuple[str, ...] = DEFAULT_COMMAND_PREFIXES
    welcome_channel_id: int = 0
    default_role_ids: tuple[int, ...] = ()
    invite_log_channel_id: int = 0
    invite_log_channel_name: str = "invite-logs"
    display_timezone: str = "Asia/Kolkata"
    invite_fetch_timeout_seconds: float = 10.0
    invite_fetch_retries: int = 3
    invite_fetch_backoff_seconds: float = 1.0
    self_test_interval_seconds: int = 900
    server_status_address: str = DEFAULT_SERVER_ADDRESS
    server_status_port: int = DEFAULT_SERVER_PORT
    bedrock_address: str = DEFAULT_BEDROCK_ADDRESS
    server_status_interval_seconds: int = 300
    server_status_timeout_seconds: float = 10.0
    log_level: str = "INFO"

    def validate(self) -> None:
        if not self.database_url:
            raise ValueError("DATABASE_URL must be set")
        if not self.command_prefixes:
            raise ValueError("COMMAND_PREFIXES must contain at least one prefix")
        if self.welcome_channel_id < 0 or self.invite_log_channel_id < 0:
            raise ValueError("WELCOME_CHANNEL_ID/INVITE_LOG_CHANNEL_ID must be >= 0")
        if any(role_id <= 0 for role_id in self.default_role_ids):
            raise ValueError("DEFAULT_ROLE_IDS must only contain positive ids")
        if not self.invite_log_channel_name.strip():
            raise ValueError("INVITE_LOG_CHANNEL_NAME must not be empty")
        if self.invite_fetch_timeout_seconds <= 0:
            raise ValueError("INVITE_FETCH_TIMEOUT_SECONDS must be > 0")
        if self.invite_fetch_retries < 1:
            raise ValueError("INVITE_FETCH_RETRIES must be >= 1")
        if self.invite_fetch_backoff_seconds < 0:
            raise ValueError("INVITE_FETCH_BACKOFF_SECONDS must be >= 0")
        if self.self_test_interval_seconds < 30:
            raise ValueError("SELF_TEST_INTERVAL_SECONDS must be >= 30")
        if not self.server_status_address.strip():
            raise ValueError("SERVER_STATUS_ADDRESS must not be empty")
        if not 1 <= self.server_status_port <= 65535:
            raise ValueError("SERVER_STATUS_PORT must be between 1 and 65535")
        if self.server_status_interval_seconds < 1:
            raise ValueError("SERVER_STATUS_INTERVAL_SECONDS must be >= 1")
        if self.server_status_timeout_seconds <= 0:
            raise ValueError("SERVER_STATUS_TIMEOUT_SECONDS must be > 0")
        if self.log_level not in VALID_LOG_LEVELS:
            valid = ", ".join(sorted(VALID_LOG_LEVELS))
            raise ValueError(f"LOG_LEVEL must be one of: {valid}")


def load_config() -> BotConfig:
    cfg = BotConfig(
        discord_token=os.getenv("DISCORD_TOKEN", ""),
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL).strip(),
        db_echo=env_bool("DB_ECHO", default=False),
        enable_message_content_intent=env_bool("ENABLE_MESSAGE_CONTENT_INTENT", default=True),
        command_prefixes=env_prefixes("COMMAND_PREFIXES"),
        welcome_channel_id=env_int("WELCOME_CHANNEL_ID", default=0),
        default_role_ids=env_int_list("DEFAULT_ROLE_IDS"),
        invite_log_channel_id=env_int("INVITE_LOG_CHANNEL_ID", default=0),
        invite_log_channel_name=os.getenv("INVITE_LOG_CHANNEL_NAME", "invite-logs").strip(),
        display_timezone=os.getenv("DISPLAY_TIMEZONE", "Asia/Kolkata").strip(),
        invite_fetch_timeout_seconds=env_float("INVITE_FETCH_TIMEOUT_SECONDS", default=10.0),
        invite_fetch_retries=env_int("INVITE_FETCH_RETRIES", default=3),
        invite_fetch_backoff_seconds=env_float("INVITE_FETCH_BACKOFF_SECONDS", default=1.0),
        self_test_interval_seconds=env_int("SELF_TEST_INTERVAL_SECONDS", default=900),
        server_status_address=os.getenv("SERVER_STATUS_ADDRESS", DEFAULT_SERVER_ADDRESS).strip(),
        server_status_port=env_int("SERVER_STATUS_PORT", default=DEFAULT_SERVER_PORT),
        bedrock_address=os.getenv("BEDROCK_ADDRESS", DEFAULT_BEDROCK_ADDRESS).strip(),
        server_status_interval_seconds=env_int("SERVER_STATUS_INTERVAL_SECONDS", default=300),
        server_status_timeout_seconds=env_float("SERVER_STATUS_TIMEOUT_SECONDS", default=10.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
    )
    cfg.validate()
    return cfg
