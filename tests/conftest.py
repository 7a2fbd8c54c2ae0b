from __future__ import annotations

from typing import Iterable

import pytest

from bot.config import BotConfig
from bot.main import BotApplication
from db.repository import InMemoryRepository
from services.ledger_service import InviteLedger
from services.snapshot_service import InviteSnapshot


class FakeInviteSource:
    """Stands in for the gateway invite list; each guild returns whatever was set last."""

    def __init__(self) -> None:
        self.invites: dict[int, list[InviteSnapshot]] = {}
        self.calls: list[int] = []
        self.failures: list[Exception] = []

    def set(self, guild_id: int, invites: Iterable[InviteSnapshot]) -> None:
        self.invites[int(guild_id)] = list(invites)

    async def __call__(self, guild_id: int) -> list[InviteSnapshot]:
        self.calls.append(int(guild_id))
        if self.failures:
            raise self.failures.pop(0)
        return list(self.invites.get(int(guild_id), []))


class FakeChannel:
    def __init__(self, channel_id: int = 555, *, fail: Exception | None = None) -> None:
        self.id = channel_id
        self.fail = fail
        self.sent: list[dict] = []

    async def send(self, content=None, **kwargs):
        if self.fail is not None:
            raise self.fail
        self.sent.append({"content": content, **kwargs})
        return self.sent[-1]


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def config() -> BotConfig:
    return BotConfig(
        discord_token="token",
        database_url="sqlite+aiosqlite:///:memory:",
        invite_fetch_timeout_seconds=1.0,
        invite_fetch_retries=3,
        invite_fetch_backoff_seconds=0.5,
        self_test_interval_seconds=900,
        log_level="DEBUG",
    )


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def ledger(repo: InMemoryRepository) -> InviteLedger:
    return InviteLedger(repo)


@pytest.fixture
def invite_source() -> FakeInviteSource:
    return FakeInviteSource()


@pytest.fixture
def log_channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def app(config: BotConfig, repo: InMemoryRepository, invite_source: FakeInviteSource, log_channel: FakeChannel) -> BotApplication:
    async def resolve_channel(_guild_id: int):
        return log_channel

    return BotApplication(
        config=config,
        repo=repo,
        invite_fetcher=invite_source,
        channel_resolver=resolve_channel,
        sleep=no_sleep,
    )
