from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Iterable

from bot.config import BotConfig
from db.models import REQUIRED_BOOT_TABLES
from db.repository import GuildSettingsRecord, LedgerRepository
from gateway.task_registry import SingletonTaskRegistry
from services.errors import FetchFailure
from services.invite_query_service import InviteQueryService
from services.join_service import JoinOutcome, MemberJoinPipeline, ProfileLookup, VanityLookup
from services.ledger_service import InviteLedger
from services.music_service import MusicPlayer, YtDlpResolver
from services.notification_service import ChannelResolver, JoinedMember, JoinNotifier
from services.reminder_service import ReminderScheduler
from services.server_status_service import ServerStatusClient, ServerStatusRelay
from services.snapshot_service import InviteCreated, InviteDeleted, InviteFetcher, InviteSnapshot, InviteSnapshotStore
from services.startup_service import (
    EXPECTED_SLASH_COMMANDS,
    BootSmokeStats,
    SingletonGate,
    command_registry_health,
    run_boot_smoke_checks,
)


log = logging.getLogger("bitcraft.runtime")


@dataclass(slots=True)
class SelfTestState:
    last_ok_at: datetime | None = None
    last_error: str | None = None


async def _no_channel(guild_id: int) -> Any | None:
    return None


def status_task_name(guild_id: int) -> str:
    return f"server_status:{int(guild_id)}"


class BotApplication:
    """Invite tracking state of one bot process, independent of the gateway client.

    Owns the per-guild snapshot cache, the ledger, the join pipeline, the
    reminder tasks, the server status relay and the music queues. Everything is
    created here and torn down in ``close``.
    """

    def __init__(
        self,
        *,
        config: BotConfig,
        repo: LedgerRepository,
        invite_fetcher: InviteFetcher,
        channel_resolver: ChannelResolver | None = None,
        vanity_lookup: VanityLookup | None = None,
        profile_lookup: ProfileLookup | None = None,
        singleton_gate: SingletonGate | None = None,
        status_client: ServerStatusClient | None = None,
        music_player: MusicPlayer | None = None,
        music_resolver: YtDlpResolver | None = None,
        sleep=asyncio.sleep,
    ) -> None:
        self.config = config
        self.repo = repo
        self.singleton_gate = singleton_gate or SingletonGate()

        self.task_registry = SingletonTaskRegistry()
        self.snapshots = InviteSnapshotStore(
            invite_fetcher,
            timeout_seconds=config.invite_fetch_timeout_seconds,
            retries=config.invite_fetch_retries,
            backoff_seconds=config.invite_fetch_backoff_seconds,
            sleep=sleep,
        )
        self.ledger = InviteLedger(repo)
        self.notifier = JoinNotifier(channel_resolver or _no_channel, timezone_name=config.display_timezone)
        self.join_pipeline = MemberJoinPipeline(
            snapshots=self.snapshots,
            ledger=self.ledger,
            notifier=self.notifier,
            vanity_lookup=vanity_lookup,
            profile_lookup=profile_lookup,
        )
        self.queries = InviteQueryService(self.ledger, self.snapshots)
        self.reminders = ReminderScheduler()
        self.server_status = ServerStatusRelay(
            repo,
            status_client or ServerStatusClient(timeout_seconds=config.server_status_timeout_seconds),
            default_address=config.server_status_address,
            default_port=config.server_status_port,
            default_interval_seconds=config.server_status_interval_seconds,
        )
        self.music = music_player or MusicPlayer()
        self.music_resolver = music_resolver or YtDlpResolver()

        self.boot_smoke_stats: BootSmokeStats | None = None
        self.self_test_state = SelfTestState()
        self._ready_prime_done = False

    @property
    def expected_commands(self) -> set[str]:
        return set(EXPECTED_SLASH_COMMANDS)

    async def setup(
        self,
        *,
        existing_tables: Iterable[str] = REQUIRED_BOOT_TABLES,
        registered_commands: Iterable[str] = EXPECTED_SLASH_COMMANDS,
    ) -> None:
        if not await self.singleton_gate.try_acquire():
            raise SystemExit(0)
        self.boot_smoke_stats = run_boot_smoke_checks(existing_tables, registered_commands)

    async def prime_invite_cache(self, guild_ids: Iterable[int]) -> dict[int, bool]:
        ids = sorted({int(guild_id) for guild_id in guild_ids})
        results = await asyncio.gather(*(self._prime_guild(guild_id) for guild_id in ids))
        primed = dict(zip(ids, results))
        log.info("Invite cache primed for %s/%s guild(s)", sum(primed.values()), len(primed))
        return primed

    async def _prime_guild(self, guild_id: int) -> bool:
        try:
            await self.join_pipeline.refresh_baseline(guild_id)
            return True
        except FetchFailure as exc:
            log.warning("Could not cache invites for guild_id=%s: %s", guild_id, exc)
            return False

    async def on_ready(self, *, connected_guilds: Iterable[tuple[int, str | None]]) -> None:
        guilds = [(int(guild_id), name) for guild_id, name in connected_guilds]
        for guild_id, name in guilds:
            await self.ensure_guild_settings(guild_id, name)
        if not self._ready_prime_done:
            await self.prime_invite_cache(guild_id for guild_id, _ in guilds)
            self._ready_prime_done = True

    async def on_guild_join(self, guild_id: int, guild_name: str | None) -> None:
        await self.ensure_guild_settings(guild_id, guild_name)
        await self._prime_guild(int(guild_id))

    async def on_guild_remove(self, guild_id: int) -> int:
        # ledger history stays; only runtime state of the guild is dropped
        stopped = await self.reminders.stop_guild(guild_id)
        self.snapshots.forget(guild_id)
        self.join_pipeline.forget_guild(guild_id)
        await self.music.leave(guild_id)
        await self.task_registry.cancel(status_task_name(guild_id))
        log.info("Guild removed guild_id=%s reminders_stopped=%s", guild_id, stopped)
        return stopped

    def on_invite_create(self, guild_id: int, invite: InviteSnapshot) -> None:
        self.snapshots.apply(guild_id, InviteCreated(invite))
        log.debug("Invite created guild_id=%s code=%s", guild_id, invite.code)

    def on_invite_delete(self, guild_id: int, code: str) -> None:
        self.snapshots.apply(guild_id, InviteDeleted(code))
        log.debug("Invite deleted guild_id=%s code=%s", guild_id, code)

    async def on_member_join(
        self,
        guild_id: int,
        member: JoinedMember,
        *,
        joined_at: datetime | None = None,
    ) -> JoinOutcome:
        outcome = await self.join_pipeline.handle_join(guild_id, member, joined_at=joined_at)
        log.info(
            "Member join recorded guild_id=%s member_id=%s outcome=%s code=%s inviter_id=%s",
            guild_id,
            member.member_id,
            outcome.result.outcome.value,
            outcome.entry.invite_code,
            outcome.entry.inviter_id,
        )
        return outcome

    async def ensure_guild_settings(self, guild_id: int, guild_name: str | None = None) -> GuildSettingsRecord:
        current = await self.repo.get_settings(guild_id)
        name = (guild_name or "").strip() or None
        if current is None:
            return await self.repo.save_settings(GuildSettingsRecord(guild_id=int(guild_id), guild_name=name))
        if name and current.guild_name != name:
            current.guild_name = name
            return await self.repo.save_settings(current)
        return current

    async def invite_log_channel_id(self, guild_id: int) -> int | None:
        settings = await self.repo.get_settings(guild_id)
        if settings is not None and settings.invite_log_channel_id:
            return int(settings.invite_log_channel_id)
        return int(self.config.invite_log_channel_id) or None

    async def set_invite_log_channel(
        self,
        guild_id: int,
        channel_id: int,
        *,
        guild_name: str | None = None,
    ) -> GuildSettingsRecord:
        settings = await self.ensure_guild_settings(guild_id, guild_name)
        settings.invite_log_channel_id = int(channel_id)
        stored = await self.repo.save_settings(settings)
        log.info("Invite log channel set guild_id=%s channel_id=%s", guild_id, channel_id)
        return stored

    async def welcome_channel_id(self, guild_id: int) -> int | None:
        settings = await self.repo.get_settings(guild_id)
        if settings is not None and settings.welcome_channel_id:
            return int(settings.welcome_channel_id)
        return int(self.config.welcome_channel_id) or None

    def run_self_tests_once(self, registered_commands: Iterable[str]) -> None:
        _, missing, unexpected = command_registry_health(registered_commands)
        if missing:
            self.self_test_state.last_error = f"Missing commands: {', '.join(missing)}"
            raise RuntimeError(self.self_test_state.last_error)
        if unexpected:
            log.warning("Unexpected extra commands registered: %s", ", ".join(unexpected))
        self.self_test_state.last_ok_at = datetime.now(UTC)
        self.self_test_state.last_error = None

    async def close(self) -> None:
        stopped = await self.reminders.cancel_all()
        await self.music.close()
        await self.task_registry.cancel_all()
        if stopped:
            log.info("Cancelled %s reminder(s) on shutdown", stopped)
