from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from bot.main import BotApplication
from db.models import REQUIRED_BOOT_TABLES
from conftest import no_sleep
from services.notification_service import JoinedMember
from services.reminder_service import parse_reminder_args
from services.snapshot_service import InviteSnapshot
from services.startup_service import EXPECTED_SLASH_COMMANDS, SingletonGate, run_boot_smoke_checks


@pytest.mark.asyncio
async def test_singleton_lock_gate(config, repo, invite_source):
    gate = SingletonGate()
    app_one = BotApplication(config=config, repo=repo, invite_fetcher=invite_source, singleton_gate=gate)
    app_two = BotApplication(config=config, repo=repo, invite_fetcher=invite_source, singleton_gate=gate)

    await app_one.setup()
    with pytest.raises(SystemExit):
        await app_two.setup()


@pytest.mark.asyncio
async def test_boot_smoke_check_required_tables(app):
    with pytest.raises(RuntimeError, match="Missing required DB tables: invite_ledger"):
        await app.setup(existing_tables=["guild_settings"])


def test_boot_smoke_reports_missing_commands():
    stats = run_boot_smoke_checks(REQUIRED_BOOT_TABLES, ["help", "invites"])

    assert stats.registered_commands == 2
    assert "remind" in stats.missing_commands


@pytest.mark.asyncio
async def test_setup_records_smoke_stats(app):
    await app.setup()

    assert app.boot_smoke_stats.missing_commands == []
    assert app.boot_smoke_stats.registered_commands == len(EXPECTED_SLASH_COMMANDS)


def test_run_self_tests_updates_state(app):
    app.run_self_tests_once(EXPECTED_SLASH_COMMANDS | {"extra"})

    assert app.self_test_state.last_ok_at is not None
    assert app.self_test_state.last_error is None


def test_self_test_fails_on_missing_commands(app):
    with pytest.raises(RuntimeError, match="Missing commands: allinvites"):
        app.run_self_tests_once(EXPECTED_SLASH_COMMANDS - {"allinvites"})

    assert app.self_test_state.last_error == "Missing commands: allinvites"


@pytest.mark.asyncio
async def test_on_ready_creates_settings_and_primes_once(config, repo):
    calls: list[int] = []

    async def fetcher(guild_id: int):
        calls.append(guild_id)
        if guild_id == 2:
            raise PermissionError("no access")
        return [InviteSnapshot("A", 1, "U1")]

    app = BotApplication(config=config, repo=repo, invite_fetcher=fetcher, sleep=no_sleep)

    await app.on_ready(connected_guilds=[(2, "Broken"), (1, "BitCraft")])
    await app.on_ready(connected_guilds=[(1, "BitCraft Network")])

    assert repo.settings[1].guild_name == "BitCraft Network"
    assert repo.settings[2].guild_name == "Broken"
    assert app.snapshots.has_snapshot(1) is True
    assert app.snapshots.has_snapshot(2) is False
    assert calls.count(1) == 1
    assert calls.count(2) == config.invite_fetch_retries


@pytest.mark.asyncio
async def test_invite_events_update_snapshot_without_fetching(app, invite_source):
    invite_source.set(1, [InviteSnapshot("A", 1, "U1")])
    await app.on_guild_join(1, "BitCraft")

    app.on_invite_create(1, InviteSnapshot("B", 0, "U2"))
    app.on_invite_delete(1, "A")

    assert set(app.snapshots.get(1)) == {"B"}
    assert invite_source.calls == [1]


@pytest.mark.asyncio
async def test_guild_remove_drops_runtime_state_but_keeps_ledger(app, invite_source):
    invite_source.set(1, [InviteSnapshot("A", 0, "U1")])
    await app.on_guild_join(1, "BitCraft")
    invite_source.set(1, [InviteSnapshot("A", 1, "U1")])
    await app.on_member_join(1, JoinedMember(100, "Newbie"))

    async def send(_request):
        return None

    app.reminders.schedule(1, parse_reminder_args(["1h", "repeat", "@x", "hi"]), send)
    await asyncio.sleep(0)

    stopped = await app.on_guild_remove(1)

    assert stopped == 1
    assert app.snapshots.has_snapshot(1) is False
    assert await app.ledger.invite_count(1, "U1") == 1


@pytest.mark.asyncio
async def test_invite_log_channel_prefers_guild_setting(config, repo, invite_source):
    app = BotApplication(
        config=replace(config, invite_log_channel_id=77),
        repo=repo,
        invite_fetcher=invite_source,
        sleep=no_sleep,
    )

    assert await app.invite_log_channel_id(1) == 77
    await app.set_invite_log_channel(1, 88, guild_name="BitCraft")

    assert await app.invite_log_channel_id(1) == 88
    assert repo.settings[1].guild_name == "BitCraft"


@pytest.mark.asyncio
async def test_unconfigured_channels_are_none(app):
    assert await app.invite_log_channel_id(5) is None
    assert await app.welcome_channel_id(5) is None


@pytest.mark.asyncio
async def test_close_cancels_reminders(app):
    async def send(_request):
        return None

    app.reminders.schedule(1, parse_reminder_args(["1h", "repeat", "@x", "hi"]), send)

    await app.close()

    assert app.reminders.active_count(1) == 0
