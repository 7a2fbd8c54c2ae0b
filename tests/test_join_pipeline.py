from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from bot.main import BotApplication
from conftest import FakeChannel, no_sleep
from services.attribution_service import AttributionOutcome
from services.errors import PersistenceFailure
from services.invite_query_service import AuthorizationLevel
from services.join_service import UserProfile
from services.ledger_service import UNKNOWN_INVITER, VANITY_INVITER
from services.notification_service import JoinedMember
from services.snapshot_service import InviteSnapshot


JOINED_AT = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


def _fields(embed) -> dict[str, str]:
    return {field.name: field.value for field in embed.fields}


@pytest.mark.asyncio
async def test_join_through_known_invite_is_recorded_and_announced(app, invite_source, log_channel):
    invite_source.set(1, [InviteSnapshot("A", 5, "U1", inviter_name="Alice"), InviteSnapshot("B", 2, "U2")])
    await app.prime_invite_cache([1])
    invite_source.set(1, [InviteSnapshot("A", 6, "U1", inviter_name="Alice"), InviteSnapshot("B", 2, "U2")])

    outcome = await app.on_member_join(1, JoinedMember(100, "Newbie"), joined_at=JOINED_AT)

    assert outcome.result.outcome is AttributionOutcome.ATTRIBUTED
    assert (outcome.entry.inviter_id, outcome.entry.invite_code) == ("U1", "A")
    assert outcome.notified is True
    assert app.snapshots.get(1)["A"].uses == 6

    embed = log_channel.sent[0]["embed"]
    assert embed.description == "<@100> was invited by Alice"
    assert _fields(embed)["Total Invites"] == "1"
    assert _fields(embed)["Invite Code"] == "A"


@pytest.mark.asyncio
async def test_profile_lookup_overrides_cached_inviter_name(config, repo, invite_source):
    channel = FakeChannel()

    async def resolve_channel(_guild_id):
        return channel

    async def profile(user_id: str):
        return UserProfile(name=f"profile-{user_id}", avatar_url="https://cdn.example/avatar.png")

    app = BotApplication(
        config=config,
        repo=repo,
        invite_fetcher=invite_source,
        channel_resolver=resolve_channel,
        profile_lookup=profile,
        sleep=no_sleep,
    )
    invite_source.set(1, [InviteSnapshot("A", 0, "U1", inviter_name="cached")])
    await app.prime_invite_cache([1])
    invite_source.set(1, [InviteSnapshot("A", 1, "U1", inviter_name="cached")])

    await app.on_member_join(1, JoinedMember(7, "m"))

    embed = channel.sent[0]["embed"]
    assert embed.description == "<@7> was invited by profile-U1"
    assert embed.image.url == "https://cdn.example/avatar.png"


@pytest.mark.asyncio
async def test_fetch_failure_falls_back_to_cached_snapshot(app, invite_source, log_channel):
    invite_source.set(1, [InviteSnapshot("A", 5, "U1")])
    await app.prime_invite_cache([1])
    invite_source.failures = [RuntimeError("gateway unavailable")] * 3

    outcome = await app.on_member_join(1, JoinedMember(100, "Newbie"))

    assert outcome.snapshot_stale is True
    assert outcome.result.outcome is AttributionOutcome.UNDETERMINED
    assert outcome.entry.inviter_id == UNKNOWN_INVITER
    assert await app.ledger.query_leaderboard(1, 10) == []
    assert log_channel.sent[0]["embed"].fields[0].value == "Could not determine which invite was used"


@pytest.mark.asyncio
async def test_cold_cache_uses_fresh_list_as_baseline(app, invite_source):
    invite_source.set(1, [InviteSnapshot("A", 6, "U1")])

    outcome = await app.on_member_join(1, JoinedMember(100, "Newbie"))

    assert outcome.result.outcome is AttributionOutcome.UNDETERMINED
    assert app.snapshots.has_snapshot(1)

    invite_source.set(1, [InviteSnapshot("A", 7, "U1")])
    follow_up = await app.on_member_join(1, JoinedMember(101, "Second"))
    assert follow_up.entry.inviter_id == "U1"


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_the_join(app, invite_source, log_channel):
    invite_source.set(1, [InviteSnapshot("A", 0, "U1")])
    await app.prime_invite_cache([1])
    invite_source.set(1, [InviteSnapshot("A", 1, "U1")])
    log_channel.fail = RuntimeError("Missing Access")

    outcome = await app.on_member_join(1, JoinedMember(100, "Newbie"))

    assert outcome.notified is False
    assert await app.ledger.invite_count(1, "U1") == 1


@pytest.mark.asyncio
async def test_persistence_failure_propagates_and_skips_notification(app, repo, invite_source, log_channel):
    invite_source.set(1, [InviteSnapshot("A", 0, "U1")])
    await app.prime_invite_cache([1])
    invite_source.set(1, [InviteSnapshot("A", 1, "U1")])
    repo.fail_next_insert = RuntimeError("database is locked")

    with pytest.raises(PersistenceFailure):
        await app.on_member_join(1, JoinedMember(100, "Newbie"))

    assert log_channel.sent == []


@pytest.mark.asyncio
async def test_concurrent_joins_in_one_guild_are_serialized(config, repo):
    states = [
        [InviteSnapshot("A", 5, "U1"), InviteSnapshot("B", 3, "U2")],
        [InviteSnapshot("A", 6, "U1"), InviteSnapshot("B", 3, "U2")],
        [InviteSnapshot("A", 6, "U1"), InviteSnapshot("B", 4, "U2")],
    ]

    async def stepping_fetcher(_guild_id: int):
        await asyncio.sleep(0)
        return states.pop(0)

    app = BotApplication(config=config, repo=repo, invite_fetcher=stepping_fetcher, sleep=no_sleep)
    await app.prime_invite_cache([1])

    first, second = await asyncio.gather(
        app.on_member_join(1, JoinedMember(100, "one")),
        app.on_member_join(1, JoinedMember(101, "two")),
    )

    assert (first.entry.invite_code, second.entry.invite_code) == ("A", "B")
    board = {row.inviter_id: row.count for row in await app.ledger.query_leaderboard(1, 10)}
    assert board == {"U1": 1, "U2": 1}


@pytest.mark.asyncio
async def test_vanity_join_is_recorded_but_not_ranked(config, repo, invite_source):
    lookups: list[int] = []

    async def vanity(guild_id: int):
        lookups.append(guild_id)
        return "bitcraft"

    app = BotApplication(
        config=config,
        repo=repo,
        invite_fetcher=invite_source,
        vanity_lookup=vanity,
        sleep=no_sleep,
    )
    invite_source.set(1, [InviteSnapshot("A", 5, "U1")])
    await app.prime_invite_cache([1])

    outcome = await app.on_member_join(1, JoinedMember(100, "Newbie"))

    assert outcome.result.outcome is AttributionOutcome.VANITY_URL
    assert (outcome.entry.inviter_id, outcome.entry.invite_code) == (VANITY_INVITER, "bitcraft")
    assert outcome.notified is False
    assert lookups == [1]
    assert await app.ledger.query_leaderboard(1, 10) == []


@pytest.mark.asyncio
async def test_vanity_lookup_is_skipped_when_an_invite_explains_the_join(config, repo, invite_source):
    lookups: list[int] = []

    async def vanity(guild_id: int):
        lookups.append(guild_id)
        return "bitcraft"

    app = BotApplication(config=config, repo=repo, invite_fetcher=invite_source, vanity_lookup=vanity, sleep=no_sleep)
    invite_source.set(1, [InviteSnapshot("A", 0, "U1")])
    await app.prime_invite_cache([1])
    invite_source.set(1, [InviteSnapshot("A", 1, "U1")])

    outcome = await app.on_member_join(1, JoinedMember(100, "Newbie"))

    assert outcome.entry.inviter_id == "U1"
    assert lookups == []


@pytest.mark.asyncio
async def test_listing_active_invites_keeps_the_join_baseline(app, invite_source):
    invite_source.set(1, [InviteSnapshot("A", 5, "U1")])
    await app.prime_invite_cache([1])
    invite_source.set(1, [InviteSnapshot("A", 6, "U1")])

    report = await app.queries.active_invites(1, AuthorizationLevel.MODERATOR)
    assert [(invite.code, invite.uses) for invite in report.invites] == [("A", 6)]
    assert app.snapshots.get(1)["A"].uses == 5

    outcome = await app.on_member_join(1, JoinedMember(100, "Newbie"))

    assert outcome.result.outcome is AttributionOutcome.ATTRIBUTED
    assert outcome.entry.inviter_id == "U1"


@pytest.mark.asyncio
async def test_baseline_refresh_waits_for_the_guild_join_lock(app, invite_source):
    invite_source.set(1, [InviteSnapshot("A", 5, "U1")])

    async with app.join_pipeline._locks.lock_for(1):
        prime = asyncio.create_task(app.on_guild_join(1, "BitCraft"))
        for _ in range(3):
            await asyncio.sleep(0)
        assert invite_source.calls == []
    await prime

    assert invite_source.calls == [1]
    assert app.snapshots.get(1)["A"].uses == 5
