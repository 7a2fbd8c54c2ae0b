from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace

import discord
import pytest

from conftest import no_sleep
from services.prune_service import (
    BOT_MISSING_PERMISSION_REPLY,
    PRUNE_CANCELLED_REPLY,
    PRUNE_FAILED_REPLY,
    PRUNE_FORBIDDEN_REPLY,
    PRUNE_TOO_OLD_REPLY,
    USER_MISSING_PERMISSION_REPLY,
    ChannelPruner,
    deleted_reply,
    missing_permission_reply,
    parse_prune_amount,
    prune_error_reply,
    prune_prompt_embed,
)
from views.confirm_views import NOT_AUTHOR_REPLY, PROMPT_CLEANUP_SECONDS, PruneConfirmView


NOW = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


class _PurgeChannel:
    def __init__(self, batches: list[int] | None = None, *, fail: Exception | None = None) -> None:
        self.id = 77
        self.batches = list(batches or [])
        self.fail = fail
        self.purges: list[dict] = []
        self.sent: list[dict] = []

    async def purge(self, **kwargs):
        self.purges.append(kwargs)
        if self.fail is not None:
            raise self.fail
        count = self.batches.pop(0) if self.batches else 0
        return [object()] * count

    async def send(self, content=None, **kwargs):
        self.sent.append({"content": content, **kwargs})


class _Prompt:
    def __init__(self) -> None:
        self.edits: list[dict] = []
        self.deletes: list[float | None] = []

    async def edit(self, **kwargs):
        self.edits.append(kwargs)

    async def delete(self, *, delay=None):
        self.deletes.append(delay)


class _ComponentResponse:
    def __init__(self) -> None:
        self.edits: list[dict] = []
        self.sent: list[tuple] = []

    def is_done(self) -> bool:
        return False

    async def edit_message(self, **kwargs):
        self.edits.append(kwargs)

    async def send_message(self, content=None, *, ephemeral=False, **kwargs):
        self.sent.append((content, ephemeral))


def _interaction(user_id: int):
    return SimpleNamespace(user=SimpleNamespace(id=user_id), response=_ComponentResponse())


class _ApiError(Exception):
    def __init__(self, code: int) -> None:
        super().__init__(f"api error {code}")
        self.code = code


def test_parse_prune_amount_limits():
    assert parse_prune_amount([]) is None
    assert parse_prune_amount(["25"]) == 25
    assert parse_prune_amount(["100"]) == 100
    assert parse_prune_amount(["0"]) is None
    assert parse_prune_amount(["101"]) is None
    assert parse_prune_amount(["lots"]) is None


def test_permission_checks_cover_member_and_bot():
    allowed = SimpleNamespace(manage_messages=True)
    denied = SimpleNamespace(manage_messages=False)

    assert missing_permission_reply(denied, allowed) == USER_MISSING_PERMISSION_REPLY
    assert missing_permission_reply(allowed, denied) == BOT_MISSING_PERMISSION_REPLY
    assert missing_permission_reply(allowed, allowed) is None


def test_prompt_embed_names_channel_and_amount():
    some = prune_prompt_embed(77, 10)
    everything = prune_prompt_embed(77, None)

    assert some.title == "🧹 Confirm Message Deletion"
    assert "delete **10** messages in <#77>" in some.description
    assert "**delete ALL messages** in <#77>" in everything.description


def test_error_replies_by_discord_code():
    forbidden = discord.Forbidden(SimpleNamespace(status=403, reason="Forbidden"), "Missing Permissions")

    assert prune_error_reply(forbidden, 0) == PRUNE_FORBIDDEN_REPLY
    assert prune_error_reply(_ApiError(50013), 0) == PRUNE_FORBIDDEN_REPLY
    assert prune_error_reply(_ApiError(50034), 0) == PRUNE_TOO_OLD_REPLY
    assert prune_error_reply(RuntimeError("boom"), 0) == PRUNE_FAILED_REPLY
    assert prune_error_reply(RuntimeError("boom"), 150) == (
        "❌ Failed to delete some messages. Deleted 150 messages successfully."
    )
    assert deleted_reply(1) == "✅ Successfully deleted 1 message from this channel."


@pytest.mark.asyncio
async def test_pruner_counts_the_command_message_and_stays_above_prompt():
    channel = _PurgeChannel([11])
    prompt = object()

    deleted = await ChannelPruner(channel, 10, before=prompt, now=NOW).run()

    assert deleted == 11
    assert channel.purges[0]["limit"] == 11
    assert channel.purges[0]["before"] is prompt
    assert channel.purges[0]["after"] == datetime(2026, 9, 17, 12, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_pruner_all_mode_runs_batches_until_a_short_one():
    channel = _PurgeChannel([100, 100, 100, 100, 100, 30])
    progress: list[int] = []
    pauses: list[float] = []

    async def on_progress(count: int) -> None:
        progress.append(count)

    async def sleep(seconds: float) -> None:
        pauses.append(seconds)

    deleted = await ChannelPruner(channel, None, on_progress=on_progress, sleep=sleep, now=NOW).run()

    assert deleted == 530
    assert len(channel.purges) == 6
    assert progress == [500, 530]
    assert pauses == [1.0] * 5


@pytest.mark.asyncio
async def test_pruner_keeps_partial_count_when_a_batch_fails():
    channel = _PurgeChannel([100])
    pruner = ChannelPruner(channel, None, sleep=no_sleep, now=NOW)
    original = channel.purge

    async def flaky(**kwargs):
        if channel.purges:
            channel.purges.append(kwargs)
            raise RuntimeError("rate limited")
        return await original(**kwargs)

    channel.purge = flaky

    with pytest.raises(RuntimeError):
        await pruner.run()
    assert pruner.deleted == 100


@pytest.mark.asyncio
async def test_prune_view_only_answers_the_author():
    view = PruneConfirmView(1, _PurgeChannel(), 5)
    stranger = _interaction(2)

    assert await view.interaction_check(stranger) is False
    assert stranger.response.sent == [(NOT_AUTHOR_REPLY, True)]
    assert await view.interaction_check(_interaction(1)) is True
    assert view.confirm_button.label == "✅ Delete 5"
    assert view.confirm_button.style is discord.ButtonStyle.danger


@pytest.mark.asyncio
async def test_prune_view_confirm_deletes_and_reports():
    channel = _PurgeChannel([6])
    view = PruneConfirmView(1, channel, 5, sleep=no_sleep)
    view.message = _Prompt()
    interaction = _interaction(1)

    await view.confirm(interaction)
    await view.confirm(interaction)

    assert view.outcome == "confirmed"
    assert len(channel.purges) == 1
    assert interaction.response.edits[0]["embed"].title == "🔄 Deleting Messages..."
    assert channel.sent == [
        {"content": "✅ Successfully deleted 6 messages from this channel.", "delete_after": 5}
    ]
    assert view.message.deletes == [None]


@pytest.mark.asyncio
async def test_prune_view_reports_failures():
    channel = _PurgeChannel(fail=_ApiError(50034))
    view = PruneConfirmView(1, channel, None, sleep=no_sleep)
    view.message = _Prompt()

    await view.confirm(_interaction(1))

    assert channel.sent[0]["content"] == PRUNE_TOO_OLD_REPLY


@pytest.mark.asyncio
async def test_prune_view_cancel_and_timeout_clean_up_prompt():
    cancelled = PruneConfirmView(1, _PurgeChannel(), 5)
    cancelled.message = _Prompt()
    interaction = _interaction(1)

    await cancelled.cancel(interaction)

    assert interaction.response.edits == [{"content": PRUNE_CANCELLED_REPLY, "embed": None, "view": None}]
    assert cancelled.message.deletes == [PROMPT_CLEANUP_SECONDS]

    expired = PruneConfirmView(1, _PurgeChannel(), 5)
    expired.message = _Prompt()

    await expired.on_timeout()

    assert expired.outcome == "timeout"
    assert expired.message.edits[0]["content"].startswith("⏰")
    assert expired.message.deletes == [PROMPT_CLEANUP_SECONDS]
