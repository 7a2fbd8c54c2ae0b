from __future__ import annotations

import pytest

from gateway.safety import (
    safe_add_roles,
    safe_defer,
    safe_delete_message,
    safe_edit_message,
    safe_followup,
    safe_rename_channel,
    safe_reply,
    safe_send_channel_message,
    safe_send_initial,
    safe_update_message,
)


class _FakeResponse:
    def __init__(self, done: bool = False, fail: Exception | None = None):
        self._done = done
        self.fail = fail
        self.deferred = 0
        self.sent = []

    def is_done(self) -> bool:
        return self._done

    async def defer(self, *, ephemeral: bool = False):
        self.deferred += 1
        self._done = True

    async def send_message(self, content, *, ephemeral: bool = False, **kwargs):
        if self.fail is not None:
            raise self.fail
        self.sent.append((content, ephemeral, kwargs))
        self._done = True


class _FakeFollowup:
    def __init__(self):
        self.sent = []

    async def send(self, content, *, ephemeral: bool = False, **kwargs):
        self.sent.append((content, ephemeral, kwargs))


class _FakeInteraction:
    def __init__(self, done: bool = False, fail: Exception | None = None):
        self.response = _FakeResponse(done=done, fail=fail)
        self.followup = _FakeFollowup()


class NotFound(Exception):
    pass


class Forbidden(Exception):
    pass


class _FakeMessage:
    def __init__(self, fail: Exception | None = None):
        self.fail = fail
        self.replies = []
        self.deleted = False

    async def reply(self, content=None, **kwargs):
        if self.fail is not None:
            raise self.fail
        self.replies.append(content)
        return content

    async def delete(self):
        if self.fail is not None:
            raise self.fail
        self.deleted = True


class _FakeChannel:
    def __init__(self):
        self.sent = []

    async def send(self, **kwargs):
        self.sent.append(kwargs)
        return kwargs


class _ChannelOnlyMessage:
    def __init__(self):
        self.channel = _FakeChannel()


class _FakeMember:
    def __init__(self, fail: Exception | None = None):
        self.fail = fail
        self.added = []

    async def add_roles(self, *roles, reason=None):
        if self.fail is not None:
            raise self.fail
        self.added.append((roles, reason))


@pytest.mark.asyncio
async def test_safe_defer_is_idempotent():
    interaction = _FakeInteraction(done=False)

    first = await safe_defer(interaction, ephemeral=True)
    second = await safe_defer(interaction, ephemeral=True)

    assert first is True
    assert second is False
    assert interaction.response.deferred == 1


@pytest.mark.asyncio
async def test_safe_send_initial_falls_back_to_followup_when_done():
    interaction = _FakeInteraction(done=True)

    ok = await safe_send_initial(interaction, "hello", ephemeral=True)

    assert ok is True
    assert interaction.followup.sent == [("hello", True, {})]


@pytest.mark.asyncio
async def test_safe_send_initial_retries_as_followup_after_rejection():
    interaction = _FakeInteraction(fail=NotFound("Unknown interaction"))

    ok = await safe_send_initial(interaction, "hello")

    assert ok is True
    assert interaction.followup.sent == [("hello", False, {})]


@pytest.mark.asyncio
async def test_safe_followup_without_followup_returns_false():
    assert await safe_followup(object(), "x") is False


@pytest.mark.asyncio
async def test_safe_reply_handles_forbidden():
    message = _FakeMessage(fail=Forbidden("Missing Permissions"))

    assert await safe_reply(message, "hi") is None


@pytest.mark.asyncio
async def test_safe_reply_uses_channel_when_message_cannot_reply():
    message = _ChannelOnlyMessage()

    await safe_reply(message, "hi")

    assert message.channel.sent == [{"content": "hi"}]


@pytest.mark.asyncio
async def test_safe_send_channel_message_without_channel():
    assert await safe_send_channel_message(None, content="x") is None


@pytest.mark.asyncio
async def test_safe_delete_message_handles_not_found():
    ok = await safe_delete_message(_FakeMessage(fail=NotFound("gone")))
    assert ok is False


@pytest.mark.asyncio
async def test_safe_add_roles():
    member = _FakeMember()

    assert await safe_add_roles(member, [], reason="x") is False
    assert await safe_add_roles(member, ["role"], reason="Default role") is True
    assert await safe_add_roles(_FakeMember(fail=Forbidden("nope")), ["role"]) is False
    assert member.added == [(("role",), "Default role")]


class _EditableMessage:
    def __init__(self, fail: Exception | None = None):
        self.fail = fail
        self.edits = []
        self.delays = []

    async def edit(self, **kwargs):
        if self.fail is not None:
            raise self.fail
        self.edits.append(kwargs)

    async def delete(self, *, delay=None):
        self.delays.append(delay)


class _RenamableChannel:
    def __init__(self, name: str, fail: Exception | None = None):
        self.name = name
        self.fail = fail
        self.renames = []

    async def edit(self, *, name: str):
        if self.fail is not None:
            raise self.fail
        self.renames.append(name)
        self.name = name


@pytest.mark.asyncio
async def test_safe_delete_message_passes_delay():
    message = _EditableMessage()

    assert await safe_delete_message(message, delay=5) is True
    assert message.delays == [5]


@pytest.mark.asyncio
async def test_safe_edit_message():
    message = _EditableMessage()

    assert await safe_edit_message(message, content="done", view=None) is True
    assert await safe_edit_message(_EditableMessage(fail=NotFound("gone")), content="x") is False
    assert await safe_edit_message(None, content="x") is False
    assert message.edits == [{"content": "done", "view": None}]


@pytest.mark.asyncio
async def test_safe_update_message():
    class _Response:
        def __init__(self):
            self.edits = []

        async def edit_message(self, **kwargs):
            self.edits.append(kwargs)

    interaction = type("Interaction", (), {})()
    interaction.response = _Response()

    assert await safe_update_message(interaction, content="ok") is True
    assert await safe_update_message(object(), content="ok") is False
    assert interaction.response.edits == [{"content": "ok"}]


@pytest.mark.asyncio
async def test_safe_rename_channel_skips_unchanged_names():
    channel = _RenamableChannel("🔴 Offline")

    assert await safe_rename_channel(channel, "🔴 Offline") is False
    assert await safe_rename_channel(channel, "🟢 Online") is True
    assert await safe_rename_channel(None, "x") is False
    assert await safe_rename_channel(_RenamableChannel("a", fail=Forbidden("nope")), "b") is False
    assert channel.renames == ["🟢 Online"]
