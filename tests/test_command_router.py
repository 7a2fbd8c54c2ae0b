from __future__ import annotations

import pytest

from services.command_router import (
    ADMIN_DENIED_REPLY,
    COMMAND_ERROR_REPLY,
    CommandRouter,
    PrefixCommand,
)


class _FakeAuthor:
    id = 42


class _FakeMessage:
    def __init__(self, content: str):
        self.content = content
        self.author = _FakeAuthor()
        self.replies: list[str] = []

    async def reply(self, content=None, **kwargs):
        self.replies.append(content)


def _router(calls: list) -> CommandRouter:
    router = CommandRouter(["?", "!", "."])

    async def invites(ctx):
        calls.append(("invites", ctx.prefix, ctx.invoked_name, ctx.args))

    async def remind(ctx):
        calls.append(("remind", ctx.args))

    async def broken(ctx):
        raise RuntimeError("boom")

    router.register(PrefixCommand("invites", invites, "Leaderboard", aliases=("leaderboard", "invitelist")))
    router.register(PrefixCommand("remind", remind, "Reminders", aliases=("remindme",), admin_only=True))
    router.register(PrefixCommand("broken", broken))
    return router


def test_parse_requires_known_prefix_and_name():
    router = CommandRouter(["?", "!"])

    assert router.parse("?Invites 2") == ("?", "invites", ["2"])
    assert router.parse("hello") is None
    assert router.parse("?") is None
    assert router.parse(None) is None


def test_alias_clash_is_rejected():
    router = _router([])

    async def handler(ctx):
        return None

    with pytest.raises(ValueError, match="already used by 'invites'"):
        router.register(PrefixCommand("board", handler, aliases=("leaderboard",)))


def test_commands_are_listed_by_name():
    assert [command.name for command in _router([]).commands] == ["broken", "invites", "remind"]


@pytest.mark.asyncio
async def test_dispatch_resolves_aliases_case_insensitively():
    calls: list = []
    message = _FakeMessage("!LeaderBoard page 2")

    handled = await _router(calls).dispatch(message, is_admin=False)

    assert handled is True
    assert calls == [("invites", "!", "leaderboard", ["page", "2"])]


@pytest.mark.asyncio
async def test_admin_only_command_is_denied_for_members():
    calls: list = []
    message = _FakeMessage("?remindme 10m once @x hi")

    handled = await _router(calls).dispatch(message, is_admin=False)

    assert handled is True
    assert calls == []
    assert message.replies == [ADMIN_DENIED_REPLY]


@pytest.mark.asyncio
async def test_admin_only_command_runs_for_admins():
    calls: list = []

    await _router(calls).dispatch(_FakeMessage(".remind 10m once @x hi"), is_admin=True)

    assert calls == [("remind", ["10m", "once", "@x", "hi"])]


@pytest.mark.asyncio
async def test_unknown_command_and_plain_text_are_ignored():
    router = _router([])

    assert await router.dispatch(_FakeMessage("?nope"), is_admin=True) is False
    assert await router.dispatch(_FakeMessage("just chatting"), is_admin=True) is False


@pytest.mark.asyncio
async def test_handler_error_is_reported_to_the_user(caplog):
    message = _FakeMessage("?broken")

    handled = await _router([]).dispatch(message, is_admin=False)

    assert handled is True
    assert message.replies == [COMMAND_ERROR_REPLY]
    assert "Error executing command broken" in caplog.text
