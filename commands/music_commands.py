from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import discord
from discord import app_commands

from commands.runtime_commands import GUILD_ONLY_REPLY
from gateway.safety import safe_edit_message, safe_followup, safe_reply
from services.command_router import CommandContext, PrefixCommand
from services.music_service import (
    EMPTY_QUEUE_REPLY,
    LEFT_REPLY,
    NOT_CONNECTED_REPLY,
    NOT_IN_VOICE_REPLY,
    NOTHING_TO_PAUSE_REPLY,
    NOTHING_TO_RESUME_REPLY,
    NOTHING_TO_SHUFFLE_REPLY,
    NOTHING_TO_SKIP_REPLY,
    PAUSING_REPLY,
    PLAY_FAILED_REPLY,
    PLAY_USAGE_REPLY,
    RESUMING_REPLY,
    SEARCHING_REPLY,
    SHUFFLING_REPLY,
    SKIPPING_REPLY,
    VOICE_PERMISSION_REPLY,
    TrackNotFound,
    added_embed,
    queue_embed,
)

if TYPE_CHECKING:
    from bot.runtime import InviteTrackerBot


log = logging.getLogger("bitcraft.commands")

Responder = Callable[..., Awaitable[Any]]


def voice_channel_problem(member: Any, bot_member: Any) -> str | None:
    channel = getattr(getattr(member, "voice", None), "channel", None)
    if channel is None:
        return NOT_IN_VOICE_REPLY
    permissions = channel.permissions_for(bot_member)
    if not (permissions.connect and permissions.speak):
        return VOICE_PERMISSION_REPLY
    return None


async def play_request(
    bot: "InviteTrackerBot",
    *,
    guild: Any,
    member: Any,
    text_channel: Any,
    query: str,
    respond: Responder,
) -> None:
    """Resolves ``query``, queues it and starts playback when the guild was idle.

    ``respond`` is called once with the outcome as ``content=`` or ``embed=``.
    """
    try:
        track = await bot.app.music_resolver.resolve(query, requester=str(member))
        position = await bot.app.music.enqueue(
            guild.id,
            track,
            voice_channel=member.voice.channel,
            text_channel=text_channel,
        )
    except TrackNotFound as exc:
        await respond(content=str(exc))
        return
    except Exception as exc:
        log.warning("Play request failed guild_id=%s query=%r", guild.id, query, exc_info=True)
        await respond(content=PLAY_FAILED_REPLY.format(error=exc))
        return
    await respond(content=None, embed=added_embed(track, position))
    if position == 1:
        await bot.app.music.play_current(guild.id)


def register_music_commands(bot: "InviteTrackerBot") -> None:
    router = bot.router

    def player():
        return bot.app.music

    async def play_cmd(ctx: CommandContext) -> None:
        message = ctx.message
        query = " ".join(ctx.args).strip()
        if not query:
            await safe_reply(message, PLAY_USAGE_REPLY)
            return
        problem = voice_channel_problem(message.author, message.guild.me)
        if problem is not None:
            await safe_reply(message, problem)
            return
        loading = await safe_reply(message, SEARCHING_REPLY)

        async def respond(**kwargs: Any) -> None:
            if not await safe_edit_message(loading, **kwargs):
                await safe_reply(message, kwargs.get("content"), embed=kwargs.get("embed"))

        await play_request(
            bot,
            guild=message.guild,
            member=message.author,
            text_channel=message.channel,
            query=query,
            respond=respond,
        )

    async def skip_cmd(ctx: CommandContext) -> None:
        if not player().skip(ctx.message.guild.id):
            await safe_reply(ctx.message, NOTHING_TO_SKIP_REPLY)
            return
        await safe_reply(ctx.message, SKIPPING_REPLY)

    async def leave_cmd(ctx: CommandContext) -> None:
        if not await player().leave(ctx.message.guild.id):
            await safe_reply(ctx.message, NOT_CONNECTED_REPLY)
            return
        await safe_reply(ctx.message, LEFT_REPLY)

    async def queue_cmd(ctx: CommandContext) -> None:
        queue = player().queue_for(ctx.message.guild.id)
        if queue is None or not queue.tracks:
            await safe_reply(ctx.message, EMPTY_QUEUE_REPLY)
            return
        await safe_reply(ctx.message, embed=queue_embed(queue))

    async def pause_cmd(ctx: CommandContext) -> None:
        if not player().pause(ctx.message.guild.id):
            await safe_reply(ctx.message, NOTHING_TO_PAUSE_REPLY)
            return
        await safe_reply(ctx.message, PAUSING_REPLY)

    async def resume_cmd(ctx: CommandContext) -> None:
        if not player().resume(ctx.message.guild.id):
            await safe_reply(ctx.message, NOTHING_TO_RESUME_REPLY)
            return
        await safe_reply(ctx.message, RESUMING_REPLY)

    async def shuffle_cmd(ctx: CommandContext) -> None:
        if not player().shuffle(ctx.message.guild.id):
            await safe_reply(ctx.message, NOTHING_TO_SHUFFLE_REPLY)
            return
        await safe_reply(ctx.message, SHUFFLING_REPLY)

    @bot.tree.command(name="p", description="Play a song by search query or YouTube URL")
    @app_commands.describe(query="Song name or YouTube URL")
    async def play_slash(interaction, query: str):
        guild = interaction.guild
        if guild is None:
            await bot._reply(interaction, GUILD_ONLY_REPLY, ephemeral=True)
            return
        problem = voice_channel_problem(interaction.user, guild.me)
        if problem is not None:
            await bot._reply(interaction, problem, ephemeral=True)
            return
        await bot._defer(interaction, ephemeral=False)

        async def respond(content: str | None = None, embed: discord.Embed | None = None) -> None:
            if embed is not None:
                await safe_followup(interaction, embed=embed)
            else:
                await safe_followup(interaction, content, ephemeral=True)

        await play_request(
            bot,
            guild=guild,
            member=interaction.user,
            text_channel=interaction.channel,
            query=query,
            respond=respond,
        )

    for command in (
        PrefixCommand(
            name="play",
            aliases=("p", "music"),
            handler=play_cmd,
            description="Play a song by name or YouTube URL.",
        ),
        PrefixCommand(name="skip", aliases=("s", "next"), handler=skip_cmd, description="Skip the current song."),
        PrefixCommand(
            name="leave",
            aliases=("disconnect",),
            handler=leave_cmd,
            description="Stop the music and leave the voice channel.",
        ),
        PrefixCommand(name="queue", aliases=("q", "list"), handler=queue_cmd, description="Show the song queue."),
        PrefixCommand(name="pause", handler=pause_cmd, description="Pause the music."),
        PrefixCommand(name="resume", handler=resume_cmd, description="Resume the music."),
        PrefixCommand(name="shuffle", handler=shuffle_cmd, description="Shuffle the upcoming songs."),
    ):
        router.register(command)
