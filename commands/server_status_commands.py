from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import discord

from commands.runtime_commands import GUILD_ONLY_REPLY
from gateway.safety import safe_edit_message, safe_reply
from services.command_router import CommandContext, PrefixCommand
from services.community_info_service import connection_info_embed, rules_embeds
from services.server_status_service import (
    ERROR_COLOUR,
    INFO_COLOUR,
    INVALID_INTERVAL_REPLY,
    INVALID_PORT_REPLY,
    SUCCESS_COLOUR,
    interval_text,
    notice_embed,
    performance_embed,
    players_embed,
    state_line,
    status_embed,
)

if TYPE_CHECKING:
    from bot.runtime import InviteTrackerBot


log = logging.getLogger("bitcraft.commands")


def _parse_int(raw: str) -> int | None:
    try:
        return int(raw)
    except ValueError:
        return None


def register_server_status_commands(bot: "InviteTrackerBot") -> None:
    router = bot.router
    config = bot.config

    def relay():
        return bot.app.server_status

    async def _status_reply(ctx: CommandContext, build) -> None:
        settings, status = await relay().status_for(ctx.message.guild.id, fresh=False)
        await safe_reply(ctx.message, embed=build(status, f"{settings.server_address}:{settings.server_port}"))

    async def serverstatus_cmd(ctx: CommandContext) -> None:
        await _status_reply(ctx, status_embed)

    async def players_cmd(ctx: CommandContext) -> None:
        await _status_reply(ctx, players_embed)

    async def performance_cmd(ctx: CommandContext) -> None:
        await _status_reply(ctx, performance_embed)

    async def _setup_failed(ctx: CommandContext, what: str, exc: Exception) -> None:
        log.warning("Status setup failed guild_id=%s: %s", ctx.message.guild.id, exc, exc_info=True)
        await safe_reply(
            ctx.message,
            embed=notice_embed("❌ Setup Failed", f"Failed to {what}: {exc}", colour=ERROR_COLOUR),
        )

    async def _refresh_and_watch(guild: Any) -> tuple[Any, str]:
        settings = await relay().settings_for(guild.id)
        status, _ = await relay().update_channels(guild.id, bot.get_channel, fresh=True)
        bot.start_status_updates(guild.id)
        return status, interval_text(settings.update_interval_seconds)

    async def setupstatus_cmd(ctx: CommandContext) -> None:
        guild = ctx.message.guild
        try:
            created = await relay().create_status_channels(guild)
            _, every = await _refresh_and_watch(guild)
        except discord.HTTPException as exc:
            await _setup_failed(ctx, "create status channels", exc)
            return
        listing = "\n".join(f"• {channel.name}" for channel in created.values())
        description = (
            "✅ Status channels created successfully!\n\n"
            f"The following voice channels have been created:\n{listing}\n\n"
            f"The channels will update automatically every {every}."
        )
        await safe_reply(ctx.message, embed=notice_embed("📊 Server Status Channels", description, colour=INFO_COLOUR))

    async def statschannels_cmd(ctx: CommandContext) -> None:
        guild = ctx.message.guild
        try:
            created = await relay().create_stat_channels(guild)
            _, every = await _refresh_and_watch(guild)
        except discord.HTTPException as exc:
            await _setup_failed(ctx, "create stat channels", exc)
            return
        labels = {
            "stat_status_channel_id": "Server Status",
            "stat_players_channel_id": "Player Count",
            "stat_tps_channel_id": "Server TPS",
            "stat_memory_channel_id": "Memory Usage",
        }
        listing = "\n".join(f"• <#{created[field].id}> - {label}" for field, label in labels.items())
        description = (
            "✅ Server stats channels created successfully!\n\n"
            f"The following channels will update automatically:\n{listing}\n\n"
            f"Updates will occur every {every}."
        )
        await safe_reply(ctx.message, embed=notice_embed("📊 Server Statistics Channels", description))

    async def usechannel_cmd(ctx: CommandContext) -> None:
        guild = ctx.message.guild
        try:
            await relay().track_channels(guild.id, text_channel_id=ctx.message.channel.id)
            _, every = await _refresh_and_watch(guild)
        except discord.HTTPException as exc:
            await _setup_failed(ctx, "set dynamic status channel", exc)
            return
        description = (
            "✅ This channel will now update its name with live server status!\n\n"
            f"Updates will occur every {every}."
        )
        await safe_reply(ctx.message, embed=notice_embed("📝 Dynamic Status Channel", description))

    async def setserver_cmd(ctx: CommandContext) -> None:
        if not ctx.args:
            usage = (
                f"Usage: `{ctx.prefix}setserver <server_address> [port]`\n"
                f"Example: `{ctx.prefix}setserver {config.server_status_address} {config.server_status_port}`"
            )
            await safe_reply(ctx.message, embed=notice_embed("⚙️ Set Server Address", usage, colour=INFO_COLOUR))
            return
        address = ctx.args[0]
        port = _parse_int(ctx.args[1]) if len(ctx.args) >= 2 else config.server_status_port
        guild_id = ctx.message.guild.id
        try:
            await relay().set_server(guild_id, address, port if port is not None else 0)
        except ValueError:
            await safe_reply(ctx.message, embed=notice_embed("❌ Invalid Port", INVALID_PORT_REPLY, colour=ERROR_COLOUR))
            return
        status, _ = await relay().update_channels(guild_id, bot.get_channel, fresh=True)
        description = f"✅ Now monitoring server: **{address}:{port}**\n\n{state_line(status)}"
        await safe_reply(ctx.message, embed=notice_embed("⚙️ Server Address Updated", description))

    async def setinterval_cmd(ctx: CommandContext) -> None:
        if not ctx.args:
            usage = f"Usage: `{ctx.prefix}setinterval <seconds>`\nExample: `{ctx.prefix}setinterval 10`"
            await safe_reply(ctx.message, embed=notice_embed("⚙️ Set Update Interval", usage, colour=INFO_COLOUR))
            return
        seconds = _parse_int(ctx.args[0])
        try:
            await relay().set_interval(ctx.message.guild.id, seconds if seconds is not None else 0)
        except ValueError:
            await safe_reply(
                ctx.message,
                embed=notice_embed("❌ Invalid Interval", INVALID_INTERVAL_REPLY, colour=ERROR_COLOUR),
            )
            return
        every = interval_text(seconds)
        description = (
            f"✅ Update interval set to **{every}**.\n\n"
            f"Status channels will now update every {every}."
        )
        await safe_reply(ctx.message, embed=notice_embed("⚙️ Update Interval Changed", description))

    async def refresh_cmd(ctx: CommandContext) -> None:
        reply = await safe_reply(
            ctx.message,
            embed=notice_embed(
                "🔄 Updating Server Status",
                "Fetching latest server information, please wait...",
                colour=INFO_COLOUR,
            ),
        )
        try:
            status, _ = await relay().update_channels(ctx.message.guild.id, bot.get_channel, fresh=True)
        except discord.HTTPException as exc:
            log.warning("Status refresh failed guild_id=%s: %s", ctx.message.guild.id, exc)
            embed = notice_embed("❌ Update Failed", f"Failed to update status: {exc}", colour=ERROR_COLOUR)
        else:
            description = (
                "Server status updated successfully!\n\n"
                f"{state_line(status)}\nPlayers: {status.players_online}/{status.players_max}"
            )
            embed = notice_embed("✅ Status Updated", description, colour=SUCCESS_COLOUR)
        if not await safe_edit_message(reply, embed=embed):
            await safe_reply(ctx.message, embed=embed)

    def _connection_embed() -> discord.Embed:
        return connection_info_embed(config.server_status_address, config.server_status_port, config.bedrock_address)

    async def ip_cmd(ctx: CommandContext) -> None:
        await safe_reply(ctx.message, embed=_connection_embed())

    async def rules_cmd(ctx: CommandContext) -> None:
        await safe_reply(ctx.message, embeds=rules_embeds())

    @bot.tree.command(name="ip", description="Get the BitCraft server IP address")
    async def ip_slash(interaction):
        await bot._reply(interaction, embed=_connection_embed(), ephemeral=False)

    @bot.tree.command(name="rules", description="Shows the server rules")
    async def rules_slash(interaction):
        if interaction.guild is None:
            await bot._reply(interaction, GUILD_ONLY_REPLY, ephemeral=True)
            return
        await bot._reply(interaction, embeds=rules_embeds(), ephemeral=False)

    for command in (
        PrefixCommand(
            name="serverstatus",
            aliases=("status", "serverstats"),
            handler=serverstatus_cmd,
            description="Show the Minecraft server status.",
        ),
        PrefixCommand(
            name="players",
            aliases=("online", "who"),
            handler=players_cmd,
            description="List the players online.",
        ),
        PrefixCommand(
            name="performance",
            aliases=("perf", "tps", "lag"),
            handler=performance_cmd,
            description="Show server TPS and memory usage.",
        ),
        PrefixCommand(
            name="setupstatus",
            aliases=("createstatus",),
            handler=setupstatus_cmd,
            description="Create the live server status voice channels.",
            admin_only=True,
        ),
        PrefixCommand(
            name="statschannels",
            aliases=("setupstatchannels",),
            handler=statschannels_cmd,
            description="Create the server statistics voice channels.",
            admin_only=True,
        ),
        PrefixCommand(
            name="usechannel",
            aliases=("trackthischannel",),
            handler=usechannel_cmd,
            description="Rename this channel with the live server status.",
            admin_only=True,
        ),
        PrefixCommand(
            name="setserver",
            aliases=("changeserver",),
            handler=setserver_cmd,
            description="Change the monitored server: `<address> [port]`.",
            admin_only=True,
        ),
        PrefixCommand(
            name="setinterval",
            aliases=("updatetime",),
            handler=setinterval_cmd,
            description="Change how often status channels update, in seconds.",
            admin_only=True,
        ),
        PrefixCommand(
            name="refresh",
            aliases=("updatestatus",),
            handler=refresh_cmd,
            description="Update the status channels now.",
            admin_only=True,
        ),
        PrefixCommand(
            name="ip",
            aliases=("server", "connect"),
            handler=ip_cmd,
            description="Show how to connect to the Minecraft server.",
        ),
        PrefixCommand(
            name="rules",
            aliases=("rule", "guidelines", "r"),
            handler=rules_cmd,
            description="Show the server rules.",
        ),
    ):
        router.register(command)
