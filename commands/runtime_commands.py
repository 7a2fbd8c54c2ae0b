from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import discord
from discord import app_commands

from gateway.safety import safe_followup
from services.command_router import ADMIN_DENIED_REPLY
from services.invite_query_service import AuthorizationLevel, authorization_from_permissions
from services.invite_report_service import general_help_embed, invite_help_embed
from services.reminder_service import ReminderParseError, channel_sender, parse_reminder_args

if TYPE_CHECKING:
    from bot.runtime import InviteTrackerBot


log = logging.getLogger("bitcraft.commands")
GUILD_ONLY_REPLY = "This command can only be used in a server."


def _auth(interaction: Any) -> AuthorizationLevel:
    return authorization_from_permissions(getattr(getattr(interaction, "user", None), "guild_permissions", None))


def register_runtime_commands(bot: "InviteTrackerBot") -> None:
    async def _send_report(interaction: Any, build, *, ephemeral: bool = False) -> None:
        await bot._defer(interaction, ephemeral=ephemeral)
        embed, error = await bot.run_report(build)
        if embed is None:
            await safe_followup(interaction, error, ephemeral=True)
            return
        await safe_followup(interaction, embed=embed, ephemeral=ephemeral)

    @bot.tree.command(name="help", description="Show all bot commands")
    async def help_cmd(interaction):
        rows = [(f"/{cmd.name}", cmd.description) for cmd in sorted(bot.tree.get_commands(), key=lambda cmd: cmd.name)]
        await bot._reply(interaction, embed=general_help_embed(bot.router.prefixes, rows), ephemeral=True)

    @bot.tree.command(name="invitehelp", description="Show invite tracking commands")
    async def invitehelp_cmd(interaction):
        await bot._reply(interaction, embed=invite_help_embed("/"), ephemeral=True)

    @bot.tree.command(name="invites", description="Show the server invite leaderboard")
    async def invites_cmd(interaction):
        if interaction.guild is None:
            await bot._reply(interaction, GUILD_ONLY_REPLY, ephemeral=True)
            return
        await _send_report(interaction, bot.leaderboard_report(interaction.guild, _auth(interaction)))

    @bot.tree.command(name="userinvites", description="Show total and recent invites of a member")
    @app_commands.describe(user="Member to inspect (default: yourself)")
    async def userinvites_cmd(interaction, user: discord.Member | None = None):
        if interaction.guild is None:
            await bot._reply(interaction, GUILD_ONLY_REPLY, ephemeral=True)
            return
        target = user or interaction.user
        await _send_report(
            interaction,
            bot.inviter_report(interaction.guild, target=target, requester=interaction.user, auth=_auth(interaction)),
        )

    @bot.tree.command(name="invitestats", description="List active invites and their uses")
    async def invitestats_cmd(interaction):
        if interaction.guild is None:
            await bot._reply(interaction, GUILD_ONLY_REPLY, ephemeral=True)
            return
        await _send_report(interaction, bot.active_invites_report(interaction.guild, _auth(interaction)), ephemeral=True)

    @bot.tree.command(name="allinvites", description="Browse the full join history")
    @app_commands.describe(page="Page number (10 entries per page)")
    async def allinvites_cmd(interaction, page: app_commands.Range[int, 1, 10_000] = 1):
        if interaction.guild is None:
            await bot._reply(interaction, GUILD_ONLY_REPLY, ephemeral=True)
            return
        await _send_report(
            interaction,
            bot.join_history_report(interaction.guild, _auth(interaction), page=int(page)),
            ephemeral=True,
        )

    @bot.tree.command(name="createlogchannel", description="Create the invite log channel")
    async def createlogchannel_cmd(interaction):
        if interaction.guild is None:
            await bot._reply(interaction, GUILD_ONLY_REPLY, ephemeral=True)
            return
        if _auth(interaction) < AuthorizationLevel.ADMINISTRATOR:
            await bot._reply(interaction, "You do not have permission to use this command.", ephemeral=True)
            return
        await bot._defer(interaction, ephemeral=True)
        try:
            channel, created = await bot.create_invite_log_channel(interaction.guild)
        except discord.Forbidden:
            await safe_followup(interaction, "I don't have permission to create channels here.", ephemeral=True)
            return
        if created:
            await safe_followup(interaction, f"Successfully created invite log channel {channel.mention}", ephemeral=True)
        else:
            await safe_followup(interaction, f"Log channel {channel.mention} already exists.", ephemeral=True)

    @bot.tree.command(name="remind", description="Schedule a reminder in this channel")
    @app_commands.describe(
        time="Delay like 30s, 10m, 2h or 1d",
        mode="Send once or repeat",
        mention="Who to mention",
        message="Reminder text",
        embed="Optional embed text",
    )
    @app_commands.choices(
        mode=[
            app_commands.Choice(name="once", value="once"),
            app_commands.Choice(name="repeat", value="repeat"),
        ]
    )
    async def remind_cmd(
        interaction,
        time: str,
        mode: app_commands.Choice[str],
        mention: str,
        message: str,
        embed: str | None = None,
    ):
        if interaction.guild is None or interaction.channel is None:
            await bot._reply(interaction, GUILD_ONLY_REPLY, ephemeral=True)
            return
        if _auth(interaction) < AuthorizationLevel.MODERATOR:
            await bot._reply(interaction, ADMIN_DENIED_REPLY, ephemeral=True)
            return
        args = [time, mode.value, mention, *message.split()]
        if embed:
            args.extend(["embed", *embed.split()])
        try:
            request = parse_reminder_args(args)
        except ReminderParseError as exc:
            await bot._reply(interaction, str(exc), ephemeral=True)
            return
        bot.app.reminders.schedule(interaction.guild.id, request, channel_sender(interaction.channel))
        await bot._reply(interaction, request.confirmation, ephemeral=True)

    @bot.tree.command(name="stopreminders", description="Stop all reminders of this server")
    async def stopreminders_cmd(interaction):
        if interaction.guild is None:
            await bot._reply(interaction, GUILD_ONLY_REPLY, ephemeral=True)
            return
        if _auth(interaction) < AuthorizationLevel.MODERATOR:
            await bot._reply(interaction, ADMIN_DENIED_REPLY, ephemeral=True)
            return
        stopped = await bot.app.reminders.stop_guild(interaction.guild.id)
        if not stopped:
            await bot._reply(interaction, "There are no active reminders to stop.", ephemeral=True)
            return
        log.info("Reminders stopped by user_id=%s count=%s", interaction.user.id, stopped)
        await bot._reply(interaction, "All reminders have been stopped!", ephemeral=True)
