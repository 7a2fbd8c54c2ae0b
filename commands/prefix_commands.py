from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import discord

from gateway.safety import safe_delete_message, safe_reply
from services.command_router import CommandContext, PrefixCommand
from services.invite_query_service import AuthorizationLevel, authorization_from_permissions
from services.invite_report_service import general_help_embed, invite_help_embed
from services.reminder_service import ReminderParseError, channel_sender, parse_reminder_args

if TYPE_CHECKING:
    from bot.runtime import InviteTrackerBot


log = logging.getLogger("bitcraft.commands")
TEST_WELCOME_CLEANUP_SECONDS = 10


def _auth(member: Any) -> AuthorizationLevel:
    return authorization_from_permissions(getattr(member, "guild_permissions", None))


async def _send_report(ctx: CommandContext, embed: discord.Embed | None, error: str | None) -> None:
    if embed is None:
        await safe_reply(ctx.message, error)
        return
    await safe_reply(ctx.message, embed=embed)


def register_prefix_commands(bot: "InviteTrackerBot") -> None:
    router = bot.router

    async def invites_cmd(ctx: CommandContext) -> None:
        guild = ctx.message.guild
        embed, error = await bot.run_report(bot.leaderboard_report(guild, _auth(ctx.message.author)))
        await _send_report(ctx, embed, error)

    async def userinvites_cmd(ctx: CommandContext) -> None:
        guild = ctx.message.guild
        author = ctx.message.author
        target = author
        if ctx.args:
            target = bot.resolve_member(guild, " ".join(ctx.args))
            if target is None:
                await safe_reply(ctx.message, "Could not find that user.")
                return
        embed, error = await bot.run_report(
            bot.inviter_report(guild, target=target, requester=author, auth=_auth(author))
        )
        await _send_report(ctx, embed, error)

    async def invitestats_cmd(ctx: CommandContext) -> None:
        guild = ctx.message.guild
        embed, error = await bot.run_report(bot.active_invites_report(guild, _auth(ctx.message.author)))
        await _send_report(ctx, embed, error)

    async def allinvites_cmd(ctx: CommandContext) -> None:
        page = int(ctx.args[0]) if ctx.args and ctx.args[0].isdigit() else 1
        guild = ctx.message.guild
        embed, error = await bot.run_report(bot.join_history_report(guild, _auth(ctx.message.author), page=page))
        await _send_report(ctx, embed, error)

    async def createlogchannel_cmd(ctx: CommandContext) -> None:
        if _auth(ctx.message.author) < AuthorizationLevel.ADMINISTRATOR:
            await safe_reply(ctx.message, "You do not have permission to use this command.")
            return
        try:
            channel, created = await bot.create_invite_log_channel(ctx.message.guild)
        except discord.Forbidden:
            await safe_reply(ctx.message, "I don't have permission to create channels here.")
            return
        if created:
            await safe_reply(ctx.message, f"Successfully created invite log channel {channel.mention}")
        else:
            await safe_reply(ctx.message, f"Log channel {channel.mention} already exists.")

    async def invitehelp_cmd(ctx: CommandContext) -> None:
        await safe_reply(ctx.message, embed=invite_help_embed(ctx.prefix))

    async def help_cmd(ctx: CommandContext) -> None:
        rows = [(f"{ctx.prefix}{command.name}", command.description) for command in router.commands]
        await safe_reply(ctx.message, embed=general_help_embed(router.prefixes, rows))

    async def remind_cmd(ctx: CommandContext) -> None:
        try:
            request = parse_reminder_args(ctx.args)
        except ReminderParseError as exc:
            await safe_reply(ctx.message, str(exc))
            return
        await safe_reply(ctx.message, request.confirmation)
        bot.app.reminders.schedule(ctx.message.guild.id, request, channel_sender(ctx.message.channel))

    async def stop_cmd(ctx: CommandContext) -> None:
        stopped = await bot.app.reminders.stop_guild(ctx.message.guild.id)
        if not stopped:
            await safe_reply(ctx.message, "There are no active reminders to stop.")
            return
        await safe_reply(ctx.message, "All reminders have been stopped!")
        log.info("Reminders stopped by user_id=%s count=%s", ctx.message.author.id, stopped)

    async def testwelcome_cmd(ctx: CommandContext) -> None:
        await safe_delete_message(ctx.message)
        sent = await bot.welcome_member(ctx.message.author)
        if sent is not None:
            await sent.delete(delay=TEST_WELCOME_CLEANUP_SECONDS)
        log.info("Test welcome triggered by user_id=%s", ctx.message.author.id)

    router.register(
        PrefixCommand(
            name="invites",
            aliases=("leaderboard", "invitelist"),
            handler=invites_cmd,
            description="Show the server invite leaderboard.",
        )
    )
    router.register(
        PrefixCommand(
            name="userinvites",
            aliases=("myinvites", "inviter", "uit"),
            handler=userinvites_cmd,
            description="Show invites of yourself or of another member.",
        )
    )
    router.register(
        PrefixCommand(
            name="invitestats",
            aliases=("activeinvites", "currentinvites"),
            handler=invitestats_cmd,
            description="List active invites and their uses.",
        )
    )
    router.register(
        PrefixCommand(
            name="allinvites",
            aliases=("invitehistory", "invitelogs"),
            handler=allinvites_cmd,
            description="Browse the full join history.",
        )
    )
    router.register(
        PrefixCommand(
            name="createlogchannel",
            aliases=("setupinvitelogs", "createinvitelog", "cti"),
            handler=createlogchannel_cmd,
            description="Create the invite log channel.",
            admin_only=True,
        )
    )
    router.register(
        PrefixCommand(
            name="invitehelp",
            aliases=("invitecommands",),
            handler=invitehelp_cmd,
            description="Show invite tracking commands.",
        )
    )
    router.register(
        PrefixCommand(
            name="help",
            aliases=("commands", "info"),
            handler=help_cmd,
            description="Show all commands.",
        )
    )
    router.register(
        PrefixCommand(
            name="remind",
            aliases=("reminder", "remindme"),
            handler=remind_cmd,
            description="Set a reminder: `<time>(s/m/h/d) <once/repeat> <mention> <message>`.",
            admin_only=True,
        )
    )
    router.register(
        PrefixCommand(
            name="stop",
            aliases=("stopreminder", "stoprm"),
            handler=stop_cmd,
            description="Stop all reminders of this server.",
            admin_only=True,
        )
    )
    router.register(
        PrefixCommand(
            name="testwelcome",
            aliases=("t", "tw"),
            handler=testwelcome_cmd,
            description="Post a test welcome message.",
            admin_only=True,
        )
    )
