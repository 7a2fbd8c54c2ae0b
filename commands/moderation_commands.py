from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from gateway.safety import safe_reply
from services.command_router import CommandContext, PrefixCommand
from services.invite_query_service import AuthorizationLevel, authorization_from_permissions
from services.massdm_service import (
    ADMIN_REQUIRED_REPLY,
    MassDmParseError,
    MassDmRequest,
    confirm_embed,
    member_tag,
    parse_massdm_args,
)
from services.prune_service import missing_permission_reply, parse_prune_amount, prune_prompt_embed
from views.confirm_views import MassDmConfirmView, PruneConfirmView

if TYPE_CHECKING:
    from bot.runtime import InviteTrackerBot


log = logging.getLogger("bitcraft.commands")


def _icon_url(guild: Any) -> str | None:
    icon = getattr(guild, "icon", None)
    url = getattr(icon, "url", None)
    return str(url) if url else None


def mentioned_members(guild: Any, request: MassDmRequest) -> list[Any]:
    members = (guild.get_member(user_id) for user_id in request.mention_ids)
    return [member for member in members if member is not None]


async def human_members(guild: Any) -> list[Any]:
    return [member async for member in guild.fetch_members(limit=None) if not getattr(member, "bot", False)]


def recipient_count(guild: Any, request: MassDmRequest) -> int:
    if request.targeted:
        return len(request.mention_ids)
    return sum(1 for member in getattr(guild, "members", ()) if not getattr(member, "bot", False))


def register_moderation_commands(bot: "InviteTrackerBot") -> None:
    router = bot.router

    async def prune_cmd(ctx: CommandContext) -> None:
        message = ctx.message
        channel = message.channel
        denied = missing_permission_reply(
            channel.permissions_for(message.author),
            channel.permissions_for(message.guild.me),
        )
        if denied is not None:
            await safe_reply(message, denied)
            return

        amount = parse_prune_amount(ctx.args)
        view = PruneConfirmView(message.author.id, channel, amount)
        view.message = await safe_reply(message, embed=prune_prompt_embed(channel.id, amount), view=view)
        if view.message is None:
            view.stop()
            return
        log.info(
            "Prune requested channel_id=%s user_id=%s amount=%s",
            channel.id,
            message.author.id,
            amount if amount is not None else "all",
        )

    async def massdm_cmd(ctx: CommandContext) -> None:
        message = ctx.message
        guild = message.guild
        if authorization_from_permissions(getattr(message.author, "guild_permissions", None)) < (
            AuthorizationLevel.ADMINISTRATOR
        ):
            log.warning("Mass DM denied user_id=%s guild_id=%s", message.author.id, guild.id)
            await safe_reply(message, ADMIN_REQUIRED_REPLY)
            return
        try:
            request = parse_massdm_args(ctx.args, prefix=ctx.prefix)
        except MassDmParseError as exc:
            await safe_reply(message, str(exc))
            return

        names = [member_tag(member) for member in mentioned_members(guild, request)]

        async def resolve_targets() -> list[Any]:
            if request.targeted:
                return mentioned_members(guild, request)
            return await human_members(guild)

        view = MassDmConfirmView(
            message.author.id,
            request,
            resolve_targets=resolve_targets,
            guild_name=guild.name,
            guild_icon_url=_icon_url(guild),
            command_message=message,
            prefix=ctx.prefix,
        )
        embed = confirm_embed(
            request,
            recipient_count=recipient_count(guild, request),
            recipient_names=names,
            prefix=ctx.prefix,
        )
        view.message = await safe_reply(message, embed=embed, view=view)
        if view.message is None:
            view.stop()
            return
        log.info(
            "Mass DM requested guild_id=%s user_id=%s test=%s embed=%s targeted=%s",
            guild.id,
            message.author.id,
            request.test_mode,
            request.embed_mode,
            request.targeted,
        )

    router.register(
        PrefixCommand(
            name="prune",
            aliases=("clear", "purge"),
            handler=prune_cmd,
            description="Delete the last 1-100 messages of this channel, or all of them.",
            admin_only=True,
        )
    )
    router.register(
        PrefixCommand(
            name="massdm",
            aliases=("mdm", "dm"),
            handler=massdm_cmd,
            description="Direct message members: `[test] [embed title:<t> body:<b>] [@users] <message>`.",
        )
    )
