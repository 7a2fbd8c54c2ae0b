from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable

import discord

from services.attribution_service import AttributionOutcome, AttributionResult
from services.errors import NotificationFailure
from utils.time_utils import DEFAULT_DISPLAY_TIMEZONE, as_utc, format_display_time, utc_now


log = logging.getLogger("bitcraft.invites")

ATTRIBUTED_COLOUR = 0x2ECC71
VANITY_COLOUR = 0x3498DB
UNDETERMINED_COLOUR = 0xE74C3C

UNKNOWN_USER_NAME = "Unknown User"

ChannelResolver = Callable[[int], Awaitable[Any | None]]


@dataclass(frozen=True, slots=True)
class JoinedMember:
    member_id: int
    display_name: str
    avatar_url: str | None = None

    @property
    def mention(self) -> str:
        return f"<@{self.member_id}>"


@dataclass(frozen=True, slots=True)
class InviterDetails:
    inviter_id: str
    name: str
    avatar_url: str | None = None
    total_invites: int = 0


def build_join_embed(
    *,
    result: AttributionResult,
    member: JoinedMember,
    inviter: InviterDetails | None = None,
    joined_at: datetime | None = None,
    timezone_name: str = DEFAULT_DISPLAY_TIMEZONE,
) -> discord.Embed:
    joined = as_utc(joined_at or utc_now())
    joined_text = format_display_time(joined, timezone_name)

    if result.outcome is AttributionOutcome.ATTRIBUTED and inviter is not None:
        embed = discord.Embed(
            title="New Member Joined",
            description=f"{member.mention} was invited by {inviter.name}",
            colour=discord.Colour(ATTRIBUTED_COLOUR),
            timestamp=joined,
        )
        embed.add_field(name="Member", value=f"{member.display_name} ({member.mention})", inline=True)
        embed.add_field(name="Invited By", value=f"{inviter.name} (<@{inviter.inviter_id}>)", inline=True)
        embed.add_field(name="Invite Code", value=result.invite_code or "unknown", inline=True)
        embed.add_field(name="Joined At", value=joined_text, inline=True)
        embed.add_field(name="Total Invites", value=str(inviter.total_invites), inline=True)
        if result.ambiguous:
            embed.add_field(
                name="Note",
                value=f"Several invites were used at once ({', '.join(result.candidates)}); best match shown.",
                inline=False,
            )
        if inviter.avatar_url:
            embed.set_image(url=inviter.avatar_url)
        embed.set_footer(text=f"Inviter ID: {inviter.inviter_id}", icon_url=inviter.avatar_url)
    elif result.outcome is AttributionOutcome.VANITY_URL:
        embed = discord.Embed(
            title="New Member Joined",
            description=f"{member.mention} joined the server",
            colour=discord.Colour(VANITY_COLOUR),
            timestamp=joined,
        )
        embed.add_field(name="Invite Info", value="Joined using the server's vanity URL", inline=False)
        embed.add_field(name="Date & Time", value=joined_text, inline=False)
        embed.set_footer(text=f"Member ID: {member.member_id}")
    else:
        embed = discord.Embed(
            title="New Member Joined",
            description=f"{member.mention} joined the server",
            colour=discord.Colour(UNDETERMINED_COLOUR),
            timestamp=joined,
        )
        embed.add_field(name="Invite Info", value="Could not determine which invite was used", inline=False)
        embed.add_field(name="Date & Time", value=joined_text, inline=False)
        embed.set_footer(text=f"Member ID: {member.member_id}")

    if member.avatar_url:
        embed.set_thumbnail(url=member.avatar_url)
    return embed


class JoinNotifier:
    """Posts join records to the guild's invite log channel. Never raises."""

    def __init__(self, channel_resolver: ChannelResolver, *, timezone_name: str = DEFAULT_DISPLAY_TIMEZONE) -> None:
        self._channel_resolver = channel_resolver
        self.timezone_name = timezone_name

    async def notify(
        self,
        guild_id: int,
        result: AttributionResult,
        member: JoinedMember,
        *,
        inviter: InviterDetails | None = None,
        joined_at: datetime | None = None,
    ) -> bool:
        try:
            channel = await self._channel_resolver(int(guild_id))
            if channel is None:
                log.debug("No invite log channel for guild_id=%s, skipping join notification", guild_id)
                return False
            embed = build_join_embed(
                result=result,
                member=member,
                inviter=inviter,
                joined_at=joined_at,
                timezone_name=self.timezone_name,
            )
            await channel.send(embed=embed)
            return True
        except Exception as exc:
            failure = NotificationFailure(f"guild {guild_id}: join notification for member {member.member_id} failed: {exc}")
            failure.__cause__ = exc
            log.warning("%s", failure, exc_info=exc)
            return False
