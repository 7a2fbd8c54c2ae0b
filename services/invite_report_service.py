from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterable, Sequence

import discord

from services.ledger_service import HistoryPage, LeaderboardRow
from services.invite_query_service import ActiveInvitesReport, InviterReport
from services.notification_service import UNKNOWN_USER_NAME
from utils.text import EMBED_DESCRIPTION_LIMIT, EMBED_FIELD_LIMIT, short_list, truncate
from utils.time_utils import DEFAULT_DISPLAY_TIMEZONE, format_display_time, utc_now


log = logging.getLogger("bitcraft.commands")

REPORT_COLOUR = 0x3498DB
HELP_COLOUR = 0x9B59B6

NameResolver = Callable[[str], Awaitable[str | None]]


async def resolve_names(user_ids: Iterable[str], resolver: NameResolver) -> dict[str, str]:
    names: dict[str, str] = {}
    for user_id in user_ids:
        key = str(user_id)
        if key in names:
            continue
        try:
            resolved = await resolver(key)
        except Exception:
            log.debug("Name lookup failed for user_id=%s", key, exc_info=True)
            resolved = None
        names[key] = resolved or UNKNOWN_USER_NAME
    return names


def leaderboard_embed(rows: Sequence[LeaderboardRow], names: dict[str, str]) -> discord.Embed:
    embed = discord.Embed(title="Server Invite Leaderboard", colour=discord.Colour(REPORT_COLOUR))
    if not rows:
        embed.description = "No invite data has been recorded yet."
        return embed
    lines = []
    for position, row in enumerate(rows, start=1):
        label = "invite" if row.count == 1 else "invites"
        lines.append(f"{position}. **{names.get(row.inviter_id, UNKNOWN_USER_NAME)}**: {row.count} {label}")
    embed.description = truncate("\n".join(lines), EMBED_DESCRIPTION_LIMIT)
    return embed


def inviter_report_embed(
    report: InviterReport,
    *,
    target_name: str,
    timezone_name: str = DEFAULT_DISPLAY_TIMEZONE,
) -> discord.Embed:
    embed = discord.Embed(title=f"Invite Information for {target_name}", colour=discord.Colour(REPORT_COLOUR))
    embed.add_field(name="Total Invites", value=str(report.total_invites), inline=False)
    if report.recent:
        lines = [
            f"• {entry.member_display_name} (joined: {format_display_time(entry.joined_at, timezone_name)}) "
            f"using code: {entry.invite_code}"
            for entry in report.recent
        ]
        embed.add_field(name="Recent Invites", value=truncate("\n".join(lines), EMBED_FIELD_LIMIT), inline=False)
    else:
        embed.description = f"{target_name} hasn't invited anyone yet."
    return embed


def active_invites_embed(report: ActiveInvitesReport) -> discord.Embed:
    embed = discord.Embed(title="Current Server Invite Stats", colour=discord.Colour(REPORT_COLOUR))
    if not report.invites:
        embed.description = "No active invites found."
    else:
        lines = [
            f"• Code: **{invite.code}** by {invite.inviter_name or UNKNOWN_USER_NAME} ({invite.uses} uses)"
            for invite in report.invites
        ]
        embed.description = truncate(short_list(lines, limit=40), EMBED_DESCRIPTION_LIMIT)
    if report.stale:
        embed.set_footer(text="Live invite list unavailable; showing last known snapshot.")
    return embed


def join_history_embed(
    page: HistoryPage,
    names: dict[str, str],
    *,
    timezone_name: str = DEFAULT_DISPLAY_TIMEZONE,
) -> discord.Embed:
    embed = discord.Embed(title="All Server Invites", colour=discord.Colour(REPORT_COLOUR))
    if not page.entries:
        embed.description = "No invite history has been recorded yet."
    else:
        lines = [
            f"• **{names.get(entry.inviter_id, UNKNOWN_USER_NAME)}** invited **{entry.member_display_name}** "
            f"({format_display_time(entry.joined_at, timezone_name)}) with code: {entry.invite_code}"
            for entry in page.entries
        ]
        embed.description = truncate("\n".join(lines), EMBED_DESCRIPTION_LIMIT)
    embed.set_footer(text=f"Page {page.page}/{page.total_pages} • Total: {page.total_entries} invites")
    return embed


def invite_help_embed(prefix: str) -> discord.Embed:
    embed = discord.Embed(
        title="Invite Tracking Commands",
        description="Commands for checking who invited whom.",
        colour=discord.Colour(HELP_COLOUR),
    )
    embed.add_field(name=f"{prefix}invites", value="Show the server invite leaderboard.", inline=False)
    embed.add_field(
        name=f"{prefix}userinvites [@user]",
        value="Show total and recent invites for yourself, or for another member (moderators).",
        inline=False,
    )
    embed.add_field(name=f"{prefix}invitestats", value="List active invites and their uses (moderators).", inline=False)
    embed.add_field(name=f"{prefix}allinvites [page]", value="Browse the full join history (administrators).", inline=False)
    embed.add_field(
        name=f"{prefix}createlogchannel",
        value="Create a private invite log channel (administrators).",
        inline=False,
    )
    return embed


def general_help_embed(prefixes: Sequence[str], commands: Iterable[tuple[str, str]]) -> discord.Embed:
    prefix_text = ", ".join(f"`{prefix}`" for prefix in prefixes) or "-"
    embed = discord.Embed(
        title="Bot Commands",
        description=f"Prefixes: {prefix_text}. Slash commands are also available.",
        colour=discord.Colour(HELP_COLOUR),
    )
    chunks: list[list[str]] = [[]]
    size = 0
    for name, description in commands:
        line = truncate(f"**{name}**: {description}", EMBED_FIELD_LIMIT)
        if chunks[-1] and size + len(line) + 1 > EMBED_FIELD_LIMIT:
            chunks.append([])
            size = 0
        chunks[-1].append(line)
        size += len(line) + 1
    for index, chunk in enumerate(chunks):
        name = "Commands" if index == 0 else "More Commands"
        embed.add_field(name=name, value="\n".join(chunk) or "-", inline=False)
    return embed


def log_channel_ready_embed() -> discord.Embed:
    embed = discord.Embed(
        title="Invite Logging System Activated",
        description="This channel has been set up to log all invite-related activities.",
        colour=discord.Colour(0x2ECC71),
        timestamp=utc_now(),
    )
    embed.add_field(
        name="Features",
        value=(
            "• Records who invited each new member\n"
            "• Tracks which invite codes are used\n"
            "• Keeps detailed timestamps of joins\n"
            "• Maintains invitation history"
        ),
        inline=False,
    )
    embed.set_footer(text="All new member joins will now be logged automatically in this channel")
    return embed
