from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Sequence

import discord

from utils.text import EMBED_DESCRIPTION_LIMIT, EMBED_FIELD_LIMIT, parse_user_mention, truncate
from utils.time_utils import utc_now


log = logging.getLogger("bitcraft.massdm")

TEST_SEND_DELAY_SECONDS = 0.5
MASS_SEND_DELAY_SECONDS = 1.0
MAX_LISTED_ERRORS = 10

TEST_CONFIRM_COLOUR = 0x00FF99
MASS_CONFIRM_COLOUR = 0xFF9900
SENDING_COLOUR = 0x00FF00
CANCELLED_COLOUR = 0xFF0000
PLAIN_DM_COLOUR = 0x0099FF
EMBED_DM_COLOUR = 0x5865F2
DM_FOOTER = "Sent by: Bitcraft Network"

ADMIN_REQUIRED_REPLY = "❌ You need Administrator permissions to use this command."
EMPTY_MESSAGE_REPLY = "❌ Please provide a message to send."
MISSING_TEST_MESSAGE_REPLY = "❌ Please provide a message after the user mentions."


class MassDmParseError(ValueError):
    pass


def usage_text(prefix: str = "!") -> str:
    cmd = f"{prefix}massdm"
    return (
        "❌ Please provide a message to send.\n**Usage:**\n"
        f"• `{cmd} <message>` - Send to all members\n"
        f"• `{cmd} @user1 @user2 <message>` - Send to specific users\n"
        f"• `{cmd} test @user1 @user2 <message>` - Test with specific users\n"
        f"• `{cmd} embed title:<title> body:<message>` - Send as custom embed\n"
        f"• `{cmd} embed title:<title> body:<message> @user1 @user2` - Send custom embed to specific users\n"
        f"• `{cmd} test embed title:<title> body:<message> @user` - Test embed with specific users"
    )


@dataclass(frozen=True, slots=True)
class MassDmRequest:
    message: str = ""
    test_mode: bool = False
    embed_mode: bool = False
    title: str = ""
    body: str = ""
    mention_ids: tuple[int, ...] = ()

    @property
    def custom_embed(self) -> bool:
        return self.embed_mode and bool(self.title or self.body)

    @property
    def targeted(self) -> bool:
        return self.test_mode or bool(self.mention_ids)

    @property
    def send_delay(self) -> float:
        return TEST_SEND_DELAY_SECONDS if self.test_mode else MASS_SEND_DELAY_SECONDS

    @property
    def display_message(self) -> str:
        if self.custom_embed:
            return f"**Title:** {self.title or 'Default Title'}\n**Body:** {self.body or 'No body provided'}"
        return self.message

    @property
    def mode_label(self) -> str:
        kind = "Embed DM" if self.embed_mode else "DM"
        return f"{'Test' if self.test_mode else 'Mass'} {kind}"

    @property
    def mode_phrase(self) -> str:
        kind = "embed DM" if self.embed_mode else "DM"
        return f"{'Test' if self.test_mode else 'Mass'} {kind}"


def _is_mention(token: str) -> bool:
    return token.startswith("<@")


def _collect(tokens: Sequence[str], start: int, *, stop_at_body: bool) -> str:
    parts = [tokens[start].split(":", 1)[1]]
    for token in tokens[start + 1 :]:
        if _is_mention(token) or (stop_at_body and token.lower().startswith("body:")):
            break
        parts.append(token)
    return " ".join(parts).strip()


def _find_prefixed(tokens: Sequence[str], prefix: str) -> int | None:
    for index, token in enumerate(tokens):
        if token.lower().startswith(prefix):
            return index
    return None


def parse_massdm_args(args: Sequence[str], *, prefix: str = "!") -> MassDmRequest:
    """Parses ``[test] [embed] [title:..] [body:..] [@user ...] <message>``."""
    tokens = list(args)
    if not tokens:
        raise MassDmParseError(usage_text(prefix))

    test_mode = tokens[0].lower() == "test"
    embed_index = 1 if test_mode else 0
    embed_mode = len(tokens) > embed_index and tokens[embed_index].lower() == "embed"
    mention_ids = tuple(
        dict.fromkeys(user_id for user_id in (parse_user_mention(t) for t in tokens if _is_mention(t)) if user_id)
    )

    title = body = ""
    if embed_mode:
        remaining = tokens[embed_index + 1 :]
        title_at = _find_prefixed(remaining, "title:")
        body_at = _find_prefixed(remaining, "body:")
        if title_at is not None:
            title = _collect(remaining, title_at, stop_at_body=True)
        if body_at is not None:
            body = _collect(remaining, body_at, stop_at_body=False)
    custom = embed_mode and bool(title or body)

    message = ""
    if test_mode:
        embed_hint = " embed" if embed_mode else ""
        param_hint = " title:<title> body:<message>" if embed_mode else ""
        usage = f"Usage: `{prefix}massdm test{embed_hint}{param_hint} @user1 @user2 <message>`"
        required = 3 if custom else (4 if embed_mode else 3)
        if len(tokens) < required:
            raise MassDmParseError(f"❌ Test mode requires at least one user mention and a message.\n{usage}")
        if not mention_ids:
            raise MassDmParseError(f"❌ Please mention at least one user for testing.\n{usage}")
        if not custom:
            start = embed_index + (1 if embed_mode else 0)
            while start < len(tokens) and _is_mention(tokens[start]):
                start += 1
            if start >= len(tokens):
                raise MassDmParseError(MISSING_TEST_MESSAGE_REPLY)
            message = " ".join(tokens[start:])
    elif not custom:
        start = 1 if embed_mode else 0
        message = " ".join(token for token in tokens[start:] if not _is_mention(token)).strip()
        if not message:
            raise MassDmParseError(EMPTY_MESSAGE_REPLY)

    return MassDmRequest(
        message=message,
        test_mode=test_mode,
        embed_mode=embed_mode,
        title=title,
        body=body,
        mention_ids=mention_ids,
    )


def member_tag(member: Any) -> str:
    name = getattr(member, "name", None) or str(getattr(member, "id", "unknown"))
    discriminator = getattr(member, "discriminator", None)
    if discriminator and discriminator != "0":
        return f"{name}#{discriminator}"
    return str(name)


def confirm_embed(
    request: MassDmRequest,
    *,
    recipient_count: int,
    recipient_names: Iterable[str] = (),
    prefix: str = "!",
) -> discord.Embed:
    kind = "embed " if request.embed_mode else ""
    if request.test_mode:
        icon = "🧪📋" if request.embed_mode else "🧪"
        description = (
            f"**Test Mode**: Send {kind}message to **{recipient_count}** user(s)?\n"
            f"**Users:** {', '.join(recipient_names)}\n\n**Message:**\n{request.display_message}"
        )
        colour = TEST_CONFIRM_COLOUR
    else:
        icon = "⚠️📋" if request.embed_mode else "⚠️"
        audience = "mentioned user(s)" if request.mention_ids else "server members"
        description = (
            f"Are you sure you want to send this {kind}message to **{recipient_count}** {audience}?\n\n"
            f"**Message:**\n{request.display_message}\n\n"
            f"💡 **Tip:** Use `{prefix}massdm test {kind}@user <message>` to test first!"
        )
        colour = MASS_CONFIRM_COLOUR
    embed = discord.Embed(
        title=f"{icon} {request.mode_label} Confirmation",
        description=truncate(description, EMBED_DESCRIPTION_LIMIT),
        colour=colour,
    )
    embed.set_footer(text="Click Confirm or Cancel below (30s timeout)")
    return embed


def sending_embed(request: MassDmRequest) -> discord.Embed:
    if request.test_mode:
        title = "🧪📋 Sending Test Embed DM..." if request.embed_mode else "🧪 Sending Test DM..."
        description = "Sending test embed messages..." if request.embed_mode else "Sending test messages..."
    else:
        title = "📤📋 Sending Mass Embed DM..." if request.embed_mode else "📤 Sending Mass DM..."
        kind = "embed messages" if request.embed_mode else "messages"
        description = f"Please wait while {kind} are being sent..."
    return discord.Embed(title=title, description=description, colour=SENDING_COLOUR)


def cancelled_embed(request: MassDmRequest) -> discord.Embed:
    return discord.Embed(
        title=f"❌ {request.mode_label} Cancelled",
        description=f"{request.mode_phrase} operation has been cancelled.",
        colour=CANCELLED_COLOUR,
    )


def timeout_embed(request: MassDmRequest) -> discord.Embed:
    if request.test_mode:
        title = "⏰ Test Embed Confirmation Timeout" if request.embed_mode else "⏰ Test Confirmation Timeout"
    else:
        title = "⏰ Mass Embed Confirmation Timeout" if request.embed_mode else "⏰ Confirmation Timeout"
    return discord.Embed(
        title=title,
        description=f"{request.mode_phrase} cancelled due to no response within 30 seconds.",
        colour=CANCELLED_COLOUR,
    )


def no_targets_embed() -> discord.Embed:
    return discord.Embed(
        title="⚠️ No Target Members",
        description="No valid members found to send messages to.",
        colour=MASS_CONFIRM_COLOUR,
    )


def dm_embed(
    request: MassDmRequest,
    *,
    guild_name: str,
    icon_url: str | None = None,
    now: datetime | None = None,
) -> discord.Embed:
    test_suffix = " (TEST MODE)" if request.test_mode else ""
    if request.embed_mode:
        embed = discord.Embed(
            title=request.title or f"📨 Message from {guild_name}",
            description=request.body or request.message,
            colour=EMBED_DM_COLOUR,
            timestamp=now or utc_now(),
        )
        embed.set_footer(text=f"{guild_name}{test_suffix}", icon_url=icon_url)
        return embed
    icon = "🧪" if request.test_mode else "📨"
    embed = discord.Embed(
        title=f"{icon} A Message from {guild_name}",
        description=request.message,
        colour=PLAIN_DM_COLOUR,
        timestamp=now or utc_now(),
    )
    embed.set_footer(text=f"{DM_FOOTER}{test_suffix}", icon_url=icon_url)
    return embed


@dataclass(slots=True)
class DeliveryReport:
    attempted: int = 0
    delivered: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)


async def deliver_direct_messages(
    members: Sequence[Any],
    embed: discord.Embed,
    *,
    delay_seconds: float,
    sleep=asyncio.sleep,
) -> DeliveryReport:
    """Sends ``embed`` to each member one by one; failures are recorded, never raised."""
    report = DeliveryReport(attempted=len(members))
    for index, member in enumerate(members, start=1):
        tag = member_tag(member)
        if getattr(member, "bot", False):
            report.errors.append(f"{tag}: Is a bot")
            continue
        try:
            await member.send(embed=embed)
        except Exception as exc:
            log.warning("Direct message to user_id=%s failed: %s", getattr(member, "id", None), exc)
            report.errors.append(f"{tag}: {exc}")
            continue
        report.delivered.append(tag)
        if index < len(members):
            await sleep(delay_seconds)
    log.info(
        "Direct messages delivered=%s failed=%s attempted=%s",
        len(report.delivered),
        report.failed,
        report.attempted,
    )
    return report


def result_embed(request: MassDmRequest, report: DeliveryReport, *, prefix: str = "!") -> discord.Embed:
    if request.test_mode:
        title = "🧪📋 Test Embed DM Results" if request.embed_mode else "🧪 Test DM Results"
    else:
        title = "📊📋 Mass Embed DM Results" if request.embed_mode else "📊 Mass DM Results"
    delivered = len(report.delivered)
    embed = discord.Embed(
        title=title,
        colour=SENDING_COLOUR if delivered > report.failed else MASS_CONFIRM_COLOUR,
        timestamp=utc_now(),
    )
    if request.test_mode and delivered:
        kind = " embed" if request.embed_mode else ""
        embed.description = f"✅ Test completed! You can now use `{prefix}massdm{kind} <message>` for the full server."
    embed.add_field(name="✅ Successful", value=str(delivered), inline=True)
    embed.add_field(name="❌ Failed", value=str(report.failed), inline=True)
    embed.add_field(name="👥 Total Attempted", value=str(report.attempted), inline=True)
    if 0 < report.failed <= MAX_LISTED_ERRORS:
        embed.add_field(name="❌ Error Details", value=truncate("\n".join(report.errors), EMBED_FIELD_LIMIT), inline=False)
    elif report.failed > MAX_LISTED_ERRORS:
        embed.add_field(
            name="❌ Error Summary",
            value=f"{report.failed} errors occurred. Check console logs for details.",
            inline=False,
        )
    return embed
