from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Sequence

import discord

from utils.time_utils import utc_now


log = logging.getLogger("bitcraft.moderation")

PRUNE_MAX_AMOUNT = 100
PRUNE_BATCH_SIZE = 100
PRUNE_BATCH_PAUSE_SECONDS = 1.0
PRUNE_PROGRESS_EVERY_BATCHES = 5
# Discord only bulk deletes messages younger than two weeks
BULK_DELETE_MAX_AGE = timedelta(days=14)

CONFIRM_COLOUR = 0xFF0000
DELETING_COLOUR = 0xFFA500

USER_MISSING_PERMISSION_REPLY = "❌ You need `Manage Messages` permission to use this command."
BOT_MISSING_PERMISSION_REPLY = "❌ I need `Manage Messages` permission to delete messages."
PRUNE_CANCELLED_REPLY = "❌ Message deletion cancelled."
PRUNE_TIMEOUT_REPLY = "⏰ Confirmation timed out. Message deletion cancelled."
PRUNE_FORBIDDEN_REPLY = "❌ I don't have permission to delete messages in this channel."
PRUNE_TOO_OLD_REPLY = "❌ Cannot delete messages older than 14 days due to Discord limitations."
PRUNE_FAILED_REPLY = "❌ Failed to delete messages."

_MISSING_PERMISSIONS_CODE = 50013
_TOO_OLD_CODE = 50034

ProgressCallback = Callable[[int], Awaitable[None]]


def parse_prune_amount(args: Sequence[str]) -> int | None:
    """``None`` means every deletable message of the channel."""
    if not args:
        return None
    try:
        amount = int(args[0])
    except ValueError:
        return None
    if 1 <= amount <= PRUNE_MAX_AMOUNT:
        return amount
    return None


def missing_permission_reply(author_permissions: Any, bot_permissions: Any) -> str | None:
    if not getattr(author_permissions, "manage_messages", False):
        return USER_MISSING_PERMISSION_REPLY
    if not getattr(bot_permissions, "manage_messages", False):
        return BOT_MISSING_PERMISSION_REPLY
    return None


def prune_prompt_embed(channel_id: int, amount: int | None) -> discord.Embed:
    if amount is None:
        question = f"Are you sure you want to **delete ALL messages** in <#{channel_id}> (up to last 2 weeks)?"
    else:
        question = f"Are you sure you want to delete **{amount}** messages in <#{channel_id}>?"
    return discord.Embed(
        title="🧹 Confirm Message Deletion",
        description=f"{question}\n\n⚠️ This action cannot be undone.",
        colour=CONFIRM_COLOUR,
    )


def prune_button_label(amount: int | None) -> str:
    return "✅ Delete All" if amount is None else f"✅ Delete {amount}"


def deleting_embed(deleted: int | None = None) -> discord.Embed:
    if deleted is None:
        description = "Please wait while I delete the messages. This may take a moment."
    else:
        description = f"Deleted {deleted} messages so far..."
    return discord.Embed(title="🔄 Deleting Messages...", description=description, colour=DELETING_COLOUR)


def deleted_reply(count: int) -> str:
    suffix = "" if count == 1 else "s"
    return f"✅ Successfully deleted {count} message{suffix} from this channel."


def prune_error_reply(exc: BaseException, deleted: int) -> str:
    code = getattr(exc, "code", None)
    if isinstance(exc, discord.Forbidden) or code == _MISSING_PERMISSIONS_CODE:
        return PRUNE_FORBIDDEN_REPLY
    if code == _TOO_OLD_CODE:
        return PRUNE_TOO_OLD_REPLY
    if deleted:
        return f"❌ Failed to delete some messages. Deleted {deleted} messages successfully."
    return PRUNE_FAILED_REPLY


class ChannelPruner:
    """Deletes recent messages of one channel above a prompt message.

    ``amount`` messages are removed together with the command that asked for
    them; without an amount the channel is emptied in batches back to the bulk
    delete age limit. ``deleted`` keeps the running count when a batch fails.
    """

    def __init__(
        self,
        channel: Any,
        amount: int | None,
        *,
        before: Any = None,
        on_progress: ProgressCallback | None = None,
        sleep=asyncio.sleep,
        now: datetime | None = None,
    ) -> None:
        self.channel = channel
        self.amount = amount
        self.before = before
        self.deleted = 0
        self._on_progress = on_progress
        self._sleep = sleep
        self._now = now

    def _cutoff(self) -> datetime:
        return (self._now or utc_now()) - BULK_DELETE_MAX_AGE

    async def _purge(self, limit: int) -> int:
        removed = await self.channel.purge(
            limit=limit,
            before=self.before,
            after=self._cutoff(),
            oldest_first=False,
            bulk=True,
        )
        return len(removed)

    async def run(self) -> int:
        if self.amount is not None:
            # the invoking command message sits just above the prompt
            self.deleted += await self._purge(self.amount + 1)
            return self.deleted

        batches = 0
        while True:
            removed = await self._purge(PRUNE_BATCH_SIZE)
            if not removed:
                break
            self.deleted += removed
            batches += 1
            report = batches % PRUNE_PROGRESS_EVERY_BATCHES == 0 or removed < PRUNE_BATCH_SIZE // 2
            if report and self._on_progress is not None:
                await self._on_progress(self.deleted)
            if removed < PRUNE_BATCH_SIZE:
                break
            await self._sleep(PRUNE_BATCH_PAUSE_SECONDS)
        log.info("Pruned channel_id=%s deleted=%s batches=%s", getattr(self.channel, "id", None), self.deleted, batches)
        return self.deleted
