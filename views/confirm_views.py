from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import discord

from gateway.safety import (
    safe_delete_message,
    safe_edit_message,
    safe_reply,
    safe_send_channel_message,
    safe_send_initial,
    safe_update_message,
)
from services.massdm_service import (
    MassDmRequest,
    cancelled_embed,
    deliver_direct_messages,
    dm_embed,
    no_targets_embed,
    result_embed,
    sending_embed,
    timeout_embed,
)
from services.prune_service import (
    PRUNE_CANCELLED_REPLY,
    PRUNE_TIMEOUT_REPLY,
    ChannelPruner,
    deleted_reply,
    deleting_embed,
    prune_button_label,
    prune_error_reply,
)


log = logging.getLogger("bitcraft.views")

CONFIRM_TIMEOUT_SECONDS = 30
PROMPT_CLEANUP_SECONDS = 3
STATUS_CLEANUP_SECONDS = 5
NOT_AUTHOR_REPLY = "❌ Only the member who ran this command can use these buttons."
MEMBER_FETCH_FAILED_REPLY = "❌ Error fetching server members. Please try again."

TargetResolver = Callable[[], Awaitable[list[Any]]]


class AuthorConfirmView(discord.ui.View):
    """Confirm/cancel prompt that only the invoking member can answer, once."""

    def __init__(self, author_id: int, *, timeout: float = CONFIRM_TIMEOUT_SECONDS) -> None:
        super().__init__(timeout=timeout)
        self.author_id = int(author_id)
        self.message: Any | None = None
        self.outcome: str | None = None

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if int(getattr(interaction.user, "id", 0) or 0) == self.author_id:
            return True
        await safe_send_initial(interaction, NOT_AUTHOR_REPLY, ephemeral=True)
        return False

    @discord.ui.button(label="Confirm", emoji="✅", style=discord.ButtonStyle.success)
    async def confirm_button(self, interaction: discord.Interaction, button: discord.ui.Button):
        await self.confirm(interaction)

    @discord.ui.button(label="Cancel", emoji="❌", style=discord.ButtonStyle.danger)
    async def cancel_button(self, interaction: discord.Interaction, button: discord.ui.Button):
        await self.cancel(interaction)

    def _decide(self, outcome: str) -> bool:
        if self.outcome is not None:
            return False
        self.outcome = outcome
        self.stop()
        return True

    async def confirm(self, interaction: Any) -> None:
        if self._decide("confirmed"):
            await self.on_confirm(interaction)

    async def cancel(self, interaction: Any) -> None:
        if self._decide("cancelled"):
            await self.on_cancel(interaction)

    async def on_timeout(self) -> None:
        if self._decide("timeout"):
            await self.on_expire()

    async def on_confirm(self, interaction: Any) -> None:
        raise NotImplementedError

    async def on_cancel(self, interaction: Any) -> None:
        raise NotImplementedError

    async def on_expire(self) -> None:
        raise NotImplementedError


class PruneConfirmView(AuthorConfirmView):
    def __init__(self, author_id: int, channel: Any, amount: int | None, *, sleep=asyncio.sleep) -> None:
        super().__init__(author_id)
        self.channel = channel
        self.amount = amount
        self._sleep = sleep
        self.confirm_button.label = prune_button_label(amount)
        self.confirm_button.emoji = None
        self.confirm_button.style = discord.ButtonStyle.danger
        self.cancel_button.label = "❌ Cancel"
        self.cancel_button.emoji = None
        self.cancel_button.style = discord.ButtonStyle.secondary

    async def _show_progress(self, deleted: int) -> None:
        await safe_edit_message(self.message, embed=deleting_embed(deleted), view=None)

    async def on_confirm(self, interaction: Any) -> None:
        await safe_update_message(interaction, embed=deleting_embed(), view=None)
        pruner = ChannelPruner(
            self.channel,
            self.amount,
            before=self.message,
            on_progress=self._show_progress,
            sleep=self._sleep,
        )
        try:
            reply = deleted_reply(await pruner.run())
        except Exception as exc:
            log.warning(
                "Prune failed channel_id=%s deleted=%s",
                getattr(self.channel, "id", None),
                pruner.deleted,
                exc_info=True,
            )
            reply = prune_error_reply(exc, pruner.deleted)
        await safe_send_channel_message(self.channel, content=reply, delete_after=STATUS_CLEANUP_SECONDS)
        await safe_delete_message(self.message)

    async def on_cancel(self, interaction: Any) -> None:
        await safe_update_message(interaction, content=PRUNE_CANCELLED_REPLY, embed=None, view=None)
        await safe_delete_message(self.message, delay=PROMPT_CLEANUP_SECONDS)

    async def on_expire(self) -> None:
        await safe_edit_message(self.message, content=PRUNE_TIMEOUT_REPLY, embed=None, view=None)
        await safe_delete_message(self.message, delay=PROMPT_CLEANUP_SECONDS)


class MassDmConfirmView(AuthorConfirmView):
    def __init__(
        self,
        author_id: int,
        request: MassDmRequest,
        *,
        resolve_targets: TargetResolver,
        guild_name: str,
        guild_icon_url: str | None = None,
        command_message: Any = None,
        prefix: str = "!",
        sleep=asyncio.sleep,
    ) -> None:
        super().__init__(author_id)
        self.request = request
        self.guild_name = guild_name
        self.guild_icon_url = guild_icon_url
        self.command_message = command_message
        self.prefix = prefix
        self._resolve_targets = resolve_targets
        self._sleep = sleep

    async def on_confirm(self, interaction: Any) -> None:
        request = self.request
        await safe_update_message(interaction, embed=sending_embed(request), view=None)
        try:
            targets = await self._resolve_targets()
        except Exception:
            log.warning("Could not resolve direct message targets guild=%s", self.guild_name, exc_info=True)
            await safe_edit_message(self.message, content=MEMBER_FETCH_FAILED_REPLY, embed=None, view=None)
            return
        if not targets:
            await safe_edit_message(self.message, embed=no_targets_embed(), view=None)
            return

        report = await deliver_direct_messages(
            targets,
            dm_embed(request, guild_name=self.guild_name, icon_url=self.guild_icon_url),
            delay_seconds=request.send_delay,
            sleep=self._sleep,
        )
        embed = result_embed(request, report, prefix=self.prefix)
        if not await safe_edit_message(self.message, embed=embed, view=None):
            await safe_reply(self.command_message, embed=embed)

    async def on_cancel(self, interaction: Any) -> None:
        await safe_update_message(interaction, embed=cancelled_embed(self.request), view=None)

    async def on_expire(self) -> None:
        await safe_edit_message(self.message, embed=timeout_embed(self.request), view=None)
