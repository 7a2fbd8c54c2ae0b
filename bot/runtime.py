from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

import discord
from discord import app_commands

from bot.config import BotConfig, load_config
from bot.log_setup import setup_logging
from bot.main import BotApplication, status_task_name
from commands.moderation_commands import register_moderation_commands
from commands.music_commands import register_music_commands
from commands.prefix_commands import register_prefix_commands
from commands.runtime_commands import register_runtime_commands
from commands.server_status_commands import register_server_status_commands
from db.models import REQUIRED_BOOT_TABLES
from db.repository import LedgerRepository
from db.schema_guard import ensure_required_schema, fetch_existing_tables, validate_required_tables
from db.session import SessionManager
from db.sql_repository import SqlRepository
from gateway.safety import safe_add_roles, safe_defer, safe_followup, safe_send_channel_message, safe_send_initial
from services.command_router import CommandRouter
from services.errors import AuthorizationError, FetchFailure, PersistenceFailure
from services.invite_query_service import (
    AuthorizationLevel,
    authorization_denied_message,
    authorization_from_permissions,
)
from services.invite_report_service import (
    active_invites_embed,
    inviter_report_embed,
    join_history_embed,
    leaderboard_embed,
    log_channel_ready_embed,
    resolve_names,
)
from services.join_service import UserProfile
from services.ledger_service import SENTINEL_INVITERS
from services.notification_service import UNKNOWN_USER_NAME, JoinedMember
from services.snapshot_service import InviteSnapshot
from services.welcome_service import build_welcome_embed, plan_default_roles
from utils.text import parse_user_mention


log = logging.getLogger("bitcraft.runtime")
FETCH_FAILED_REPLY = "There was an error fetching the invite stats."


def _member_name(member: Any) -> str | None:
    for attr in ("display_name", "global_name", "name"):
        value = getattr(member, attr, None)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _avatar_url(user: Any) -> str | None:
    avatar = getattr(user, "display_avatar", None)
    url = getattr(avatar, "url", None)
    return str(url) if url else None


def invite_to_snapshot(invite: Any) -> InviteSnapshot:
    inviter = getattr(invite, "inviter", None)
    channel = getattr(invite, "channel", None)
    return InviteSnapshot(
        code=str(invite.code),
        uses=int(getattr(invite, "uses", 0) or 0),
        inviter_id=str(inviter.id) if inviter is not None else None,
        inviter_name=_member_name(inviter) if inviter is not None else None,
        max_uses=int(getattr(invite, "max_uses", 0) or 0),
        channel_id=int(channel.id) if channel is not None else None,
    )


class InviteTrackerBot(discord.Client):
    def __init__(self, *, config: BotConfig, repo: LedgerRepository, session_manager: SessionManager | None = None) -> None:
        intents = discord.Intents.default()
        intents.members = True
        intents.invites = True
        intents.message_content = config.enable_message_content_intent
        super().__init__(intents=intents)

        self.config = config
        self.repo = repo
        self.session_manager = session_manager
        self.tree = app_commands.CommandTree(self)
        self.router = CommandRouter(config.command_prefixes)
        self.app = BotApplication(
            config=config,
            repo=repo,
            invite_fetcher=self._fetch_invites,
            channel_resolver=self._resolve_invite_log_channel,
            vanity_lookup=self._vanity_code,
            profile_lookup=self._user_profile,
        )

        self._commands_registered = False
        self._commands_synced = False
        self._ack_lock = asyncio.Lock()
        self._acked_interactions: set[int] = set()

    async def setup_hook(self) -> None:
        existing_tables = await self._bootstrap_database()
        if not self._commands_registered:
            register_prefix_commands(self)
            register_runtime_commands(self)
            register_moderation_commands(self)
            register_server_status_commands(self)
            register_music_commands(self)
            self._commands_registered = True
        await self.app.setup(
            existing_tables=existing_tables,
            registered_commands=[cmd.name for cmd in self.tree.get_commands()],
        )

    async def _bootstrap_database(self) -> set[str]:
        if self.session_manager is None:
            return set(REQUIRED_BOOT_TABLES)
        if not await self.session_manager.try_acquire_singleton_lock():
            log.warning("Another instance holds singleton lock. Exiting.")
            raise SystemExit(0)

        async with self.session_manager.engine.begin() as connection:
            changes = await ensure_required_schema(connection)
            await validate_required_tables(connection)
            existing = await fetch_existing_tables(connection)
        if changes:
            log.info("Applied DB schema changes: %s", ", ".join(changes))
        return existing

    async def on_ready(self) -> None:
        if not self._commands_synced:
            synced: list[int] = []
            for guild in self.guilds:
                try:
                    await self.tree.sync(guild=discord.Object(id=guild.id))
                    synced.append(guild.id)
                except Exception:
                    log.exception("Guild sync failed for %s", guild.id)

            try:
                await self.tree.sync()
            except Exception:
                log.exception("Global command sync failed")

            self._commands_synced = True
            log.info("Command sync completed (guild_sync=%s)", synced)

        await self.app.on_ready(connected_guilds=[(guild.id, guild.name) for guild in self.guilds])
        self.app.task_registry.start_once("self_test_worker", self._self_test_worker)
        for guild_id in await self.app.server_status.tracked_guild_ids():
            self.start_status_updates(guild_id)

        try:
            await self.change_presence(
                activity=discord.Activity(type=discord.ActivityType.watching, name="the BitCraft Network"),
                status=discord.Status.online,
            )
        except Exception:
            log.exception("Failed to set presence")

        log.info("Invite tracker ready as %s", self.user)

    def start_status_updates(self, guild_id: int) -> asyncio.Task:
        return self.app.task_registry.start_once(
            status_task_name(guild_id),
            lambda: self.app.server_status.run_updates(
                int(guild_id),
                self.get_channel,
                on_update=self._show_player_count,
            ),
        )

    async def _show_player_count(self, status) -> None:
        if not status.online:
            return
        try:
            await self.change_presence(
                activity=discord.Activity(
                    type=discord.ActivityType.watching,
                    name=f"{status.players_online} players online",
                ),
                status=discord.Status.online,
            )
        except Exception:
            log.exception("Failed to set presence")

    async def on_guild_join(self, guild) -> None:
        await self.app.on_guild_join(guild.id, guild.name)
        try:
            await self.tree.sync(guild=discord.Object(id=guild.id))
        except Exception:
            log.exception("Guild sync failed for joined guild %s", guild.id)

    async def on_guild_remove(self, guild) -> None:
        await self.app.on_guild_remove(guild.id)

    async def on_invite_create(self, invite) -> None:
        guild = getattr(invite, "guild", None)
        if guild is None:
            return
        self.app.on_invite_create(guild.id, invite_to_snapshot(invite))

    async def on_invite_delete(self, invite) -> None:
        guild = getattr(invite, "guild", None)
        if guild is None:
            return
        self.app.on_invite_delete(guild.id, str(invite.code))

    async def on_member_join(self, member) -> None:
        if getattr(member, "bot", False):
            return

        # attribution first: the invite diff must not wait behind welcome sends
        joined = JoinedMember(
            member_id=int(member.id),
            display_name=_member_name(member) or str(member.id),
            avatar_url=_avatar_url(member),
        )
        try:
            await self.app.on_member_join(member.guild.id, joined, joined_at=getattr(member, "joined_at", None))
        except PersistenceFailure:
            log.exception("Join of member_id=%s in guild_id=%s was not recorded", member.id, member.guild.id)

        await self.welcome_member(member)

    async def on_message(self, message) -> None:
        if message.author.bot or message.guild is None:
            return
        perms = getattr(message.author, "guild_permissions", None)
        is_admin = authorization_from_permissions(perms) >= AuthorizationLevel.MODERATOR
        await self.router.dispatch(message, is_admin=is_admin)

    async def welcome_member(self, member) -> Any | None:
        guild = member.guild
        channel_id = await self.app.welcome_channel_id(guild.id)
        channel = guild.get_channel(channel_id) if channel_id else None
        if channel is None:
            log.warning("Welcome channel %s not found in guild_id=%s", channel_id, guild.id)
            return None

        await safe_send_channel_message(channel, content=f"Welcome to the server, {member.mention}! ")
        sent = await safe_send_channel_message(
            channel,
            embed=build_welcome_embed(
                member_id=int(member.id),
                member_count=int(getattr(guild, "member_count", 0) or 0),
                avatar_url=_avatar_url(member),
            ),
        )
        await self._assign_default_roles(member)
        return sent

    async def _assign_default_roles(self, member) -> bool:
        if not self.config.default_role_ids:
            return False
        guild = member.guild
        me = guild.me
        plan = plan_default_roles(
            available_roles=guild.roles,
            default_role_ids=self.config.default_role_ids,
            bot_can_manage_roles=bool(me is not None and me.guild_permissions.manage_roles),
            bot_top_position=int(me.top_role.position) if me is not None else 0,
        )
        if not plan.allowed:
            log.warning("Default roles not assigned to member_id=%s: %s", member.id, plan.reason)
            return False
        assigned = await safe_add_roles(member, plan.roles, reason="Default member roles")
        if assigned:
            log.info("Assigned roles %s to member_id=%s", ", ".join(role.name for role in plan.roles), member.id)
        return assigned

    async def create_invite_log_channel(self, guild) -> tuple[Any, bool]:
        """Returns ``(channel, created)``; an existing log channel is reused."""
        existing_id = await self.app.invite_log_channel_id(guild.id)
        existing = guild.get_channel(existing_id) if existing_id else None
        if existing is None:
            existing = discord.utils.get(guild.text_channels, name=self.config.invite_log_channel_name)
        if existing is not None:
            await self.app.set_invite_log_channel(guild.id, existing.id, guild_name=guild.name)
            return existing, False

        overwrites = {
            guild.default_role: discord.PermissionOverwrite(view_channel=True, send_messages=False),
            guild.me: discord.PermissionOverwrite(
                view_channel=True,
                send_messages=True,
                embed_links=True,
                attach_files=True,
            ),
        }
        channel = await guild.create_text_channel(
            self.config.invite_log_channel_name,
            overwrites=overwrites,
            reason="Created invite log channel by admin command.",
        )
        await self.app.set_invite_log_channel(guild.id, channel.id, guild_name=guild.name)
        await safe_send_channel_message(channel, embed=log_channel_ready_embed())
        return channel, True

    async def _resolve_invite_log_channel(self, guild_id: int) -> Any | None:
        guild = self.get_guild(int(guild_id))
        if guild is None:
            return None
        channel_id = await self.app.invite_log_channel_id(guild.id)
        channel = guild.get_channel(channel_id) if channel_id else None
        if channel is None:
            channel = discord.utils.get(guild.text_channels, name=self.config.invite_log_channel_name)
        return channel

    async def _fetch_invites(self, guild_id: int) -> list[InviteSnapshot]:
        guild = self.get_guild(int(guild_id))
        if guild is None:
            guild = await self.fetch_guild(int(guild_id))
        invites = await guild.invites()
        return [invite_to_snapshot(invite) for invite in invites]

    async def _vanity_code(self, guild_id: int) -> str | None:
        guild = self.get_guild(int(guild_id))
        if guild is None or "VANITY_URL" not in getattr(guild, "features", ()):
            return None
        if guild.vanity_url_code:
            return guild.vanity_url_code
        invite = await guild.vanity_invite()
        return invite.code if invite is not None else None

    async def _user_profile(self, user_id: str) -> UserProfile | None:
        if user_id in SENTINEL_INVITERS or not str(user_id).isdigit():
            return None
        user = self.get_user(int(user_id))
        if user is None:
            user = await self.fetch_user(int(user_id))
        return UserProfile(name=_member_name(user), avatar_url=_avatar_url(user))

    async def resolve_user_name(self, user_id: str) -> str | None:
        profile = await self._user_profile(user_id)
        return profile.name if profile is not None else None

    def resolve_member(self, guild, raw: str | None) -> Any | None:
        text = (raw or "").strip()
        if not text:
            return None
        user_id = parse_user_mention(text)
        if user_id is not None:
            return guild.get_member(user_id)
        lowered = text.lower()
        for member in guild.members:
            names = {getattr(member, "name", None), getattr(member, "display_name", None)}
            if lowered in {name.lower() for name in names if name}:
                return member
        return None

    async def leaderboard_report(self, guild, auth: AuthorizationLevel) -> discord.Embed:
        rows = await self.app.queries.leaderboard(guild.id, auth)
        names = await resolve_names((row.inviter_id for row in rows), self.resolve_user_name)
        return leaderboard_embed(rows, names)

    async def inviter_report(self, guild, *, target, requester, auth: AuthorizationLevel) -> discord.Embed:
        report = await self.app.queries.inviter_history(
            guild.id,
            inviter_id=target.id,
            requester_id=requester.id,
            auth=auth,
        )
        return inviter_report_embed(
            report,
            target_name=_member_name(target) or UNKNOWN_USER_NAME,
            timezone_name=self.config.display_timezone,
        )

    async def active_invites_report(self, guild, auth: AuthorizationLevel) -> discord.Embed:
        return active_invites_embed(await self.app.queries.active_invites(guild.id, auth))

    async def join_history_report(self, guild, auth: AuthorizationLevel, *, page: int = 1) -> discord.Embed:
        history = await self.app.queries.join_history(guild.id, auth, page=page)
        names = await resolve_names((entry.inviter_id for entry in history.entries), self.resolve_user_name)
        return join_history_embed(history, names, timezone_name=self.config.display_timezone)

    async def run_report(self, build) -> tuple[discord.Embed | None, str | None]:
        """Awaits a report coroutine and maps access and fetch errors to a reply text."""
        try:
            return await build, None
        except AuthorizationError as exc:
            return None, authorization_denied_message(exc)
        except FetchFailure:
            log.exception("Invite list unavailable for report")
            return None, FETCH_FAILED_REPLY

    async def _self_test_worker(self) -> None:
        await self.wait_until_ready()
        while not self.is_closed():
            try:
                self.app.run_self_tests_once(cmd.name for cmd in self.tree.get_commands())
            except Exception:
                log.exception("Background self-test failed")
            await asyncio.sleep(max(30, int(self.config.self_test_interval_seconds)))

    async def _mark_interaction_once(self, interaction: Any) -> bool:
        interaction_id = int(getattr(interaction, "id", 0) or 0)
        if interaction_id <= 0:
            return True
        async with self._ack_lock:
            if interaction_id in self._acked_interactions:
                return False
            self._acked_interactions.add(interaction_id)
            if len(self._acked_interactions) > 20_000:
                self._acked_interactions.clear()
            return True

    async def _reply(self, interaction: Any, content: str | None = None, *, ephemeral: bool = True, **kwargs: Any) -> None:
        first = await self._mark_interaction_once(interaction)
        if first and await safe_send_initial(interaction, content, ephemeral=ephemeral, **kwargs):
            return
        await safe_followup(interaction, content, ephemeral=ephemeral, **kwargs)

    async def _defer(self, interaction: Any, *, ephemeral: bool = True) -> bool:
        first = await self._mark_interaction_once(interaction)
        if not first:
            return False
        return await safe_defer(interaction, ephemeral=ephemeral)

    async def close(self) -> None:
        try:
            await self.app.close()
        except Exception:
            log.exception("Failed to stop background tasks during shutdown.")
        await super().close()
        if self.session_manager is not None:
            await self.session_manager.dispose()


def run() -> int:
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    try:
        config = load_config()
    except ValueError as exc:
        log.error("Config error: %s", exc)
        return 1

    setup_logging(config.log_level)
    if not config.discord_token:
        log.error("DISCORD_TOKEN missing")
        return 1

    session_manager = SessionManager(config)
    bot = InviteTrackerBot(config=config, repo=SqlRepository(session_manager), session_manager=session_manager)

    try:
        bot.run(config.discord_token, log_handler=None)
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
