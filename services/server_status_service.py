from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping

import aiohttp
import discord

from db.repository import LedgerRepository, ServerStatusSettingsRecord
from gateway.safety import safe_rename_channel
from utils.text import EMBED_DESCRIPTION_LIMIT, EMBED_FIELD_LIMIT, truncate
from utils.time_utils import utc_now


log = logging.getLogger("bitcraft.status")

MCSTATUS_JAVA_URL = "https://api.mcstatus.io/v2/status/java/{address}:{port}"
STATUS_CACHE_MAX_AGE_SECONDS = 60.0
DEFAULT_TPS = 20.0
EXCELLENT_TPS = 18.0
GOOD_TPS = 15.0

ONLINE_COLOUR = 0x00FF00
OFFLINE_COLOUR = 0xFF0000
INFO_COLOUR = 0x3498DB
SUCCESS_COLOUR = 0x2ECC71
WARNING_COLOUR = 0xF39C12
ERROR_COLOUR = 0xE74C3C

STATUS_CATEGORY_NAME = "📊 Server Status"
STATS_CATEGORY_NAME = "🖥️ Server Statistics"
STAT_PLACEHOLDER_NAMES = {
    "stat_status_channel_id": "❓ server-status",
    "stat_players_channel_id": "❓ player-count",
    "stat_tps_channel_id": "❓ server-tps",
    "stat_memory_channel_id": "❓ memory-usage",
}
INVALID_PORT_REPLY = "Port must be between 1 and 65535."
INVALID_INTERVAL_REPLY = "Please provide a valid positive number of seconds."

_TPS_PATTERN = re.compile(r"TPS:\s*([\d.]+)")
_RAM_PATTERN = re.compile(r"RAM:\s*([\d.]+)")

ChannelLookup = Callable[[int], Any]
StatusListener = Callable[["ServerStatus"], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ServerStatus:
    online: bool
    players_online: int = 0
    players_max: int = 0
    player_names: tuple[str, ...] = ()
    tps: float = 0.0
    memory_gb: float = 0.0
    fetched_at: datetime | None = None


def _parse_float(pattern: re.Pattern[str], text: str) -> float | None:
    match = pattern.search(text or "")
    if match is None:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def status_from_payload(payload: Mapping[str, Any], *, fetched_at: datetime | None = None) -> ServerStatus:
    """Reads an mcstatus.io java status document; TPS and RAM come from the MOTD."""
    fetched = fetched_at or utc_now()
    if not payload.get("online"):
        return ServerStatus(online=False, fetched_at=fetched)
    players = payload.get("players") or {}
    motd = (payload.get("motd") or {}).get("clean") or ""
    names = tuple(
        str(entry.get("name_clean") or entry.get("name_raw"))
        for entry in players.get("list") or []
        if entry.get("name_clean") or entry.get("name_raw")
    )
    tps = _parse_float(_TPS_PATTERN, motd)
    memory = _parse_float(_RAM_PATTERN, motd)
    return ServerStatus(
        online=True,
        players_online=int(players.get("online") or 0),
        players_max=int(players.get("max") or 0),
        player_names=names,
        tps=DEFAULT_TPS if tps is None else tps,
        memory_gb=0.0 if memory is None else memory,
        fetched_at=fetched,
    )


class ServerStatusClient:
    """Queries the public mcstatus.io API; any failure reads as an offline server."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        session_factory=aiohttp.ClientSession,
        url_template: str = MCSTATUS_JAVA_URL,
    ) -> None:
        self.timeout_seconds = float(timeout_seconds)
        self._session_factory = session_factory
        self.url_template = url_template

    async def fetch(self, address: str, port: int) -> ServerStatus:
        url = self.url_template.format(address=address, port=int(port))
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with self._session_factory(timeout=timeout) as session:
                async with session.get(url) as resp:
                    if resp.status != 200:
                        log.warning("Server status request for %s:%s returned HTTP %s", address, port, resp.status)
                        return ServerStatus(online=False, fetched_at=utc_now())
                    payload = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            log.warning("Server status request for %s:%s failed: %s", address, port, exc)
            return ServerStatus(online=False, fetched_at=utc_now())
        return status_from_payload(payload)


def tps_rating(tps: float) -> tuple[str, int]:
    if tps >= EXCELLENT_TPS:
        return "✅ Excellent", SUCCESS_COLOUR
    if tps >= GOOD_TPS:
        return "⚠️ Good", WARNING_COLOUR
    return "❌ Poor", ERROR_COLOUR


def channel_names(status: ServerStatus) -> dict[str, str]:
    """Channel name per tracked settings field."""
    tps = f"{status.tps:.1f}"
    memory = f"{status.memory_gb:.1f}"
    if status.online:
        return {
            "status_channel_id": "🟢 Online",
            "players_channel_id": f"👥 Players: {status.players_online}/{status.players_max}",
            "performance_channel_id": f"⚙️ TPS: {tps} | RAM: {memory}GB",
            "stat_status_channel_id": "🟢 server-status: Online",
            "stat_players_channel_id": f"👥 players: {status.players_online}/{status.players_max}",
            "stat_tps_channel_id": f"⚡ tps: {tps}/20.0",
            "stat_memory_channel_id": f"💾 ram: {memory}GB",
            "text_channel_id": (
                f"🟢 BitCraft Network: {status.players_online}/{status.players_max} players | TPS: {tps}"
            ),
        }
    return {
        "status_channel_id": "🔴 Offline",
        "players_channel_id": f"👥 Players: {status.players_online}/{status.players_max}",
        "performance_channel_id": f"⚙️ TPS: {tps} | RAM: {memory}GB",
        "stat_status_channel_id": "🔴 server-status: Offline",
        "stat_players_channel_id": "👥 players: Offline",
        "stat_tps_channel_id": "⚡ tps: Offline",
        "stat_memory_channel_id": "💾 ram: Offline",
        "text_channel_id": "🔴 BitCraft Network: Offline",
    }


def interval_text(seconds: int) -> str:
    value = int(seconds)
    if value % 60 == 0:
        minutes = value // 60
        return f"{minutes} minute{'' if minutes == 1 else 's'}"
    return f"{value} second{'' if value == 1 else 's'}"


def status_embed(status: ServerStatus, address: str) -> discord.Embed:
    state = "Online" if status.online else "Offline"
    embed = discord.Embed(
        title=f"{'🟢' if status.online else '🔴'} Server Status: {state}",
        description=f"Information about **{address}**",
        colour=ONLINE_COLOUR if status.online else OFFLINE_COLOUR,
        timestamp=status.fetched_at or utc_now(),
    )
    embed.set_footer(text="Last updated")
    if status.online:
        embed.add_field(name="👥 Players", value=f"{status.players_online}/{status.players_max}", inline=True)
        embed.add_field(name="⚡ TPS", value=f"{status.tps:.1f}/20.0", inline=True)
        embed.add_field(name="💾 Memory", value=f"{status.memory_gb:.1f} GB", inline=True)
        if status.player_names:
            embed.add_field(
                name="Online Players",
                value=truncate(", ".join(status.player_names), EMBED_FIELD_LIMIT),
                inline=False,
            )
    return embed


def players_embed(status: ServerStatus, address: str) -> discord.Embed:
    if status.online:
        listing = (
            f"**Online Players:**\n{', '.join(status.player_names)}"
            if status.player_names
            else "No players are currently online."
        )
        description = f"**Player Count:** {status.players_online}/{status.players_max}\n\n{listing}"
    else:
        description = "The server is currently offline."
    embed = discord.Embed(
        title=f"{'👥' if status.online else '🔴'} Online Players",
        description=truncate(description, EMBED_DESCRIPTION_LIMIT),
        colour=INFO_COLOUR if status.online else OFFLINE_COLOUR,
        timestamp=status.fetched_at or utc_now(),
    )
    embed.set_footer(text=f"Server: {address}")
    return embed


def performance_embed(status: ServerStatus, address: str) -> discord.Embed:
    embed = discord.Embed(
        title=f"{'⚡' if status.online else '🔴'} Server Performance",
        timestamp=status.fetched_at or utc_now(),
    )
    embed.set_footer(text=f"Server: {address}")
    if not status.online:
        embed.colour = OFFLINE_COLOUR
        embed.description = "The server is currently offline."
        return embed
    rating, colour = tps_rating(status.tps)
    embed.colour = colour
    embed.add_field(name="TPS (Ticks Per Second)", value=f"{status.tps:.1f}/20.0", inline=True)
    embed.add_field(name="Memory Usage", value=f"{status.memory_gb:.1f} GB", inline=True)
    embed.add_field(name="Status", value=rating, inline=True)
    return embed


def notice_embed(title: str, description: str, *, colour: int = SUCCESS_COLOUR) -> discord.Embed:
    return discord.Embed(title=title, description=description, colour=colour, timestamp=utc_now())


def state_line(status: ServerStatus) -> str:
    return f"Status: {'🟢 Online' if status.online else '🔴 Offline'}"


class ServerStatusRelay:
    """Per-guild server settings, a short-lived status cache and the channel renames.

    Guilds without stored settings watch the configured default server. Channels
    are only renamed when their name actually changes.
    """

    def __init__(
        self,
        repo: LedgerRepository,
        client: ServerStatusClient,
        *,
        default_address: str,
        default_port: int,
        default_interval_seconds: int,
        max_age_seconds: float = STATUS_CACHE_MAX_AGE_SECONDS,
        clock=utc_now,
    ) -> None:
        self.repo = repo
        self.client = client
        self.default_address = default_address
        self.default_port = int(default_port)
        self.default_interval_seconds = int(default_interval_seconds)
        self.max_age_seconds = float(max_age_seconds)
        self._clock = clock
        self._cache: dict[tuple[str, int], ServerStatus] = {}

    async def settings_for(self, guild_id: int) -> ServerStatusSettingsRecord:
        stored = await self.repo.get_status_settings(guild_id)
        if stored is not None:
            return stored
        return ServerStatusSettingsRecord(
            guild_id=int(guild_id),
            server_address=self.default_address,
            server_port=self.default_port,
            update_interval_seconds=self.default_interval_seconds,
        )

    async def status_for(self, guild_id: int, *, fresh: bool = True) -> tuple[ServerStatusSettingsRecord, ServerStatus]:
        settings = await self.settings_for(guild_id)
        key = (settings.server_address, int(settings.server_port))
        cached = self._cache.get(key)
        if not fresh and cached is not None and cached.fetched_at is not None:
            age = (self._clock() - cached.fetched_at).total_seconds()
            if age < self.max_age_seconds:
                return settings, cached
        status = await self.client.fetch(*key)
        self._cache[key] = status
        return settings, status

    async def update_channels(
        self,
        guild_id: int,
        resolve_channel: ChannelLookup,
        *,
        fresh: bool = False,
    ) -> tuple[ServerStatus, int]:
        settings, status = await self.status_for(guild_id, fresh=fresh)
        names = channel_names(status)
        renamed = 0
        for field_name, channel_id in settings.tracked_channels().items():
            if await safe_rename_channel(resolve_channel(channel_id), names[field_name]):
                renamed += 1
        if renamed:
            log.info("Status channels renamed guild_id=%s count=%s online=%s", guild_id, renamed, status.online)
        return status, renamed

    async def _save(self, settings: ServerStatusSettingsRecord) -> ServerStatusSettingsRecord:
        return await self.repo.save_status_settings(settings)

    async def set_server(self, guild_id: int, address: str, port: int) -> ServerStatusSettingsRecord:
        if not 1 <= int(port) <= 65535:
            raise ValueError(INVALID_PORT_REPLY)
        settings = await self.settings_for(guild_id)
        stored = await self._save(replace(settings, server_address=address.strip(), server_port=int(port)))
        log.info("Status server set guild_id=%s server=%s:%s", guild_id, address, port)
        return stored

    async def set_interval(self, guild_id: int, seconds: int) -> ServerStatusSettingsRecord:
        if int(seconds) <= 0:
            raise ValueError(INVALID_INTERVAL_REPLY)
        settings = await self.settings_for(guild_id)
        return await self._save(replace(settings, update_interval_seconds=int(seconds)))

    async def track_channels(self, guild_id: int, **channel_ids: int) -> ServerStatusSettingsRecord:
        settings = await self.settings_for(guild_id)
        return await self._save(replace(settings, **{name: int(value) for name, value in channel_ids.items()}))

    async def tracked_guild_ids(self) -> list[int]:
        return [settings.guild_id for settings in await self.repo.list_status_settings() if settings.tracked_channels()]

    async def create_status_channels(self, guild: Any) -> dict[str, Any]:
        names = channel_names(ServerStatus(online=False))
        category = await guild.create_category(STATUS_CATEGORY_NAME, reason="Server status channels")
        created = {}
        for field_name in ("status_channel_id", "players_channel_id", "performance_channel_id"):
            created[field_name] = await self._create_locked_voice_channel(guild, names[field_name], category)
        await self.track_channels(guild.id, **{name: channel.id for name, channel in created.items()})
        return created

    async def create_stat_channels(self, guild: Any) -> dict[str, Any]:
        category = await guild.create_category(STATS_CATEGORY_NAME, reason="Server statistics channels")
        created = {}
        for field_name, name in STAT_PLACEHOLDER_NAMES.items():
            created[field_name] = await self._create_locked_voice_channel(guild, name, category)
        await self.track_channels(guild.id, **{name: channel.id for name, channel in created.items()})
        return created

    @staticmethod
    async def _create_locked_voice_channel(guild: Any, name: str, category: Any) -> Any:
        overwrites = {guild.default_role: discord.PermissionOverwrite(connect=False)}
        return await guild.create_voice_channel(name, category=category, overwrites=overwrites)

    async def run_updates(
        self,
        guild_id: int,
        resolve_channel: ChannelLookup,
        *,
        on_update: StatusListener | None = None,
        sleep=asyncio.sleep,
    ) -> None:
        while True:
            interval = self.default_interval_seconds
            try:
                settings = await self.settings_for(guild_id)
                interval = settings.update_interval_seconds
                status, _ = await self.update_channels(guild_id, resolve_channel)
                if on_update is not None:
                    await on_update(status)
            except Exception:
                log.exception("Server status update failed guild_id=%s", guild_id)
            await sleep(max(1, int(interval)))
