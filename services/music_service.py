from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Mapping

import discord
import yt_dlp

from gateway.safety import safe_send_channel_message
from utils.text import EMBED_DESCRIPTION_LIMIT, truncate


log = logging.getLogger("bitcraft.music")

MUSIC_COLOUR = 0xF9A825

YTDL_OPTIONS = {
    "format": "bestaudio/best",
    "noplaylist": True,
    "quiet": True,
    "no_warnings": True,
    "default_search": "auto",
}
FFMPEG_OPTIONS = {
    "before_options": "-reconnect 1 -reconnect_streamed 1 -reconnect_delay_max 5",
    "options": "-vn",
}

PLAY_USAGE_REPLY = "Please provide a song name or YouTube URL to play!"
NOT_IN_VOICE_REPLY = "You need to be in a voice channel to play music!"
VOICE_PERMISSION_REPLY = "I need permissions to join and speak in your voice channel!"
SEARCHING_REPLY = "🔍 Searching for your song..."
NO_RESULTS_REPLY = "No songs found with that query!"
PLAY_FAILED_REPLY = "⚠️ There was an error playing this song: {error}"
TRACK_FAILED_REPLY = "⚠️ Could not play song: {error}. Attempting to play next song in queue..."
NOTHING_TO_SKIP_REPLY = "There is no song playing to skip!"
SKIPPING_REPLY = "⏭️ Skipping to the next song..."
NOT_CONNECTED_REPLY = "I'm not currently in a voice channel!"
LEFT_REPLY = "👋 Stopped the music and left the voice channel!"
EMPTY_QUEUE_REPLY = "There are no songs in the queue!"
NOTHING_TO_PAUSE_REPLY = "There is no song playing to pause!"
PAUSING_REPLY = "⏸️ Pausing the music..."
NOTHING_TO_RESUME_REPLY = "There is no song playing to resume!"
RESUMING_REPLY = "⏯️ Resuming the music..."
NOTHING_TO_SHUFFLE_REPLY = "There is no song playing to shuffle!"
SHUFFLING_REPLY = "🔀 Shuffling the queue..."

_YOUTUBE_URL = re.compile(r"^(?:https?://)?(?:www\.|m\.|music\.)?(?:youtube\.com|youtu\.be)/", re.IGNORECASE)


class TrackNotFound(LookupError):
    pass


@dataclass(frozen=True, slots=True)
class Track:
    title: str
    url: str
    stream_url: str
    duration: int = 0
    thumbnail: str | None = None
    requester: str = ""


def format_duration(seconds: int | float | None) -> str:
    total = int(seconds or 0)
    return f"{total // 60}:{total % 60:02d}"


def is_youtube_url(query: str) -> bool:
    return bool(_YOUTUBE_URL.match(query.strip()))


def track_from_info(info: Mapping[str, Any] | None, *, requester: str = "") -> Track:
    if info and "entries" in info:
        entries = [entry for entry in info.get("entries") or () if entry]
        info = entries[0] if entries else None
    if not info or not info.get("url"):
        raise TrackNotFound(NO_RESULTS_REPLY)
    return Track(
        title=str(info.get("title") or "Unknown title"),
        url=str(info.get("webpage_url") or info.get("original_url") or info["url"]),
        stream_url=str(info["url"]),
        duration=int(info.get("duration") or 0),
        thumbnail=info.get("thumbnail"),
        requester=requester,
    )


class YtDlpResolver:
    """Looks up a YouTube URL or search phrase without downloading it."""

    def __init__(self, *, options: Mapping[str, Any] | None = None, ytdl_factory=yt_dlp.YoutubeDL) -> None:
        self.options = dict(options or YTDL_OPTIONS)
        self._ytdl_factory = ytdl_factory

    def _extract(self, target: str) -> dict[str, Any] | None:
        with self._ytdl_factory(self.options) as ytdl:
            return ytdl.extract_info(target, download=False)

    async def resolve(self, query: str, *, requester: str = "") -> Track:
        query = query.strip()
        target = query if is_youtube_url(query) else f"ytsearch:{query}"
        loop = asyncio.get_running_loop()
        info = await loop.run_in_executor(None, partial(self._extract, target))
        track = track_from_info(info, requester=requester)
        log.info("Resolved track query=%r title=%r", query, track.title)
        return track


def ffmpeg_source(stream_url: str) -> discord.AudioSource:
    return discord.PCMVolumeTransformer(discord.FFmpegPCMAudio(stream_url, **FFMPEG_OPTIONS))


@dataclass(slots=True)
class GuildQueue:
    guild_id: int
    voice_client: Any
    text_channel: Any
    tracks: list[Track] = field(default_factory=list)

    @property
    def current(self) -> Track | None:
        return self.tracks[0] if self.tracks else None

    @property
    def upcoming(self) -> list[Track]:
        return self.tracks[1:]


def _track_line(track: Track) -> str:
    return f"**[{track.title}]({track.url})**"


def added_embed(track: Track, position: int) -> discord.Embed:
    embed = discord.Embed(title="🎵 Added to Queue", description=_track_line(track), colour=MUSIC_COLOUR)
    if track.thumbnail:
        embed.set_thumbnail(url=track.thumbnail)
    embed.add_field(name="Duration", value=format_duration(track.duration), inline=True)
    embed.add_field(name="Position", value=f"#{position}" if position > 1 else "Now Playing", inline=True)
    embed.set_footer(text=f"Requested by {track.requester}")
    return embed


def now_playing_embed(track: Track) -> discord.Embed:
    embed = discord.Embed(title="🎵 Now Playing", description=_track_line(track), colour=MUSIC_COLOUR)
    if track.thumbnail:
        embed.set_thumbnail(url=track.thumbnail)
    embed.add_field(name="Duration", value=format_duration(track.duration), inline=True)
    return embed


def queue_embed(queue: GuildQueue) -> discord.Embed:
    lines = []
    for index, track in enumerate(queue.tracks):
        marker = "🔊 **NOW PLAYING**" if index == 0 else f"{index}."
        lines.append(f"{marker} [{track.title}]({track.url}) - {format_duration(track.duration)}")
    embed = discord.Embed(
        title="🎵 Current Queue",
        description=truncate("\n".join(lines), EMBED_DESCRIPTION_LIMIT),
        colour=MUSIC_COLOUR,
    )
    embed.set_footer(text=f"Total songs: {len(queue.tracks)}")
    return embed


class MusicPlayer:
    """Per-guild voice queues.

    The first track in a queue is the one playing. When it ends the voice
    client's ``after`` callback (called from the audio thread) hands control
    back to the event loop, which drops that track and starts the next one. An
    empty queue disconnects.
    """

    def __init__(
        self,
        *,
        source_factory: Callable[[str], Any] = ffmpeg_source,
        shuffle: Callable[[list[Track]], None] = random.shuffle,
    ) -> None:
        self._source_factory = source_factory
        self._shuffle = shuffle
        self._queues: dict[int, GuildQueue] = {}
        self._connecting: dict[int, asyncio.Lock] = {}
        self._pending: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None

    def queue_for(self, guild_id: int) -> GuildQueue | None:
        return self._queues.get(int(guild_id))

    def active_guild_ids(self) -> list[int]:
        return sorted(self._queues)

    async def enqueue(self, guild_id: int, track: Track, *, voice_channel: Any, text_channel: Any) -> int:
        """Adds a track, joining ``voice_channel`` first when the guild has no queue.

        Returns the 1-based queue position; position 1 means nothing was playing
        and the caller should start playback with :meth:`play_current`.
        """
        key = int(guild_id)
        lock = self._connecting.setdefault(key, asyncio.Lock())
        async with lock:
            queue = self._queues.get(key)
            if queue is None:
                voice_client = await voice_channel.connect()
                queue = GuildQueue(guild_id=key, voice_client=voice_client, text_channel=text_channel)
                self._queues[key] = queue
                log.info("Joined voice guild_id=%s channel_id=%s", key, getattr(voice_channel, "id", None))
            queue.tracks.append(track)
            return len(queue.tracks)

    async def play_current(self, guild_id: int) -> Track | None:
        self._loop = asyncio.get_running_loop()
        queue = self._queues.get(int(guild_id))
        while queue is not None and queue.tracks:
            track = queue.tracks[0]
            try:
                source = self._source_factory(track.stream_url)
                queue.voice_client.play(source, after=partial(self._track_finished, queue, track))
            except Exception as exc:
                log.warning("Could not start track guild_id=%s title=%r", queue.guild_id, track.title, exc_info=True)
                await safe_send_channel_message(queue.text_channel, content=TRACK_FAILED_REPLY.format(error=exc))
                queue.tracks.pop(0)
                continue
            log.info("Now playing guild_id=%s title=%r", queue.guild_id, track.title)
            await safe_send_channel_message(queue.text_channel, embed=now_playing_embed(track))
            return track
        await self._disconnect(int(guild_id))
        return None

    def _track_finished(self, queue: GuildQueue, track: Track, error: Exception | None = None) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._schedule_advance, queue, track, error)

    def _schedule_advance(self, queue: GuildQueue, track: Track, error: Exception | None) -> None:
        task = asyncio.ensure_future(self.advance(queue, track, error))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def advance(self, queue: GuildQueue, track: Track, error: Exception | None = None) -> None:
        if self._queues.get(queue.guild_id) is not queue:
            return
        if error is not None:
            log.warning("Track ended with error guild_id=%s title=%r: %s", queue.guild_id, track.title, error)
            await safe_send_channel_message(queue.text_channel, content=TRACK_FAILED_REPLY.format(error=error))
        if queue.tracks and queue.tracks[0] is track:
            queue.tracks.pop(0)
        await self.play_current(queue.guild_id)

    def skip(self, guild_id: int) -> bool:
        queue = self.queue_for(guild_id)
        if queue is None or queue.current is None:
            return False
        queue.voice_client.stop()
        return True

    def pause(self, guild_id: int) -> bool:
        queue = self.queue_for(guild_id)
        if queue is None or not queue.voice_client.is_playing():
            return False
        queue.voice_client.pause()
        return True

    def resume(self, guild_id: int) -> bool:
        queue = self.queue_for(guild_id)
        if queue is None or not queue.voice_client.is_paused():
            return False
        queue.voice_client.resume()
        return True

    def shuffle(self, guild_id: int) -> bool:
        """Reorders the upcoming tracks; the one playing stays first."""
        queue = self.queue_for(guild_id)
        if queue is None or queue.current is None:
            return False
        upcoming = queue.upcoming
        self._shuffle(upcoming)
        queue.tracks[1:] = upcoming
        return True

    async def leave(self, guild_id: int) -> bool:
        queue = self._queues.get(int(guild_id))
        if queue is None:
            return False
        queue.tracks.clear()
        await self._disconnect(queue.guild_id)
        return True

    async def _disconnect(self, guild_id: int) -> None:
        queue = self._queues.pop(guild_id, None)
        if queue is None:
            return
        try:
            await queue.voice_client.disconnect(force=True)
        except (discord.ClientException, discord.HTTPException):
            log.warning("Voice disconnect failed guild_id=%s", guild_id, exc_info=True)
        log.info("Left voice guild_id=%s", guild_id)

    async def close(self) -> None:
        for guild_id in list(self._queues):
            await self.leave(guild_id)
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
