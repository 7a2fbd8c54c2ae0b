from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

import discord

from utils.text import parse_duration_seconds


log = logging.getLogger("bitcraft.reminders")

REMINDER_USAGE = "Usage: `?remind <time> <once/repeat> <mention> <your message> [embed] [embed message]`"
REMINDER_MODES = ("once", "repeat")
REMINDER_COLOUR = 0xF9A825

SleepFn = Callable[[float], Awaitable[None]]


class ReminderParseError(ValueError):
    """Carries the reply shown to the user for malformed reminder arguments."""


@dataclass(frozen=True, slots=True)
class ReminderRequest:
    interval_seconds: int
    interval_label: str
    repeat: bool
    mention: str
    message: str
    embed_text: str | None = None

    @property
    def content(self) -> str:
        return f"Hey {self.mention} {self.message}".rstrip()

    @property
    def confirmation(self) -> str:
        mode = "send repeatedly" if self.repeat else "send once"
        return f"Reminder set! I will {mode} after **{self.interval_label}**."


ReminderSender = Callable[[ReminderRequest], Awaitable[None]]


def channel_sender(channel: Any) -> ReminderSender:
    async def _send(request: ReminderRequest) -> None:
        if request.embed_text is None:
            await channel.send(content=request.content)
            return
        embed = discord.Embed(title="Reminder", description=request.embed_text, colour=discord.Colour(REMINDER_COLOUR))
        await channel.send(content=request.content, embed=embed)

    return _send


def parse_reminder_args(args: Sequence[str]) -> ReminderRequest:
    if len(args) < 4:
        raise ReminderParseError(REMINDER_USAGE)

    time_arg = args[0].lower()
    mode = args[1].lower()
    mention = args[2]
    message_part = list(args[3:])

    seconds = parse_duration_seconds(time_arg)
    if seconds is None:
        raise ReminderParseError("Invalid time format. Use `<value><unit>` like `10m` or `5h`.")
    if mode not in REMINDER_MODES:
        raise ReminderParseError("Mode must be either `once` or `repeat`.")

    embed_text: str | None = None
    lowered = [part.lower() for part in message_part]
    if "embed" in lowered:
        index = lowered.index("embed")
        embed_text = " ".join(message_part[index + 1 :]) or "No embed message provided."
        message_part = message_part[:index]

    return ReminderRequest(
        interval_seconds=seconds,
        interval_label=time_arg,
        repeat=mode == "repeat",
        mention=mention,
        message=" ".join(message_part),
        embed_text=embed_text,
    )


class ReminderScheduler:
    """Per-guild reminder tasks. Owned by the bot and torn down with it."""

    def __init__(self, *, sleep: SleepFn = asyncio.sleep) -> None:
        self._sleep = sleep
        self._tasks: dict[int, set[asyncio.Task]] = {}

    def schedule(self, guild_id: int, request: ReminderRequest, send: ReminderSender) -> asyncio.Task:
        key = int(guild_id)
        task = asyncio.create_task(self._run(key, request, send), name=f"reminder:{key}")
        bucket = self._tasks.setdefault(key, set())
        bucket.add(task)
        task.add_done_callback(lambda done, key=key: self._forget(key, done))
        log.info(
            "Reminder scheduled guild_id=%s every=%ss repeat=%s",
            key,
            request.interval_seconds,
            request.repeat,
        )
        return task

    def active_count(self, guild_id: int) -> int:
        return sum(1 for task in self._tasks.get(int(guild_id), ()) if not task.done())

    async def stop_guild(self, guild_id: int) -> int:
        tasks = [task for task in self._tasks.pop(int(guild_id), set()) if not task.done()]
        await self._cancel(tasks)
        if tasks:
            log.info("Stopped %s reminder(s) for guild_id=%s", len(tasks), guild_id)
        return len(tasks)

    async def cancel_all(self) -> int:
        tasks = [task for bucket in self._tasks.values() for task in bucket if not task.done()]
        self._tasks.clear()
        await self._cancel(tasks)
        return len(tasks)

    async def _run(self, guild_id: int, request: ReminderRequest, send: ReminderSender) -> None:
        while True:
            await self._sleep(request.interval_seconds)
            try:
                await send(request)
            except Exception:
                log.exception("Failed to send reminder for guild_id=%s", guild_id)
            if not request.repeat:
                return

    def _forget(self, guild_id: int, task: asyncio.Task) -> None:
        bucket = self._tasks.get(guild_id)
        if bucket is None:
            return
        bucket.discard(task)
        if not bucket:
            self._tasks.pop(guild_id, None)

    @staticmethod
    async def _cancel(tasks: list[asyncio.Task]) -> None:
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
