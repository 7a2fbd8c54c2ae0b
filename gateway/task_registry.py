from __future__ import annotations

import asyncio
from typing import Awaitable, Callable


class SingletonTaskRegistry:
    """Named background tasks; starting a name that is still running is a no-op."""

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task] = {}

    def start_once(self, name: str, factory: Callable[[], Awaitable[None]]) -> asyncio.Task:
        task = self._tasks.get(name)
        if task and not task.done():
            return task
        task = asyncio.create_task(factory(), name=name)
        self._tasks[name] = task
        return task

    def get(self, name: str) -> asyncio.Task | None:
        return self._tasks.get(name)

    def running_names(self) -> list[str]:
        return sorted(name for name, task in self._tasks.items() if not task.done())

    async def cancel(self, name: str) -> bool:
        task = self._tasks.pop(name, None)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def cancel_all(self) -> None:
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


class GuildLockRegistry:
    """One asyncio.Lock per guild so guilds never block each other."""

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}

    def lock_for(self, guild_id: int) -> asyncio.Lock:
        key = int(guild_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def discard(self, guild_id: int) -> None:
        lock = self._locks.get(int(guild_id))
        if lock is not None and not lock.locked():
            self._locks.pop(int(guild_id), None)

    def __contains__(self, guild_id: object) -> bool:
        return guild_id in self._locks

    def __len__(self) -> int:
        return len(self._locks)
