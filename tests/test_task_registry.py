from __future__ import annotations

import asyncio

import pytest

from gateway.task_registry import GuildLockRegistry, SingletonTaskRegistry


@pytest.mark.asyncio
async def test_start_once_reuses_running_task():
    registry = SingletonTaskRegistry()

    async def worker():
        await asyncio.sleep(60)

    first = registry.start_once("self-test", worker)
    second = registry.start_once("self-test", worker)

    assert first is second
    assert registry.running_names() == ["self-test"]

    await registry.cancel_all()
    assert first.cancelled()
    assert registry.get("self-test") is None


@pytest.mark.asyncio
async def test_finished_task_is_restarted():
    registry = SingletonTaskRegistry()

    async def quick():
        return None

    first = registry.start_once("job", quick)
    await first
    second = registry.start_once("job", quick)
    await second

    assert first is not second


@pytest.mark.asyncio
async def test_cancel_stops_one_named_task():
    registry = SingletonTaskRegistry()

    async def worker():
        await asyncio.sleep(60)

    status = registry.start_once("server_status:1", worker)
    other = registry.start_once("server_status:2", worker)

    assert await registry.cancel("server_status:1") is True
    assert await registry.cancel("server_status:1") is False
    assert status.cancelled()
    assert registry.running_names() == ["server_status:2"]

    await registry.cancel_all()
    assert other.cancelled()


@pytest.mark.asyncio
async def test_guild_locks_are_per_guild():
    locks = GuildLockRegistry()

    assert locks.lock_for(1) is locks.lock_for(1)
    assert locks.lock_for(1) is not locks.lock_for(2)

    async with locks.lock_for(1):
        locks.discard(1)
        assert 1 in locks
        assert not locks.lock_for(2).locked()

    locks.discard(1)
    assert 1 not in locks
    assert len(locks) == 1
