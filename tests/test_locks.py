"""Tests for KeyedLocks mutual exclusion and entry cleanup."""

from __future__ import annotations

import asyncio

import pytest

from src.conference.core.locks import KeyedLocks


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLocks()
    events: list[str] = []

    async def worker(name: str) -> None:
        async with locks.hold("room1"):
            events.append(f"{name}:in")
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            events.append(f"{name}:out")

    await asyncio.gather(worker("a"), worker("b"))

    assert events == ["a:in", "a:out", "b:in", "b:out"]


@pytest.mark.asyncio
async def test_different_keys_do_not_block_each_other():
    locks = KeyedLocks()
    release = asyncio.Event()

    async def hold_until_released() -> None:
        async with locks.hold("room1"):
            await release.wait()

    task = asyncio.create_task(hold_until_released())
    await asyncio.sleep(0)

    async with locks.hold("room2"):
        assert "room1" in locks and "room2" in locks
    release.set()
    await task


@pytest.mark.asyncio
async def test_entry_dropped_after_release():
    locks = KeyedLocks()

    async with locks.hold(1):
        assert len(locks) == 1
    assert len(locks) == 0
    assert 1 not in locks


@pytest.mark.asyncio
async def test_waiter_keeps_entry_until_last_holder_leaves():
    locks = KeyedLocks()
    release = asyncio.Event()

    async def first() -> None:
        async with locks.hold(1):
            await release.wait()

    async def second() -> None:
        async with locks.hold(1):
            pass

    tasks = [asyncio.create_task(first()), asyncio.create_task(second())]
    await asyncio.sleep(0)
    release.set()
    await asyncio.sleep(0)
    # The first holder is gone; the waiter must still find the same lock
    assert 1 in locks
    await asyncio.gather(*tasks)
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_entry_dropped_when_body_raises():
    locks = KeyedLocks()

    with pytest.raises(RuntimeError):
        async with locks.hold("room1"):
            raise RuntimeError("boom")
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_is_forgotten():
    locks = KeyedLocks()
    release = asyncio.Event()

    async def holder() -> None:
        async with locks.hold(1):
            await release.wait()

    async def waiter() -> None:
        async with locks.hold(1):
            pass

    holding = asyncio.create_task(holder())
    await asyncio.sleep(0)
    waiting = asyncio.create_task(waiter())
    await asyncio.sleep(0)
    waiting.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiting

    release.set()
    await holding
    assert len(locks) == 0
