import asyncio

import pytest

from familyos.services.infrastructure.keyed_locks import KeyedLocks


@pytest.mark.asyncio
async def test_same_key_is_serialized_and_entry_dropped():
    locks = KeyedLocks()
    order = []

    async def worker(name):
        async with locks.hold("cal-a"):
            order.append(f"{name}:in")
            await asyncio.sleep(0)
            order.append(f"{name}:out")

    await asyncio.gather(worker("first"), worker("second"), worker("third"))

    assert order == [
        "first:in",
        "first:out",
        "second:in",
        "second:out",
        "third:in",
        "third:out",
    ]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_entry_survives_while_a_waiter_remains():
    locks = KeyedLocks()
    release = asyncio.Event()

    async def holder():
        async with locks.hold("hh-1"):
            await release.wait()

    async def waiter():
        async with locks.hold("hh-1"):
            return len(locks)

    held = asyncio.create_task(holder())
    await asyncio.sleep(0)
    waiting = asyncio.create_task(waiter())
    await asyncio.sleep(0)

    release.set()
    await held

    assert await waiting == 1
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_different_keys_do_not_block():
    locks = KeyedLocks()

    async with locks.hold("cal-a"):
        async with locks.hold("cal-b"):
            assert len(locks) == 2

    assert len(locks) == 0


@pytest.mark.asyncio
async def test_entry_dropped_when_body_raises():
    locks = KeyedLocks()

    with pytest.raises(RuntimeError):
        async with locks.hold("cal-a"):
            raise RuntimeError("boom")

    assert len(locks) == 0
