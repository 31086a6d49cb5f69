"""
KeyedLocks mutual exclusion and cleanup.
"""

import asyncio

from filevendor.utils.locks import KeyedLocks


async def test_same_key_is_serialized():
    locks = KeyedLocks()
    active = 0
    peak = 0

    async def worker():
        nonlocal active, peak
        async with locks.hold("k"):
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(worker() for _ in range(5)))

    assert peak == 1
    assert len(locks) == 0


async def test_different_keys_do_not_block_each_other():
    locks = KeyedLocks()
    async with locks.hold("a"):
        await asyncio.wait_for(_hold_briefly(locks, "b"), timeout=1)
        assert locks.locked("a")
        assert not locks.locked("b")


async def _hold_briefly(locks: KeyedLocks, key: str) -> None:
    async with locks.hold(key):
        await asyncio.sleep(0)


async def test_lock_is_released_on_error():
    locks = KeyedLocks()
    try:
        async with locks.hold("k"):
            raise ValueError("boom")
    except ValueError:
        pass

    assert len(locks) == 0
    async with locks.hold("k"):
        assert locks.locked("k")
