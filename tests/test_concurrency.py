"""Tests for per-key locks."""

import asyncio

import pytest

from finledger.concurrency import KeyedLock


class TestKeyedLock:
    """Serialization and cleanup."""

    @pytest.mark.asyncio
    async def test_lock_table_empty_after_release(self):
        locks = KeyedLock()
        for n in range(100):
            async with locks.hold(f"tx-{n}", "acc-wallet"):
                assert locks.locked(f"tx-{n}")
        assert len(locks) == 0
        assert locks.locked("acc-wallet") is False

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLock()
        order: list[str] = []

        async def worker(name: str):
            async with locks.hold("acc-wallet"):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"), worker("c"))

        assert order == ["a-in", "a-out", "b-in", "b-out", "c-in", "c-out"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_kept_while_waiters_remain(self):
        locks = KeyedLock()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with locks.hold("acc-wallet"):
                entered.set()
                await release.wait()

        async def waiter():
            async with locks.hold("acc-wallet"):
                pass

        first = asyncio.create_task(holder())
        await entered.wait()
        second = asyncio.create_task(waiter())
        await asyncio.sleep(0)

        assert len(locks) == 1
        release.set()
        await asyncio.gather(first, second)
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_leak(self):
        locks = KeyedLock()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with locks.hold("acc-wallet"):
                entered.set()
                await release.wait()

        async def waiter():
            async with locks.hold("acc-wallet"):
                pass

        first = asyncio.create_task(holder())
        await entered.wait()
        second = asyncio.create_task(waiter())
        await asyncio.sleep(0)
        second.cancel()
        with pytest.raises(asyncio.CancelledError):
            await second

        release.set()
        await first
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_none_and_duplicate_keys_ignored(self):
        locks = KeyedLock()
        async with locks.hold("acc-b", None, "acc-a", "acc-b"):
            assert len(locks) == 2
        assert len(locks) == 0
