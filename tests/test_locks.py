"""
Tests for per-key asyncio locks.
"""

import asyncio

import pytest

from gitrank.utils.locks import KeyedLock


class TestKeyedLock:

    async def test_same_key_serializes(self):
        locks = KeyedLock()
        events = []

        async def worker(name):
            async with locks.hold("user-1"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    async def test_different_keys_run_in_parallel(self):
        locks = KeyedLock()
        both = asyncio.Event()
        entered = []

        async def worker(key):
            async with locks.hold(key):
                entered.append(key)
                if len(entered) == 2:
                    both.set()
                await asyncio.wait_for(both.wait(), timeout=1)

        await asyncio.gather(worker(1), worker(2))

        assert sorted(entered) == [1, 2]

    async def test_hold_many_with_overlapping_keys(self):
        locks = KeyedLock()
        order = []

        async def vote(pair, name):
            async with locks.hold_many(pair):
                order.append(name)
                await asyncio.sleep(0.01)

        await asyncio.wait_for(asyncio.gather(
            vote((1, 2), "first"),
            vote((2, 1), "second"),
            vote((2, 3), "third"),
        ), timeout=2)

        assert sorted(order) == ["first", "second", "third"]

    async def test_locks_are_dropped_when_idle(self):
        locks = KeyedLock()

        async with locks.hold_many([5, 3, 5]):
            assert len(locks) == 2
        async with locks.hold("x"):
            assert len(locks) == 1

        assert len(locks) == 0

    async def test_released_after_error(self):
        locks = KeyedLock()

        with pytest.raises(RuntimeError):
            async with locks.hold("k"):
                raise RuntimeError("boom")

        assert len(locks) == 0
        async with locks.hold("k"):
            pass
