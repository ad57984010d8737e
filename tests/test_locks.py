"""Tests for slot locks."""

import asyncio
import datetime as dt

import fakeredis
import pytest

from app.core.exceptions import SlotBusyError
from app.core.locks import LocalSlotLock, RedisSlotLock, slot_key

DAY = dt.date(2026, 3, 5)


def test_slot_key():
    assert slot_key("t1", "d1", DAY) == "slot-lock:t1:d1:2026-03-05"


class TestLocalSlotLock:
    @pytest.mark.asyncio
    async def test_busy_slot_times_out(self):
        lock = LocalSlotLock(wait=0.05)

        async with lock.hold("t1", "d1", DAY):
            with pytest.raises(SlotBusyError):
                async with lock.hold("t1", "d1", DAY):
                    pass

    @pytest.mark.asyncio
    async def test_other_provider_not_blocked(self):
        lock = LocalSlotLock(wait=0.05)

        async with lock.hold("t1", "d1", DAY):
            async with lock.hold("t1", "d2", DAY):
                pass

    @pytest.mark.asyncio
    async def test_released_after_error(self):
        lock = LocalSlotLock(wait=0.05)

        with pytest.raises(RuntimeError):
            async with lock.hold("t1", "d1", DAY):
                raise RuntimeError("boom")

        async with lock.hold("t1", "d1", DAY):
            pass

    @pytest.mark.asyncio
    async def test_serializes_holders(self):
        lock = LocalSlotLock(wait=1.0)
        events: list[str] = []

        async def worker(name: str) -> None:
            async with lock.hold("t1", "d1", DAY):
                events.append(f"{name}:in")
                await asyncio.sleep(0.01)
                events.append(f"{name}:out")

        await asyncio.gather(worker("a"), worker("b"))

        assert events in (
            ["a:in", "a:out", "b:in", "b:out"],
            ["b:in", "b:out", "a:in", "a:out"],
        )


class TestRedisSlotLock:
    @pytest.fixture
    def redis_client(self) -> fakeredis.FakeRedis:
        return fakeredis.FakeRedis()

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, redis_client):
        lock = RedisSlotLock(redis_client, timeout=10, wait=1)
        key = slot_key("t1", "d1", DAY)

        async with lock.hold("t1", "d1", DAY):
            assert redis_client.exists(key) == 1

        assert redis_client.exists(key) == 0

    @pytest.mark.asyncio
    async def test_busy(self, redis_client):
        lock = RedisSlotLock(redis_client, timeout=10, wait=0.05)

        async with lock.hold("t1", "d1", DAY):
            with pytest.raises(SlotBusyError):
                async with lock.hold("t1", "d1", DAY):
                    pass

    @pytest.mark.asyncio
    async def test_released_after_error(self, redis_client):
        lock = RedisSlotLock(redis_client, timeout=10, wait=0.05)

        with pytest.raises(RuntimeError):
            async with lock.hold("t1", "d1", DAY):
                raise RuntimeError("boom")

        assert redis_client.exists(slot_key("t1", "d1", DAY)) == 0

    @pytest.mark.asyncio
    async def test_concurrent_holders(self, redis_client):
        lock = RedisSlotLock(redis_client, timeout=30, wait=10)
        inside = 0
        peak = 0

        async def worker() -> None:
            nonlocal inside, peak
            for _ in range(3):
                async with lock.hold("t1", "d1", DAY):
                    inside += 1
                    peak = max(peak, inside)
                    await asyncio.sleep(0.005)
                    inside -= 1

        await asyncio.gather(*(worker() for _ in range(4)))

        assert peak == 1
        assert redis_client.exists(slot_key("t1", "d1", DAY)) == 0
