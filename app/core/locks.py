"""Per (tenant, provider, date) locks around conflict detection and insert."""

import asyncio
import datetime as dt
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis
import structlog
from redis.exceptions import LockError

from app.core.exceptions import SlotBusyError

logger = structlog.get_logger(__name__)


def slot_key(tenant_id: str, provider_id: str, date: dt.date) -> str:
    """Lock name for one provider's calendar day."""
    return f"slot-lock:{tenant_id}:{provider_id}:{date.isoformat()}"


class RedisSlotLock:
    """Slot lock shared by every worker process through Redis."""

    def __init__(self, client: redis.Redis, timeout: float = 10.0, wait: float = 5.0):
        """
        Initialize lock factory.

        Args:
            client: Redis client
            timeout: Seconds after which a held lock expires
            wait: Seconds to wait for a held lock before giving up
        """
        self.client = client
        self.timeout = timeout
        self.wait = wait

    @asynccontextmanager
    async def hold(self, tenant_id: str, provider_id: str, date: dt.date) -> AsyncIterator[None]:
        """Hold the slot lock for the body of the ``async with`` block."""
        key = slot_key(tenant_id, provider_id, date)
        # acquire and release may run on different worker threads
        lock = self.client.lock(
            key, timeout=self.timeout, blocking_timeout=self.wait, thread_local=False
        )

        # redis-py blocks while polling, keep it off the event loop
        acquired = await asyncio.to_thread(lock.acquire)
        if not acquired:
            logger.warning("slot_lock_busy", key=key, backend="redis")
            raise SlotBusyError()

        try:
            yield
        finally:
            try:
                await asyncio.to_thread(lock.release)
            except LockError as e:
                logger.warning("slot_lock_release_failed", key=key, error=str(e))


class LocalSlotLock:
    """Slot lock for a single process, backed by ``asyncio.Lock``."""

    def __init__(self, wait: float = 5.0):
        """Initialize lock registry."""
        self.wait = wait
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, tenant_id: str, provider_id: str, date: dt.date) -> AsyncIterator[None]:
        """Hold the slot lock for the body of the ``async with`` block."""
        key = slot_key(tenant_id, provider_id, date)
        lock = self._lock_for(key)

        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.wait)
        except TimeoutError:
            logger.warning("slot_lock_busy", key=key, backend="local")
            raise SlotBusyError() from None

        try:
            yield
        finally:
            lock.release()
