"""
In-process locks for ledger mutations.

A mutex per position serializes appends to one position's ledger; a read/write lock per pool
lets valuations share the pool while a recompute (or a daily materialization) holds it
exclusively. Every wait is bounded: exceeding the timeout raises `ConcurrencyConflictError`.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog

from liquidity_ledger.config import DEFAULT_LOCK_TIMEOUT_SECONDS
from liquidity_ledger.exceptions import ConcurrencyConflictError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable

logger = structlog.get_logger()


class AsyncRWLock:
    """
    Writer-preferring read/write lock built on `asyncio.Condition`.

    Readers share the lock; a writer waits for readers to drain and blocks new readers
    while it is queued.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def write_locked(self) -> bool:
        return self._writer

    async def acquire_read(self) -> None:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1

    async def release_read(self) -> None:
        async with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    async def acquire_write(self) -> None:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            except BaseException:
                self._waiting_writers -= 1
                # Readers queued behind this writer may proceed now.
                self._cond.notify_all()
                raise
            self._waiting_writers -= 1
            self._writer = True

    async def release_write(self) -> None:
        async with self._cond:
            self._writer = False
            self._cond.notify_all()


class LockRegistry:
    """
    Lazily created position and pool locks shared by the ledger services.

    One registry must be shared by every service instance that mutates the same database
    within a process.
    """

    def __init__(self, timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> None:
        self._timeout = timeout_seconds
        self._position_locks: dict[str, asyncio.Lock] = {}
        self._position_users: dict[str, int] = {}
        self._pool_locks: dict[str, AsyncRWLock] = {}

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    @property
    def tracked_positions(self) -> int:
        """Positions whose lock is currently held or awaited."""
        return len(self._position_locks)

    def _position_lock(self, position_id: str) -> asyncio.Lock:
        lock = self._position_locks.get(position_id)
        if lock is None:
            lock = asyncio.Lock()
            self._position_locks[position_id] = lock
        return lock

    def _pool_lock(self, pool: str) -> AsyncRWLock:
        lock = self._pool_locks.get(pool)
        if lock is None:
            lock = AsyncRWLock()
            self._pool_locks[pool] = lock
        return lock

    async def _wait(self, acquire: Awaitable[object], resource: str) -> None:
        try:
            await asyncio.wait_for(acquire, timeout=self._timeout)
        except TimeoutError:
            logger.warning("Lock wait timed out", resource=resource, timeout=self._timeout)
            raise ConcurrencyConflictError(resource, self._timeout) from None

    @asynccontextmanager
    async def position(self, position_id: str) -> AsyncIterator[None]:
        """Hold the mutation lock of one position.

        The lock is dropped from the registry once nobody holds or waits for it.
        """
        lock = self._position_lock(position_id)
        self._position_users[position_id] = self._position_users.get(position_id, 0) + 1
        try:
            await self._wait(lock.acquire(), f"position:{position_id}")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._leave_position(position_id)

    def _leave_position(self, position_id: str) -> None:
        users = self._position_users[position_id] - 1
        if users:
            self._position_users[position_id] = users
        else:
            del self._position_users[position_id]
            del self._position_locks[position_id]

    @asynccontextmanager
    async def pool_read(self, pool: str) -> AsyncIterator[None]:
        """Share the pool with other readers (valuations)."""
        lock = self._pool_lock(pool)
        await self._wait(lock.acquire_read(), f"pool:{pool}:read")
        try:
            yield
        finally:
            await lock.release_read()

    @asynccontextmanager
    async def pool_write(self, pool: str) -> AsyncIterator[None]:
        """Hold the pool exclusively (recompute, materialization)."""
        lock = self._pool_lock(pool)
        await self._wait(lock.acquire_write(), f"pool:{pool}:write")
        try:
            yield
        finally:
            await lock.release_write()
