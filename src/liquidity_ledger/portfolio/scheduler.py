"""Daily snapshot materialization: lock-conflict retries and an interval scheduler."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from liquidity_ledger.exceptions import ConcurrencyConflictError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from liquidity_ledger.portfolio.snapshots import SnapshotService
    from liquidity_ledger.types import PoolName

logger = structlog.get_logger()

DEFAULT_MAX_ATTEMPTS = 3


async def materialize_pools(
    snapshots: SnapshotService,
    pools: Iterable[PoolName],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    wait_min_seconds: float = 0.5,
    wait_max_seconds: float = 10.0,
) -> dict[PoolName, bool]:
    """
    Materialize today's snapshot for each pool.

    Lock timeouts (`ConcurrencyConflictError`) are retried with exponential backoff.

    Returns:
        Mapping of pool to whether its snapshot was written or refreshed.
    """
    results: dict[PoolName, bool] = {}
    for pool in pools:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ConcurrencyConflictError),
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=0.5, min=wait_min_seconds, max=wait_max_seconds),
            reraise=True,
        ):
            with attempt:
                results[pool] = await snapshots.materialize_daily(pool)
    return results


class SnapshotScheduler:
    """
    Materializes today's snapshot of every pool at a fixed interval.

    Ticks are spaced on the monotonic clock, so neither a slow run nor a wall-clock
    change shifts the schedule. Ticks missed during a long run are skipped, not replayed.
    A failed run is logged and the next tick proceeds.
    """

    def __init__(
        self,
        snapshots: SnapshotService,
        list_pools: Callable[[], Awaitable[Iterable[PoolName]]],
        interval_seconds: float,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        wait_min_seconds: float = 0.5,
        wait_max_seconds: float = 10.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._snapshots = snapshots
        self._list_pools = list_pools
        self.interval_seconds = interval_seconds
        self._max_attempts = max_attempts
        self._wait_min_seconds = wait_min_seconds
        self._wait_max_seconds = wait_max_seconds
        self._task: asyncio.Task[None] | None = None
        self.runs = 0
        self.last_results: dict[PoolName, bool] = {}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> dict[PoolName, bool]:
        """Materialize every pool listed right now (pools created later are picked up)."""
        pools = list(await self._list_pools())
        results = await materialize_pools(
            self._snapshots,
            pools,
            max_attempts=self._max_attempts,
            wait_min_seconds=self._wait_min_seconds,
            wait_max_seconds=self._wait_max_seconds,
        )
        self.runs += 1
        self.last_results = results
        logger.info(
            "Snapshots materialized",
            pools=[pool.value for pool in pools],
            written=sum(results.values()),
        )
        return results

    async def _loop(self) -> None:
        next_run = time.monotonic()
        while True:
            if time.monotonic() >= next_run:
                try:
                    await self.run_once()
                except Exception:
                    logger.exception("Snapshot run failed", runs=self.runs)

                next_run += self.interval_seconds
                while next_run <= time.monotonic():
                    next_run += self.interval_seconds

            await asyncio.sleep(max(0, next_run - time.monotonic()))

    async def start(self) -> None:
        """Start ticking; the first run happens immediately."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("Snapshot scheduler started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the loop and wait for an in-flight run to unwind."""
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Snapshot scheduler stopped", runs=self.runs)

    async def __aenter__(self) -> SnapshotScheduler:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.stop()
