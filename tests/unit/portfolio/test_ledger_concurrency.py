"""Concurrency tests: interleaved mutations and valuations against one real database."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from liquidity_ledger.config import LedgerConfig
from liquidity_ledger.exceptions import (
    ConcurrencyConflictError,
    InsufficientLiquidityError,
    OverAllocationError,
)
from liquidity_ledger.ledger.models import FixedPrice
from liquidity_ledger.locks import AsyncRWLock, LockRegistry
from liquidity_ledger.portfolio.services import build_services
from liquidity_ledger.types import PoolName, Side

if TYPE_CHECKING:
    from liquidity_ledger.clock import Clock
    from liquidity_ledger.data.database import DatabaseManager
    from liquidity_ledger.portfolio.services import LedgerServices
    from liquidity_ledger.prices.sources import StaticPriceSource

POOL = PoolName.TRADER_CALL


@pytest.fixture
async def pool(services: LedgerServices) -> LedgerServices:
    await services.allocator.create_pool(POOL, 10_000.0)
    return services


async def test_concurrent_fills_never_oversell(pool: LedgerServices) -> None:
    """Three 40% sales race on one position; only two fit."""
    position = await pool.allocator.open_position(
        POOL, "AAPL", Side.BUY, FixedPrice(100.0), 1_000.0
    )

    results = await asyncio.gather(
        *(pool.allocator.record_fill(position.position_id, 40.0, 110.0) for _ in range(3)),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, BaseException)]
    assert len(failures) == 1
    assert isinstance(failures[0], OverAllocationError)
    state = await pool.allocator.get_position(position.position_id)
    assert state.remaining_participation_pct == pytest.approx(20.0)
    assert (await pool.allocator.verify_pool(POOL)).is_consistent


async def test_concurrent_opens_never_overdraw_pool(pool: LedgerServices) -> None:
    results = await asyncio.gather(
        *(
            pool.allocator.open_position(POOL, f"S{i}", Side.BUY, FixedPrice(10.0), 1_000.0)
            for i in range(15)
        ),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, BaseException)]
    assert len(failures) == 5
    assert all(isinstance(f, InsufficientLiquidityError) for f in failures)
    state = await pool.allocator.pool_state(POOL)
    assert state.positions_active == 10
    assert state.available_liquidity == pytest.approx(0.0)
    assert pool.locks.tracked_positions == 0


async def test_valuations_interleaved_with_fills_stay_consistent(
    pool: LedgerServices, prices: StaticPriceSource
) -> None:
    positions = [
        await pool.allocator.open_position(POOL, f"S{i}", Side.BUY, FixedPrice(10.0), 1_000.0)
        for i in range(4)
    ]
    for i in range(4):
        prices.set(f"S{i}", 12.0)

    async def value() -> float:
        valuation = await pool.valuator.current_value(POOL)
        state = valuation.pool_state
        # Every read sees a whole number of fills applied, never half of one.
        assert state.available_liquidity + state.distributed_liquidity == pytest.approx(
            state.initial_liquidity + state.cumulative_realized_pnl
        )
        return valuation.total_value

    await asyncio.gather(
        *(pool.allocator.record_fill(p.position_id, 50.0, 12.0) for p in positions),
        *(value() for _ in range(8)),
    )

    final = await pool.valuator.current_value(POOL)
    assert final.pool_state.cumulative_realized_pnl == pytest.approx(4 * 100.0)
    assert final.total_value == pytest.approx(10_800.0)


async def test_mutation_times_out_behind_held_position_lock(
    db: DatabaseManager,
    config: LedgerConfig,
    prices: StaticPriceSource,
    fixed_clock: Clock,
) -> None:
    impatient = LedgerConfig(db_path=config.db_path, lock_timeout_seconds=0.05)
    services = build_services(db, impatient, price_source=prices, clock=fixed_clock)
    await services.allocator.create_pool(POOL, 10_000.0)
    position = await services.allocator.open_position(
        POOL, "AAPL", Side.BUY, FixedPrice(100.0), 1_000.0
    )

    async with services.locks.position(position.position_id):
        with pytest.raises(ConcurrencyConflictError, match="position:"):
            await services.allocator.record_fill(position.position_id, 10.0, 110.0)

    # Lock released: the retry goes through and nothing was half-written.
    state = await services.allocator.record_fill(position.position_id, 10.0, 110.0)
    assert len(state.fills) == 1


class TestLockRegistry:
    async def test_readers_share_pool(self) -> None:
        locks = LockRegistry(timeout_seconds=0.05)

        async with locks.pool_read("p"), locks.pool_read("p"):
            pass

    async def test_writer_times_out_behind_reader(self) -> None:
        locks = LockRegistry(timeout_seconds=0.05)

        async with locks.pool_read("p"):
            with pytest.raises(ConcurrencyConflictError) as exc_info:
                async with locks.pool_write("p"):
                    pass
            # A timed-out writer no longer blocks new readers.
            async with locks.pool_read("p"):
                pass

        assert exc_info.value.resource == "pool:p:write"
        assert exc_info.value.timeout_seconds == 0.05

    async def test_position_lock_is_dropped_when_idle(self) -> None:
        locks = LockRegistry(timeout_seconds=0.05)

        async with locks.position("a"):
            assert locks.tracked_positions == 1

        assert locks.tracked_positions == 0

    async def test_position_lock_survives_while_awaited(self) -> None:
        locks = LockRegistry(timeout_seconds=1.0)
        entered: list[str] = []

        async def waiter() -> None:
            async with locks.position("a"):
                entered.append("waiter")

        async with locks.position("a"):
            task = asyncio.create_task(waiter())
            await asyncio.sleep(0.01)
            assert entered == []
            assert locks.tracked_positions == 1

        await task
        assert entered == ["waiter"]
        assert locks.tracked_positions == 0

    async def test_timed_out_waiter_releases_its_claim(self) -> None:
        locks = LockRegistry(timeout_seconds=0.05)

        async with locks.position("a"):
            with pytest.raises(ConcurrencyConflictError):
                async with locks.position("a"):
                    pass
            assert locks.tracked_positions == 1

        assert locks.tracked_positions == 0

    async def test_pools_are_independent(self) -> None:
        locks = LockRegistry(timeout_seconds=0.05)

        async with locks.pool_write("a"), locks.pool_write("b"):
            pass


class TestAsyncRWLock:
    async def test_queued_writer_goes_before_new_readers(self) -> None:
        lock = AsyncRWLock()
        order: list[str] = []

        async def writer() -> None:
            await lock.acquire_write()
            order.append("writer")
            await lock.release_write()

        async def late_reader() -> None:
            await lock.acquire_read()
            order.append("reader")
            await lock.release_read()

        await lock.acquire_read()
        writer_task = asyncio.create_task(writer())
        await asyncio.sleep(0.01)
        reader_task = asyncio.create_task(late_reader())
        await asyncio.sleep(0.01)

        assert order == []
        assert lock.readers == 1

        await lock.release_read()
        await asyncio.gather(writer_task, reader_task)

        assert order == ["writer", "reader"]
        assert not lock.write_locked
        assert lock.readers == 0
