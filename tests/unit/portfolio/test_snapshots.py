"""Tests for daily snapshots and the evolution series."""

from __future__ import annotations

import asyncio
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from liquidity_ledger.exceptions import ValidationError
from liquidity_ledger.ledger.models import FixedPrice
from liquidity_ledger.portfolio.snapshots import EvolutionPoint, PointSource
from liquidity_ledger.types import PoolName, Side

if TYPE_CHECKING:
    from liquidity_ledger.portfolio.services import LedgerServices
    from liquidity_ledger.prices.sources import StaticPriceSource
    from tests.conftest import FixedClock

POOL = PoolName.TRADER_CALL
NOW = datetime(2026, 3, 10, 15, 0, tzinfo=UTC)
TODAY = date(2026, 3, 10)


def days_ago(n: int) -> date:
    return TODAY - timedelta(days=n)


@pytest.fixture
async def pool(services: LedgerServices) -> LedgerServices:
    await services.allocator.create_pool(POOL, 10_000.0)
    return services


@pytest.fixture
async def history(pool: LedgerServices) -> LedgerServices:
    """$1000 @ $50 opened five days ago; half sold @ $60 three days ago."""
    position = await pool.allocator.open_position(
        POOL,
        "AAPL",
        Side.BUY,
        FixedPrice(50.0),
        1_000.0,
        opened_at=datetime(2026, 3, 5, 14, 0, tzinfo=UTC),
    )
    await pool.allocator.record_fill(
        position.position_id, 50.0, 60.0, datetime(2026, 3, 7, 14, 0, tzinfo=UTC)
    )
    return pool


class TestMaterializeDaily:
    async def test_writes_today(self, pool: LedgerServices, prices: StaticPriceSource) -> None:
        await pool.allocator.open_position(POOL, "AAPL", Side.BUY, FixedPrice(50.0), 1_000.0)
        prices.set("AAPL", 55.0)

        assert await pool.snapshots.materialize_daily(POOL) is True

        [snapshot] = await pool.snapshots.list_snapshots(POOL)
        assert snapshot.snapshot_date == TODAY
        assert snapshot.total_portfolio_value == pytest.approx(10_100.0)
        assert snapshot.unrealized_pnl == pytest.approx(100.0)
        assert snapshot.distributed_liquidity == pytest.approx(1_000.0)
        assert snapshot.available_liquidity == pytest.approx(9_000.0)
        assert snapshot.positions_active == 1

    async def test_today_is_rewritten_until_the_day_ends(
        self, pool: LedgerServices, prices: StaticPriceSource, fixed_clock: FixedClock
    ) -> None:
        await pool.allocator.open_position(POOL, "AAPL", Side.BUY, FixedPrice(50.0), 1_000.0)
        prices.set("AAPL", 60.0)
        assert await pool.snapshots.materialize_daily(POOL) is True

        # 20:00 in Montevideo, same business date.
        fixed_clock.time = NOW + timedelta(hours=8)
        prices.set("AAPL", 70.0)
        assert await pool.snapshots.materialize_daily(POOL) is True

        [snapshot] = await pool.snapshots.list_snapshots(POOL)
        assert snapshot.total_portfolio_value == pytest.approx(10_400.0)
        assert snapshot.unrealized_pnl == pytest.approx(400.0)

        fixed_clock.time = NOW + timedelta(days=1)
        prices.set("AAPL", 80.0)
        assert await pool.snapshots.materialize_daily(POOL, TODAY) is False

        series = await pool.snapshots.evolution_series(POOL, TODAY, TODAY)
        assert series == [EvolutionPoint(TODAY, pytest.approx(10_400.0), PointSource.SNAPSHOT)]

    async def test_past_date_written_once(self, history: LedgerServices) -> None:
        assert await history.snapshots.materialize_daily(POOL, days_ago(2)) is True
        assert await history.snapshots.materialize_daily(POOL, days_ago(2)) is False

        assert len(await history.snapshots.list_snapshots(POOL)) == 1

    async def test_concurrent_materialization_writes_one_row(self, pool: LedgerServices) -> None:
        results = await asyncio.gather(
            pool.snapshots.materialize_daily(POOL),
            pool.snapshots.materialize_daily(POOL),
        )

        assert results == [True, True]
        assert len(await pool.snapshots.list_snapshots(POOL)) == 1

    async def test_future_date_rejected(self, pool: LedgerServices) -> None:
        with pytest.raises(ValidationError, match="future"):
            await pool.snapshots.materialize_daily(POOL, TODAY + timedelta(days=1))

    async def test_past_date_uses_ledger_as_of_that_day(self, history: LedgerServices) -> None:
        await history.snapshots.materialize_daily(POOL, days_ago(4))
        await history.snapshots.materialize_daily(POOL, days_ago(2))

        before, after = await history.snapshots.list_snapshots(POOL)
        assert before.snapshot_date == days_ago(4)
        assert before.total_portfolio_value == pytest.approx(10_000.0)
        assert before.cumulative_realized_pnl == 0.0
        assert after.total_portfolio_value == pytest.approx(10_100.0)
        assert after.cumulative_realized_pnl == pytest.approx(100.0)
        assert after.distributed_liquidity == pytest.approx(500.0)


class TestEvolutionSeries:
    async def test_carries_forward_between_snapshots(
        self, history: LedgerServices, prices: StaticPriceSource
    ) -> None:
        await history.snapshots.materialize_daily(POOL, days_ago(4))
        await history.snapshots.materialize_daily(POOL, days_ago(2))
        prices.set("AAPL", 55.0)

        series = await history.snapshots.evolution_series(POOL, days_ago(6))

        assert series == [
            EvolutionPoint(days_ago(6), pytest.approx(10_000.0), PointSource.RECOMPUTED),
            EvolutionPoint(days_ago(5), pytest.approx(10_000.0), PointSource.CARRIED),
            EvolutionPoint(days_ago(4), pytest.approx(10_000.0), PointSource.SNAPSHOT),
            EvolutionPoint(days_ago(3), pytest.approx(10_000.0), PointSource.CARRIED),
            EvolutionPoint(days_ago(2), pytest.approx(10_100.0), PointSource.SNAPSHOT),
            EvolutionPoint(days_ago(1), pytest.approx(10_100.0), PointSource.CARRIED),
            EvolutionPoint(TODAY, pytest.approx(10_150.0), PointSource.LIVE),
        ]

    async def test_starts_from_prior_snapshot(self, history: LedgerServices) -> None:
        await history.snapshots.materialize_daily(POOL, days_ago(2))

        series = await history.snapshots.evolution_series(POOL, days_ago(1), days_ago(1))

        assert series == [
            EvolutionPoint(days_ago(1), pytest.approx(10_100.0), PointSource.CARRIED)
        ]

    async def test_end_is_capped_at_today(self, pool: LedgerServices) -> None:
        series = await pool.snapshots.evolution_series(
            POOL, days_ago(1), TODAY + timedelta(days=5)
        )

        assert [p.day for p in series] == [days_ago(1), TODAY]

    async def test_start_after_end_rejected(self, pool: LedgerServices) -> None:
        with pytest.raises(ValidationError):
            await pool.snapshots.evolution_series(POOL, days_ago(1), days_ago(3))
