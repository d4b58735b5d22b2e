"""Mark-to-market valuation of a pool and its weighted returns."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, timedelta
from typing import TYPE_CHECKING

import structlog

from liquidity_ledger.clock import Clock, as_utc, business_date, end_of_business_day, utc_now
from liquidity_ledger.config import LedgerConfig
from liquidity_ledger.data.repositories.pools import PoolRepository
from liquidity_ledger.data.repositories.snapshots import SnapshotRepository
from liquidity_ledger.ledger.aggregator import fold_position_as_of
from liquidity_ledger.ledger.store import LedgerStore
from liquidity_ledger.locks import LockRegistry
from liquidity_ledger.portfolio.allocator import PoolState, compute_pool_state, fold_pool
from liquidity_ledger.prices.base import price_or_fallback
from liquidity_ledger.types import EPSILON, PositionStatus

if TYPE_CHECKING:
    from datetime import datetime

    from liquidity_ledger.data.database import DatabaseManager
    from liquidity_ledger.ledger.models import PositionState
    from liquidity_ledger.prices.base import PriceSource
    from liquidity_ledger.types import PoolName

logger = structlog.get_logger()

# Windows reported by `returns_by_period`, in days.
RETURN_PERIODS: dict[str, int] = {
    "1d": 1,
    "7d": 7,
    "15d": 15,
    "30d": 30,
    "180d": 180,
    "365d": 365,
}


@dataclass(frozen=True)
class PositionValuation:
    """One position marked at a price."""

    position: PositionState
    current_price: float
    price_is_fallback: bool

    @property
    def unrealized_pnl(self) -> float:
        if not self.position.is_active:
            return 0.0
        return self.position.unrealized_pnl(self.current_price)

    @property
    def market_value(self) -> float:
        if not self.position.is_active:
            return 0.0
        return self.position.allocated_amount + self.unrealized_pnl

    @property
    def unrealized_return(self) -> float:
        """Unrealized P&L as a fraction of the capital still allocated."""
        allocated = self.position.allocated_amount
        return self.unrealized_pnl / allocated if allocated > EPSILON else 0.0


@dataclass(frozen=True)
class PortfolioValuation:
    """Pool totals plus per-position marks at one instant."""

    pool_state: PoolState
    positions: tuple[PositionValuation, ...]
    as_of: datetime

    @property
    def unrealized_pnl(self) -> float:
        return sum(p.unrealized_pnl for p in self.positions)

    @property
    def total_value(self) -> float:
        return self.pool_state.total_liquidity + self.unrealized_pnl

    @property
    def weighted_return(self) -> float:
        """Capital-weighted unrealized return of the active positions.

        Σ unrealized / Σ allocated, never an average of per-position percentages.
        """
        distributed = self.pool_state.distributed_liquidity
        return self.unrealized_pnl / distributed if distributed > EPSILON else 0.0

    @property
    def positions_active(self) -> int:
        return self.pool_state.positions_active

    @property
    def positions_closed(self) -> int:
        return self.pool_state.positions_closed


@dataclass(frozen=True)
class PeriodReturn:
    """Change in total portfolio value between two business dates."""

    label: str
    start: date
    end: date
    start_value: float
    end_value: float

    @property
    def change(self) -> float:
        return self.end_value - self.start_value

    @property
    def return_fraction(self) -> float | None:
        if abs(self.start_value) <= EPSILON:
            return None
        return self.change / self.start_value


class PortfolioValuator:
    """
    Values pools from the ledger and a price source.

    Never writes to the database, so cancelling a valuation leaves nothing behind.
    """

    def __init__(
        self,
        db: DatabaseManager,
        price_source: PriceSource,
        locks: LockRegistry | None = None,
        *,
        config: LedgerConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._db = db
        self._price_source = price_source
        self._config = config or LedgerConfig()
        self._locks = locks or LockRegistry(self._config.lock_timeout_seconds)
        self._clock = clock

    def today(self) -> date:
        """Current business date."""
        return business_date(self._clock(), self._config.tzinfo)

    async def current_value(self, pool: PoolName) -> PortfolioValuation:
        """Value the pool now: fresh fold under the pool read lock, then live marks."""
        async with self._locks.pool_read(pool.value):
            state, positions = await self._fold_pool(pool)
        return await self.mark(state, positions)

    async def value_as_of(self, pool: PoolName, at: datetime) -> PortfolioValuation:
        """Value the pool as it stood at `at`.

        Only events effective by then are folded (corrections always apply). Historical
        quotes are not available, so open positions are marked at their entry price.
        """
        async with self._locks.pool_read(pool.value):
            return await self.value_as_of_unlocked(pool, at)

    async def _fold_pool(self, pool: PoolName) -> tuple[PoolState, list[PositionState]]:
        async with self._db.session_factory() as session:
            row = await PoolRepository(session).require(pool.value)
            grouped = await LedgerStore(session).events_by_position(pool.value)
        positions = fold_pool(grouped)
        return compute_pool_state(pool, row.initial_liquidity, positions), positions

    async def current_value_unlocked(self, pool: PoolName) -> PortfolioValuation:
        """`current_value` for callers already holding the pool lock."""
        state, positions = await self._fold_pool(pool)
        return await self.mark(state, positions)

    async def value_as_of_unlocked(self, pool: PoolName, at: datetime) -> PortfolioValuation:
        """`value_as_of` for callers already holding the pool lock."""
        cutoff = as_utc(at)
        async with self._db.session_factory() as session:
            row = await PoolRepository(session).require(pool.value)
            grouped = await LedgerStore(session).events_by_position(pool.value)
        positions = [
            state
            for events in grouped.values()
            if (state := fold_position_as_of(events, cutoff)) is not None
        ]
        state = compute_pool_state(pool, row.initial_liquidity, positions)
        marks = tuple(
            PositionValuation(position=p, current_price=p.entry_price, price_is_fallback=True)
            for p in positions
            if p.status is not PositionStatus.DISCARDED
        )
        return PortfolioValuation(pool_state=state, positions=marks, as_of=cutoff)

    async def mark(
        self, state: PoolState, positions: list[PositionState]
    ) -> PortfolioValuation:
        """Mark active positions concurrently; missing quotes fall back to entry price."""
        active = [p for p in positions if p.is_active]
        timeout = self._config.price_timeout_seconds
        quotes = await asyncio.gather(
            *(
                price_or_fallback(self._price_source, p.symbol, p.entry_price, timeout)
                for p in active
            )
        )
        marks = tuple(
            PositionValuation(position=p, current_price=price, price_is_fallback=fallback)
            for p, (price, fallback) in zip(active, quotes, strict=True)
        )
        valuation = PortfolioValuation(pool_state=state, positions=marks, as_of=self._clock())
        logger.debug(
            "Pool valued",
            pool=state.pool.value,
            total_value=valuation.total_value,
            unrealized=valuation.unrealized_pnl,
            fallbacks=sum(1 for m in marks if m.price_is_fallback),
        )
        return valuation

    async def value_on(self, pool: PoolName, day: date, *, nearest_snapshot: bool = False) -> float:
        """Total portfolio value on a business date.

        Today is valued live. A past date uses its snapshot when one exists (or, with
        `nearest_snapshot`, the closest earlier snapshot); otherwise the pool is recomputed
        as of the end of that day.
        """
        if day >= self.today():
            return (await self.current_value(pool)).total_value

        async with self._db.session_factory() as session:
            repo = SnapshotRepository(session)
            if nearest_snapshot:
                snapshot = await repo.get_latest_on_or_before(pool.value, day)
            else:
                snapshot = await repo.get_for_date(pool.value, day)
        if snapshot is not None:
            return snapshot.total_portfolio_value

        at = end_of_business_day(day, self._config.tzinfo)
        return (await self.value_as_of(pool, at)).total_value

    async def period_return(
        self, pool: PoolName, start: date, end: date | None = None, *, label: str = ""
    ) -> PeriodReturn:
        """(value(end) − value(start)) / value(start) over whole-pool values."""
        end = end or self.today()
        start_value = await self.value_on(pool, start)
        end_value = await self.value_on(pool, end)
        return PeriodReturn(
            label=label or f"{start.isoformat()}..{end.isoformat()}",
            start=start,
            end=end,
            start_value=start_value,
            end_value=end_value,
        )

    async def returns_by_period(self, pool: PoolName) -> dict[str, PeriodReturn]:
        """Returns over the standard windows, each ending today.

        Window starts use the closest snapshot on or before the start date.
        """
        today = self.today()
        end_value = (await self.current_value(pool)).total_value
        results: dict[str, PeriodReturn] = {}
        for label, days in RETURN_PERIODS.items():
            start = today - timedelta(days=days)
            start_value = await self.value_on(pool, start, nearest_snapshot=True)
            results[label] = PeriodReturn(
                label=label,
                start=start,
                end=today,
                start_value=start_value,
                end_value=end_value,
            )
        return results
