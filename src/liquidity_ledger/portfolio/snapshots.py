"""Daily pool snapshots and the portfolio evolution series."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import IntegrityError

from liquidity_ledger.clock import Clock, end_of_business_day, utc_now
from liquidity_ledger.config import LedgerConfig
from liquidity_ledger.data.models import PoolSnapshot
from liquidity_ledger.data.repositories.snapshots import SnapshotRepository
from liquidity_ledger.exceptions import ValidationError
from liquidity_ledger.locks import LockRegistry

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import date

    from liquidity_ledger.data.database import DatabaseManager
    from liquidity_ledger.portfolio.valuator import PortfolioValuation, PortfolioValuator
    from liquidity_ledger.types import PoolName

logger = structlog.get_logger()


class PointSource(str, Enum):
    """Where an evolution point's value came from."""

    SNAPSHOT = "snapshot"
    LIVE = "live"
    CARRIED = "carried"
    RECOMPUTED = "recomputed"


@dataclass(frozen=True)
class EvolutionPoint:
    """Total portfolio value of a pool on one business date."""

    day: date
    total_value: float
    source: PointSource


def _snapshot_values(valuation: PortfolioValuation) -> dict[str, float | int]:
    state = valuation.pool_state
    return {
        "total_portfolio_value": valuation.total_value,
        "initial_liquidity": state.initial_liquidity,
        "cumulative_realized_pnl": state.cumulative_realized_pnl,
        "unrealized_pnl": valuation.unrealized_pnl,
        "total_liquidity": state.total_liquidity,
        "distributed_liquidity": state.distributed_liquidity,
        "available_liquidity": state.available_liquidity,
        "positions_active": state.positions_active,
        "positions_closed": state.positions_closed,
    }


class SnapshotService:
    """Writes one snapshot per pool per business day and reads them back.

    Past days are immutable; today's row is rewritten until the business day ends.
    """

    def __init__(
        self,
        db: DatabaseManager,
        valuator: PortfolioValuator,
        locks: LockRegistry | None = None,
        *,
        config: LedgerConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._db = db
        self._valuator = valuator
        self._config = config or LedgerConfig()
        self._locks = locks or LockRegistry(self._config.lock_timeout_seconds)
        self._clock = clock

    def today(self) -> date:
        return self._valuator.today()

    async def materialize_daily(self, pool: PoolName, as_of: date | None = None) -> bool:
        """Persist the snapshot of `pool` for a business date (default: today).

        A past date is written once and never changes: returns False when its snapshot
        already exists. Today's snapshot is provisional until the day ends, so every run
        rewrites it with the value at that moment and the last run of the day is what
        later reads see. Holds the pool write lock so materializations of one pool never
        overlap.
        """
        today = self.today()
        day = as_of or today
        if day > today:
            raise ValidationError(f"Cannot snapshot a future date ({day.isoformat()})")

        async with self._locks.pool_write(pool.value):
            async with self._db.session_factory() as session:
                existing = await SnapshotRepository(session).get_for_date(pool.value, day)
            if existing is not None and day < today:
                logger.debug("Snapshot exists", pool=pool.value, day=day.isoformat())
                return False

            valuation: PortfolioValuation
            if day == today:
                valuation = await self._valuator.current_value_unlocked(pool)
            else:
                at = end_of_business_day(day, self._config.tzinfo)
                valuation = await self._valuator.value_as_of_unlocked(pool, at)

            values = _snapshot_values(valuation)
            try:
                async with self._db.session_factory() as session, session.begin():
                    repo = SnapshotRepository(session)
                    if existing is not None:
                        await repo.refresh_open_day(pool.value, day, values)
                    else:
                        await repo.add(
                            PoolSnapshot(
                                pool=pool.value,
                                snapshot_date=day,
                                created_at=self._clock(),
                                **values,
                            )
                        )
            except IntegrityError:
                # Another process wrote the same (pool, date) first.
                logger.info("Snapshot written concurrently", pool=pool.value, day=day.isoformat())
                return False

        logger.info(
            "Snapshot refreshed" if existing is not None else "Snapshot materialized",
            pool=pool.value,
            day=day.isoformat(),
            total_value=valuation.total_value,
        )
        return True

    async def list_snapshots(
        self, pool: PoolName, start: date | None = None, end: date | None = None
    ) -> Sequence[PoolSnapshot]:
        async with self._db.session_factory() as session:
            return await SnapshotRepository(session).get_range(pool.value, start, end)

    async def evolution_series(
        self, pool: PoolName, start: date, end: date | None = None
    ) -> list[EvolutionPoint]:
        """Daily total value from `start` to `end` (inclusive, capped at today).

        Past days read their snapshot; today is valued live; a day without a snapshot
        carries forward the last known value. When no earlier value exists at all, the
        pool is recomputed as of that day.
        """
        today = self.today()
        end = min(end or today, today)
        if start > end:
            raise ValidationError(
                f"Start date {start.isoformat()} is after end date {end.isoformat()}"
            )

        async with self._db.session_factory() as session:
            repo = SnapshotRepository(session)
            by_day = {s.snapshot_date: s for s in await repo.get_range(pool.value, start, end)}
            prior = await repo.get_latest_on_or_before(pool.value, start - timedelta(days=1))

        last_known = prior.total_portfolio_value if prior is not None else None
        points: list[EvolutionPoint] = []
        day = start
        while day <= end:
            if day == today:
                value = (await self._valuator.current_value(pool)).total_value
                points.append(EvolutionPoint(day, value, PointSource.LIVE))
            elif day in by_day:
                value = by_day[day].total_portfolio_value
                points.append(EvolutionPoint(day, value, PointSource.SNAPSHOT))
            elif last_known is not None:
                value = last_known
                points.append(EvolutionPoint(day, value, PointSource.CARRIED))
            else:
                at = end_of_business_day(day, self._config.tzinfo)
                value = (await self._valuator.value_as_of(pool, at)).total_value
                points.append(EvolutionPoint(day, value, PointSource.RECOMPUTED))
            last_known = value
            day += timedelta(days=1)
        return points
