"""Pool allocation, valuation and snapshot services."""

from liquidity_ledger.portfolio.allocator import (
    PoolAllocator,
    PoolAudit,
    PoolState,
    compute_pool_state,
)
from liquidity_ledger.portfolio.scheduler import SnapshotScheduler, materialize_pools
from liquidity_ledger.portfolio.services import LedgerServices, build_services
from liquidity_ledger.portfolio.snapshots import EvolutionPoint, PointSource, SnapshotService
from liquidity_ledger.portfolio.valuator import (
    RETURN_PERIODS,
    PeriodReturn,
    PortfolioValuation,
    PortfolioValuator,
    PositionValuation,
)

__all__ = [
    "RETURN_PERIODS",
    "EvolutionPoint",
    "LedgerServices",
    "PeriodReturn",
    "PointSource",
    "PoolAllocator",
    "PoolAudit",
    "PoolState",
    "PortfolioValuation",
    "PortfolioValuator",
    "PositionValuation",
    "SnapshotScheduler",
    "SnapshotService",
    "build_services",
    "compute_pool_state",
    "materialize_pools",
]
