"""Wiring of the ledger services around one database and one lock registry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from liquidity_ledger.clock import Clock, utc_now
from liquidity_ledger.config import LedgerConfig
from liquidity_ledger.locks import LockRegistry
from liquidity_ledger.portfolio.allocator import PoolAllocator
from liquidity_ledger.portfolio.snapshots import SnapshotService
from liquidity_ledger.portfolio.valuator import PortfolioValuator
from liquidity_ledger.prices.sources import DatabasePriceSource

if TYPE_CHECKING:
    from liquidity_ledger.data.database import DatabaseManager
    from liquidity_ledger.prices.base import PriceSource


@dataclass(frozen=True)
class LedgerServices:
    """Allocator, valuator and snapshot service sharing locks and configuration."""

    db: DatabaseManager
    config: LedgerConfig
    locks: LockRegistry
    allocator: PoolAllocator
    valuator: PortfolioValuator
    snapshots: SnapshotService


def build_services(
    db: DatabaseManager,
    config: LedgerConfig | None = None,
    *,
    price_source: PriceSource | None = None,
    clock: Clock = utc_now,
) -> LedgerServices:
    """Build the service graph. Quotes default to the `price_marks` table."""
    config = config or LedgerConfig()
    locks = LockRegistry(config.lock_timeout_seconds)
    source = price_source or DatabasePriceSource(db.session_factory)
    allocator = PoolAllocator(db, locks, config=config, price_source=source, clock=clock)
    valuator = PortfolioValuator(db, source, locks, config=config, clock=clock)
    snapshots = SnapshotService(db, valuator, locks, config=config, clock=clock)
    return LedgerServices(
        db=db,
        config=config,
        locks=locks,
        allocator=allocator,
        valuator=valuator,
        snapshots=snapshots,
    )
