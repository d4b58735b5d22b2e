"""
Shared test fixtures.

PHILOSOPHY: Use REAL objects wherever possible. Only stub at system boundaries.
- Real SQLite databases (tmp_path files, so concurrent sessions behave like production)
- Real services wired by `build_services`
- Stub price sources at the Price Source boundary
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from liquidity_ledger.config import LedgerConfig
from liquidity_ledger.data.database import DatabaseManager
from liquidity_ledger.portfolio.services import build_services
from liquidity_ledger.prices.sources import StaticPriceSource

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from liquidity_ledger.portfolio.services import LedgerServices


# ============================================================================
# Time Injection (for testability without mocking)
# ============================================================================
class FixedClock:
    """A clock that always returns a fixed time."""

    def __init__(self, fixed_time: datetime) -> None:
        self.time = fixed_time

    def __call__(self) -> datetime:
        return self.time


# 12:00 in Montevideo (UTC-3), so the business date is 2026-03-10.
NOW = datetime(2026, 3, 10, 15, 0, 0, tzinfo=UTC)


@pytest.fixture
def fixed_clock() -> FixedClock:
    """Returns a clock function that always returns the same time."""
    return FixedClock(NOW)


# ============================================================================
# Database and service fixtures
# ============================================================================
@pytest.fixture
def config(tmp_path: Path) -> LedgerConfig:
    return LedgerConfig(
        db_path=tmp_path / "ledger.db",
        price_timeout_seconds=0.2,
        lock_timeout_seconds=2.0,
    )


@pytest.fixture
async def db(config: LedgerConfig) -> AsyncGenerator[DatabaseManager, None]:
    """Real SQLite database file with all tables created."""
    async with DatabaseManager(config.db_path) as manager:
        await manager.create_tables()
        yield manager


@pytest.fixture
def prices() -> StaticPriceSource:
    return StaticPriceSource()


@pytest.fixture
def services(
    db: DatabaseManager,
    config: LedgerConfig,
    prices: StaticPriceSource,
    fixed_clock: FixedClock,
) -> LedgerServices:
    return build_services(db, config, price_source=prices, clock=fixed_clock)
