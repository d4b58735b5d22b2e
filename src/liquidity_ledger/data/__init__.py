"""Data layer for persistent storage of ledger events, pools and snapshots."""

from liquidity_ledger.data.database import DatabaseManager
from liquidity_ledger.data.models import (
    Base,
    LedgerEvent,
    Pool,
    PoolSnapshot,
    PriceMark,
)
from liquidity_ledger.data.repositories import (
    PoolRepository,
    PriceMarkRepository,
    SnapshotRepository,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "LedgerEvent",
    "Pool",
    "PoolRepository",
    "PoolSnapshot",
    "PriceMark",
    "PriceMarkRepository",
    "SnapshotRepository",
]
