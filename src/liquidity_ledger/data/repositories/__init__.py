"""Repository classes for data access."""

from liquidity_ledger.data.repositories.pools import PoolRepository
from liquidity_ledger.data.repositories.prices import PriceMarkRepository
from liquidity_ledger.data.repositories.snapshots import SnapshotRepository

__all__ = [
    "PoolRepository",
    "PriceMarkRepository",
    "SnapshotRepository",
]
