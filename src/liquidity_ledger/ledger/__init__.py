"""Append-only ledger and the pure fold that derives position state from it."""

from liquidity_ledger.ledger.aggregator import fold_position, fold_position_as_of
from liquidity_ledger.ledger.models import (
    EntryPricing,
    Fill,
    FixedPrice,
    PositionState,
    PriceRange,
)
from liquidity_ledger.ledger.store import LedgerStore

__all__ = [
    "EntryPricing",
    "Fill",
    "FixedPrice",
    "LedgerStore",
    "PositionState",
    "PriceRange",
    "fold_position",
    "fold_position_as_of",
]
