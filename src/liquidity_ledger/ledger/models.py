"""Domain value objects derived from the ledger (pure Python, no persistence)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from liquidity_ledger.exceptions import ValidationError
from liquidity_ledger.types import FillState, PoolName, PositionStatus, Side

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True)
class FixedPrice:
    """Entry at a single known price."""

    price: float

    def __post_init__(self) -> None:
        if not self.price > 0:
            raise ValidationError(f"Entry price must be positive (got {self.price})")


@dataclass(frozen=True)
class PriceRange:
    """Entry (or sale) anywhere between two prices."""

    low: float
    high: float

    def __post_init__(self) -> None:
        if not self.low > 0 or not self.high > 0:
            raise ValidationError(f"Price range bounds must be positive (got {self})")
        if self.low >= self.high:
            raise ValidationError(
                f"Price range low must be below high (got {self.low} >= {self.high})"
            )

    @property
    def midpoint(self) -> float:
        return (self.low + self.high) / 2.0

    def contains(self, price: float) -> bool:
        return self.low <= price <= self.high

    def resolve(self, quote: float | None) -> float:
        """Collapse the range to one effective price.

        A live quote inside the range wins; otherwise (out of range or no quote) the
        midpoint is used.
        """
        if quote is not None and self.contains(quote):
            return quote
        return self.midpoint


EntryPricing = FixedPrice | PriceRange


@dataclass(frozen=True)
class Fill:
    """One partial or full sale of a position, as of the latest fold."""

    fill_id: str
    position_id: str
    effective_at: datetime
    percentage_sold: float
    shares_sold: float
    state: FillState
    price_at_fill: float | None = None
    price_range: PriceRange | None = None
    realized_pnl_delta: float = 0.0
    discard_reason: str | None = None

    @property
    def is_executed(self) -> bool:
        return self.state is FillState.EXECUTED

    @property
    def is_pending(self) -> bool:
        return self.state is FillState.PENDING


@dataclass(frozen=True)
class PositionState:
    """Current state of one position, produced by folding its ledger events."""

    position_id: str
    pool: PoolName
    symbol: str
    side: Side
    entry_price: float
    original_allocated_amount: float
    original_shares: float
    original_participation_pct: float
    remaining_shares: float
    remaining_participation_pct: float
    realized_pnl: float
    status: PositionStatus
    opened_at: datetime
    fills: tuple[Fill, ...] = ()
    entry_range: PriceRange | None = None
    closed_at: datetime | None = None
    discard_reason: str | None = None
    event_count: int = 0

    @property
    def allocated_amount(self) -> float:
        """Capital still tied up in the position at cost."""
        return self.remaining_shares * self.entry_price

    @property
    def is_active(self) -> bool:
        return self.status is PositionStatus.ACTIVE

    @property
    def executed_pct(self) -> float:
        return sum(f.percentage_sold for f in self.fills if f.is_executed)

    @property
    def pending_pct(self) -> float:
        return sum(f.percentage_sold for f in self.fills if f.is_pending)

    @property
    def sellable_pct(self) -> float:
        """Participation not yet sold or reserved by a pending sale."""
        return max(0.0, self.original_participation_pct - self.executed_pct - self.pending_pct)

    def fill(self, fill_id: str) -> Fill | None:
        """Find a fill by id."""
        for candidate in self.fills:
            if candidate.fill_id == fill_id:
                return candidate
        return None

    def unrealized_pnl(self, current_price: float) -> float:
        """Mark-to-market P&L of the remaining shares."""
        return self.remaining_shares * (current_price - self.entry_price) * self.side.sign
