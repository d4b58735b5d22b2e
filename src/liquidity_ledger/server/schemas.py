"""Pydantic request and response models for the reporting API."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, model_validator

from liquidity_ledger.exceptions import ValidationError
from liquidity_ledger.ledger.models import FixedPrice, PriceRange
from liquidity_ledger.types import FillState, PoolName, PositionStatus, Side

if TYPE_CHECKING:
    from liquidity_ledger.ledger.models import EntryPricing, Fill, PositionState
    from liquidity_ledger.portfolio.allocator import PoolState
    from liquidity_ledger.portfolio.snapshots import EvolutionPoint
    from liquidity_ledger.portfolio.valuator import (
        PeriodReturn,
        PortfolioValuation,
        PositionValuation,
    )


class PositionCreate(BaseModel):
    """Open a position with a fixed entry price or an entry range."""

    model_config = ConfigDict(frozen=True)

    pool: PoolName
    symbol: str = Field(min_length=1, max_length=20)
    side: Side = Side.BUY
    amount: float = Field(gt=0)
    entry_price: float | None = Field(default=None, gt=0)
    entry_range_min: float | None = Field(default=None, gt=0)
    entry_range_max: float | None = Field(default=None, gt=0)
    opened_at: datetime | None = None

    @model_validator(mode="after")
    def _one_pricing(self) -> PositionCreate:
        has_range = self.entry_range_min is not None or self.entry_range_max is not None
        if (self.entry_price is None) == (not has_range):
            raise ValueError("Provide either entry_price or entry_range_min/entry_range_max")
        if has_range and (self.entry_range_min is None or self.entry_range_max is None):
            raise ValueError("entry_range_min and entry_range_max must be given together")
        return self

    def pricing(self) -> EntryPricing:
        """Entry pricing in the form the allocator takes."""
        if self.entry_price is not None:
            return FixedPrice(self.entry_price)
        if self.entry_range_min is None or self.entry_range_max is None:
            raise ValidationError("An entry price or a complete entry range is required")
        return PriceRange(self.entry_range_min, self.entry_range_max)


class FillCreate(BaseModel):
    """Executed sale (with `price`) or pending sale (with a price range)."""

    model_config = ConfigDict(frozen=True)

    percentage_sold: float = Field(gt=0, le=100)
    price: float | None = Field(default=None, gt=0)
    price_range_min: float | None = Field(default=None, gt=0)
    price_range_max: float | None = Field(default=None, gt=0)
    effective_date: datetime | None = None

    @model_validator(mode="after")
    def _one_pricing(self) -> FillCreate:
        has_range = self.price_range_min is not None or self.price_range_max is not None
        if (self.price is None) == (not has_range):
            raise ValueError("Provide either price or price_range_min/price_range_max")
        if has_range and (self.price_range_min is None or self.price_range_max is None):
            raise ValueError("price_range_min and price_range_max must be given together")
        return self

    def sale_range(self) -> PriceRange:
        if self.price_range_min is None or self.price_range_max is None:
            raise ValidationError("A pending sale needs price_range_min and price_range_max")
        return PriceRange(self.price_range_min, self.price_range_max)


class FillConfirm(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: float | None = Field(default=None, gt=0)
    effective_date: datetime | None = None


class FillDiscard(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: str = Field(min_length=1)


class FillOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    fill_id: str
    effective_date: datetime
    percentage_sold: float
    shares_sold: float
    state: FillState
    price_at_fill: float | None
    price_range_min: float | None
    price_range_max: float | None
    realized_pnl_delta: float
    discard_reason: str | None

    @classmethod
    def from_fill(cls, fill: Fill) -> FillOut:
        return cls(
            fill_id=fill.fill_id,
            effective_date=fill.effective_at,
            percentage_sold=fill.percentage_sold,
            shares_sold=fill.shares_sold,
            state=fill.state,
            price_at_fill=fill.price_at_fill,
            price_range_min=fill.price_range.low if fill.price_range else None,
            price_range_max=fill.price_range.high if fill.price_range else None,
            realized_pnl_delta=fill.realized_pnl_delta,
            discard_reason=fill.discard_reason,
        )


class PositionOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    pool: PoolName
    symbol: str
    side: Side
    status: PositionStatus
    entry_price: float
    original_allocated_amount: float
    original_shares: float
    original_participation_pct: float
    remaining_shares: float
    remaining_participation_pct: float
    allocated_amount: float
    realized_pnl: float
    opened_at: datetime
    closed_at: datetime | None
    fills: list[FillOut]

    @classmethod
    def from_state(cls, state: PositionState) -> PositionOut:
        return cls(
            id=state.position_id,
            pool=state.pool,
            symbol=state.symbol,
            side=state.side,
            status=state.status,
            entry_price=state.entry_price,
            original_allocated_amount=state.original_allocated_amount,
            original_shares=state.original_shares,
            original_participation_pct=state.original_participation_pct,
            remaining_shares=state.remaining_shares,
            remaining_participation_pct=state.remaining_participation_pct,
            allocated_amount=state.allocated_amount,
            realized_pnl=state.realized_pnl,
            opened_at=state.opened_at,
            closed_at=state.closed_at,
            fills=[FillOut.from_fill(f) for f in state.fills],
        )


class PoolStateOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    pool: PoolName
    initial_liquidity: float
    cumulative_realized_pnl: float
    total_liquidity: float
    distributed_liquidity: float
    available_liquidity: float
    positions_active: int
    positions_closed: int

    @classmethod
    def from_state(cls, state: PoolState) -> PoolStateOut:
        return cls(
            pool=state.pool,
            initial_liquidity=state.initial_liquidity,
            cumulative_realized_pnl=state.cumulative_realized_pnl,
            total_liquidity=state.total_liquidity,
            distributed_liquidity=state.distributed_liquidity,
            available_liquidity=state.available_liquidity,
            positions_active=state.positions_active,
            positions_closed=state.positions_closed,
        )


class PositionValuationOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    symbol: str
    side: Side
    remaining_shares: float
    entry_price: float
    current_price: float
    price_is_fallback: bool
    allocated_amount: float
    unrealized_pnl: float
    unrealized_return: float

    @classmethod
    def from_valuation(cls, mark: PositionValuation) -> PositionValuationOut:
        return cls(
            id=mark.position.position_id,
            symbol=mark.position.symbol,
            side=mark.position.side,
            remaining_shares=mark.position.remaining_shares,
            entry_price=mark.position.entry_price,
            current_price=mark.current_price,
            price_is_fallback=mark.price_is_fallback,
            allocated_amount=mark.position.allocated_amount,
            unrealized_pnl=mark.unrealized_pnl,
            unrealized_return=mark.unrealized_return,
        )


class PortfolioValueOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    pool: PoolName
    as_of: datetime
    total_value: float
    unrealized_pnl: float
    weighted_return: float
    positions_active: int
    positions_closed: int
    totals: PoolStateOut
    positions: list[PositionValuationOut]

    @classmethod
    def from_valuation(cls, valuation: PortfolioValuation) -> PortfolioValueOut:
        return cls(
            pool=valuation.pool_state.pool,
            as_of=valuation.as_of,
            total_value=valuation.total_value,
            unrealized_pnl=valuation.unrealized_pnl,
            weighted_return=valuation.weighted_return,
            positions_active=valuation.positions_active,
            positions_closed=valuation.positions_closed,
            totals=PoolStateOut.from_state(valuation.pool_state),
            positions=[PositionValuationOut.from_valuation(m) for m in valuation.positions],
        )


class EvolutionPointOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: date
    total_value: float
    source: str

    @classmethod
    def from_point(cls, point: EvolutionPoint) -> EvolutionPointOut:
        return cls(day=point.day, total_value=point.total_value, source=point.source.value)


class PeriodReturnOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    period: str
    start: date
    end: date
    start_value: float
    end_value: float
    change: float
    return_fraction: float | None

    @classmethod
    def from_result(cls, result: PeriodReturn) -> PeriodReturnOut:
        return cls(
            period=result.label,
            start=result.start,
            end=result.end,
            start_value=result.start_value,
            end_value=result.end_value,
            change=result.change,
            return_fraction=result.return_fraction,
        )
