"""SQLAlchemy ORM models for ledger storage."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import (
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from liquidity_ledger.exceptions import ValidationError


def utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Pool(Base):
    """Canonical capital pool row (one per pool name).

    The liquidity columns are a projection recomputed from the ledger after every mutation;
    `initial_liquidity` is the only independently owned value.
    """

    __tablename__ = "pools"

    name: Mapped[str] = mapped_column(String(32), primary_key=True)
    initial_liquidity: Mapped[float] = mapped_column(Float, nullable=False)

    cumulative_realized_pnl: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_liquidity: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    distributed_liquidity: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    available_liquidity: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    positions_active: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    positions_closed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
    )


class LedgerEvent(Base):
    """Immutable allocation event. The autoincrement id is the append order."""

    __tablename__ = "ledger_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    pool: Mapped[str] = mapped_column(String(32), ForeignKey("pools.name"), nullable=False)
    position_id: Mapped[str] = mapped_column(String(36), nullable=False)

    # OPEN / AMEND
    symbol: Mapped[str | None] = mapped_column(String(20), nullable=True)
    side: Mapped[str | None] = mapped_column(String(4), nullable=True)
    entry_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    entry_range_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    entry_range_max: Mapped[float | None] = mapped_column(Float, nullable=True)
    shares: Mapped[float | None] = mapped_column(Float, nullable=True)
    amount: Mapped[float | None] = mapped_column(Float, nullable=True)

    # FILL / FILL_CONFIRMED / FILL_DISCARDED
    fill_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_range_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_range_max: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Business time of the fact (may be backdated); recorded_at is when it was appended.
    effective_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    supersedes_event_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("ledger_events.id"), nullable=True
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index("idx_ledger_events_position", "position_id", "id"),
        Index("idx_ledger_events_pool", "pool", "id"),
        Index("idx_ledger_events_fill", "fill_id"),
        Index("idx_ledger_events_recorded", "recorded_at"),
    )


class PoolSnapshot(Base):
    """Daily valuation of a pool (immutable once its business date has passed)."""

    __tablename__ = "pool_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pool: Mapped[str] = mapped_column(String(32), ForeignKey("pools.name"), nullable=False)
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)

    total_portfolio_value: Mapped[float] = mapped_column(Float, nullable=False)
    initial_liquidity: Mapped[float] = mapped_column(Float, nullable=False)
    cumulative_realized_pnl: Mapped[float] = mapped_column(Float, nullable=False)
    unrealized_pnl: Mapped[float] = mapped_column(Float, nullable=False)
    total_liquidity: Mapped[float] = mapped_column(Float, nullable=False)
    distributed_liquidity: Mapped[float] = mapped_column(Float, nullable=False)
    available_liquidity: Mapped[float] = mapped_column(Float, nullable=False)
    positions_active: Mapped[int] = mapped_column(Integer, nullable=False)
    positions_closed: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint("pool", "snapshot_date", name="uq_pool_snapshots_pool_date"),
        Index("idx_pool_snapshots_pool_date", "pool", "snapshot_date"),
    )


class PriceMark(Base):
    """Operator-recorded quote for a symbol."""

    __tablename__ = "price_marks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    source: Mapped[str] = mapped_column(String(50), default="manual", nullable=False)
    marked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (Index("idx_price_marks_symbol_time", "symbol", "marked_at"),)


def _reject_mutation(kind: str) -> Any:
    def _listener(_mapper: Any, _connection: Any, target: Any) -> None:
        raise ValidationError(
            f"{type(target).__name__} rows are append-only; {kind} is not allowed"
        )

    return _listener


for _model in (LedgerEvent, PoolSnapshot):
    event.listen(_model, "before_update", _reject_mutation("update"))
    event.listen(_model, "before_delete", _reject_mutation("delete"))
