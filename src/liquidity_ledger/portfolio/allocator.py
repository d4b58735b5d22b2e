"""Pool allocator: every mutation of positions and pools goes through here.

Each mutation runs the same sequence:

1. take the position lock, then the pool write lock;
2. open one database transaction;
3. fold the current events of the position (never trusting cached rows) and validate;
4. append the new ledger event;
5. re-fold every position of the pool and overwrite the pool projection row.

Either all of it commits or none of it does.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from liquidity_ledger.clock import Clock, as_utc, utc_now
from liquidity_ledger.config import LedgerConfig
from liquidity_ledger.data.models import LedgerEvent, Pool
from liquidity_ledger.data.repositories.pools import PoolRepository
from liquidity_ledger.exceptions import (
    InsufficientLiquidityError,
    InvalidStateError,
    OverAllocationError,
    PriceUnavailableError,
    ValidationError,
)
from liquidity_ledger.ledger.aggregator import fold_position
from liquidity_ledger.ledger.models import FixedPrice, PriceRange
from liquidity_ledger.ledger.store import LedgerStore
from liquidity_ledger.locks import LockRegistry
from liquidity_ledger.prices.base import fetch_price
from liquidity_ledger.types import (
    EPSILON,
    FULL_PARTICIPATION_PCT,
    EventType,
    FillState,
    PoolName,
    PositionStatus,
    Side,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from liquidity_ledger.data.database import DatabaseManager
    from liquidity_ledger.ledger.models import EntryPricing, PositionState
    from liquidity_ledger.prices.base import PriceSource

logger = structlog.get_logger()


@dataclass(frozen=True)
class PoolState:
    """Pool totals derived from a full fold of the pool's positions."""

    pool: PoolName
    initial_liquidity: float
    cumulative_realized_pnl: float
    distributed_liquidity: float
    positions_active: int
    positions_closed: int
    positions_discarded: int = 0

    @property
    def total_liquidity(self) -> float:
        return self.initial_liquidity + self.cumulative_realized_pnl

    @property
    def available_liquidity(self) -> float:
        return self.total_liquidity - self.distributed_liquidity


def compute_pool_state(
    pool: PoolName, initial_liquidity: float, positions: Iterable[PositionState]
) -> PoolState:
    """Sum position states into pool totals (full recomputation, no deltas)."""
    realized = 0.0
    distributed = 0.0
    active = closed = discarded = 0
    for position in positions:
        if position.status is PositionStatus.DISCARDED:
            discarded += 1
            continue
        realized += position.realized_pnl
        if position.status is PositionStatus.ACTIVE:
            active += 1
            distributed += position.allocated_amount
        else:
            closed += 1
    return PoolState(
        pool=pool,
        initial_liquidity=initial_liquidity,
        cumulative_realized_pnl=realized,
        distributed_liquidity=distributed,
        positions_active=active,
        positions_closed=closed,
        positions_discarded=discarded,
    )


def fold_pool(events_by_position: dict[str, list[LedgerEvent]]) -> list[PositionState]:
    """Fold every position of a pool, in open order."""
    return [fold_position(events) for events in events_by_position.values()]


@dataclass(frozen=True)
class PoolAudit:
    """Persisted pool projection compared against a fresh recomputation."""

    pool: PoolName
    recomputed: PoolState
    persisted: dict[str, float]
    drift: dict[str, float] = field(default_factory=dict)

    @property
    def is_consistent(self) -> bool:
        return not self.drift


@dataclass
class _Txn:
    session: AsyncSession
    store: LedgerStore
    pools: PoolRepository
    pool: PoolName


def _apply_projection(row: Pool, state: PoolState) -> None:
    row.cumulative_realized_pnl = state.cumulative_realized_pnl
    row.total_liquidity = state.total_liquidity
    row.distributed_liquidity = state.distributed_liquidity
    row.available_liquidity = state.available_liquidity
    row.positions_active = state.positions_active
    row.positions_closed = state.positions_closed


def _projection_of(row: Pool) -> dict[str, float]:
    return {
        "cumulative_realized_pnl": row.cumulative_realized_pnl,
        "total_liquidity": row.total_liquidity,
        "distributed_liquidity": row.distributed_liquidity,
        "available_liquidity": row.available_liquidity,
        "positions_active": float(row.positions_active),
        "positions_closed": float(row.positions_closed),
    }


def _validate_percentage(percentage: float) -> None:
    if not 0 < percentage <= FULL_PARTICIPATION_PCT:
        raise ValidationError(f"Percentage sold must be in (0, 100] (got {percentage})")


def _require_active(state: PositionState, action: str) -> None:
    if state.status is not PositionStatus.ACTIVE:
        raise InvalidStateError(
            f"Cannot {action} position {state.position_id}: status is {state.status.value}"
        )


class PoolAllocator:
    """Opens positions, records fills and corrections, and keeps pool totals consistent."""

    def __init__(
        self,
        db: DatabaseManager,
        locks: LockRegistry | None = None,
        *,
        config: LedgerConfig | None = None,
        price_source: PriceSource | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._db = db
        self._config = config or LedgerConfig()
        self._locks = locks or LockRegistry(self._config.lock_timeout_seconds)
        self._price_source = price_source
        self._clock = clock

    @property
    def locks(self) -> LockRegistry:
        return self._locks

    # ------------------------------------------------------------------
    # Transaction helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _pool_txn(self, pool: PoolName) -> AsyncIterator[_Txn]:
        async with self._locks.pool_write(pool.value):
            async with self._db.session_factory() as session, session.begin():
                yield _Txn(session, LedgerStore(session), PoolRepository(session), pool)

    @asynccontextmanager
    async def _position_txn(self, position_id: str) -> AsyncIterator[_Txn]:
        pool = await self._pool_of(position_id)
        async with self._locks.position(position_id), self._pool_txn(pool) as txn:
            yield txn

    async def _pool_of(self, position_id: str) -> PoolName:
        async with self._db.session_factory() as session:
            events = await LedgerStore(session).require_events(position_id)
        return PoolName(events[0].pool)

    async def _recompute(self, txn: _Txn) -> PoolState:
        row = await txn.pools.require(txn.pool.value)
        positions = fold_pool(await txn.store.events_by_position(txn.pool.value))
        state = compute_pool_state(txn.pool, row.initial_liquidity, positions)
        _apply_projection(row, state)
        await txn.session.flush()
        logger.debug(
            "Pool recomputed",
            pool=txn.pool.value,
            total_liquidity=state.total_liquidity,
            distributed=state.distributed_liquidity,
            available=state.available_liquidity,
        )
        return state

    async def _current_pool_state(self, txn: _Txn) -> PoolState:
        row = await txn.pools.require(txn.pool.value)
        positions = fold_pool(await txn.store.events_by_position(txn.pool.value))
        return compute_pool_state(txn.pool, row.initial_liquidity, positions)

    async def _append_and_refold(self, txn: _Txn, event: LedgerEvent) -> PositionState:
        await txn.store.append(event)
        await self._recompute(txn)
        return fold_position(await txn.store.events_for(event.position_id))

    def _effective(self, moment: datetime | None) -> datetime:
        return as_utc(moment) if moment is not None else self._clock()

    # ------------------------------------------------------------------
    # Pools
    # ------------------------------------------------------------------

    async def create_pool(self, pool: PoolName, initial_liquidity: float) -> PoolState:
        """Create a pool with its starting capital."""
        if not initial_liquidity > 0:
            raise ValidationError(
                f"Initial liquidity must be positive (got {initial_liquidity})"
            )
        async with self._locks.pool_write(pool.value):
            async with self._db.session_factory() as session, session.begin():
                repo = PoolRepository(session)
                if await repo.get(pool.value) is not None:
                    raise ValidationError(f"Pool {pool.value} already exists")
                now = self._clock()
                await repo.add(
                    Pool(
                        name=pool.value,
                        initial_liquidity=initial_liquidity,
                        total_liquidity=initial_liquidity,
                        available_liquidity=initial_liquidity,
                        created_at=now,
                        updated_at=now,
                    )
                )
        logger.info("Pool created", pool=pool.value, initial_liquidity=initial_liquidity)
        return compute_pool_state(pool, initial_liquidity, [])

    async def amend_initial_liquidity(
        self, pool: PoolName, initial_liquidity: float, reason: str
    ) -> PoolState:
        """Admin correction of a pool's starting capital.

        Raises:
            InsufficientLiquidityError: If the new capital no longer covers what is
                currently distributed.
        """
        if not initial_liquidity > 0:
            raise ValidationError(
                f"Initial liquidity must be positive (got {initial_liquidity})"
            )
        if not reason.strip():
            raise ValidationError("A reason is required to amend initial liquidity")
        async with self._pool_txn(pool) as txn:
            row = await txn.pools.require(pool.value)
            current = await self._current_pool_state(txn)
            amended = compute_pool_state(
                pool,
                initial_liquidity,
                fold_pool(await txn.store.events_by_position(pool.value)),
            )
            if amended.available_liquidity < -EPSILON:
                raise InsufficientLiquidityError(
                    pool.value,
                    requested=amended.distributed_liquidity,
                    available=amended.total_liquidity,
                )
            previous = row.initial_liquidity
            row.initial_liquidity = initial_liquidity
            state = await self._recompute(txn)
        logger.info(
            "Initial liquidity amended",
            pool=pool.value,
            previous=previous,
            amended=initial_liquidity,
            available_before=current.available_liquidity,
            reason=reason,
        )
        return state

    async def pool_state(self, pool: PoolName) -> PoolState:
        """Fresh pool totals (recomputed, not read from the projection row)."""
        async with self._locks.pool_read(pool.value):
            async with self._db.session_factory() as session:
                row = await PoolRepository(session).require(pool.value)
                events = await LedgerStore(session).events_by_position(pool.value)
        return compute_pool_state(pool, row.initial_liquidity, fold_pool(events))

    async def verify_pool(self, pool: PoolName) -> PoolAudit:
        """Compare the persisted pool row against a full recomputation."""
        async with self._locks.pool_read(pool.value):
            async with self._db.session_factory() as session:
                row = await PoolRepository(session).require(pool.value)
                events = await LedgerStore(session).events_by_position(pool.value)
                persisted = _projection_of(row)
                initial = row.initial_liquidity
        recomputed = compute_pool_state(pool, initial, fold_pool(events))
        expected = {
            "cumulative_realized_pnl": recomputed.cumulative_realized_pnl,
            "total_liquidity": recomputed.total_liquidity,
            "distributed_liquidity": recomputed.distributed_liquidity,
            "available_liquidity": recomputed.available_liquidity,
            "positions_active": float(recomputed.positions_active),
            "positions_closed": float(recomputed.positions_closed),
        }
        drift = {
            key: persisted[key] - value
            for key, value in expected.items()
            if abs(persisted[key] - value) > EPSILON
        }
        if drift:
            logger.warning("Pool projection drift detected", pool=pool.value, drift=drift)
        return PoolAudit(pool=pool, recomputed=recomputed, persisted=persisted, drift=drift)

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    async def _resolve_entry(self, symbol: str, pricing: EntryPricing) -> float:
        if isinstance(pricing, FixedPrice):
            return pricing.price
        quote: float | None = None
        if self._price_source is not None:
            try:
                quote = await fetch_price(
                    self._price_source, symbol, self._config.price_timeout_seconds
                )
            except PriceUnavailableError as e:
                logger.warning(
                    "No quote to resolve entry range; using midpoint",
                    symbol=symbol,
                    reason=e.reason,
                )
        return pricing.resolve(quote)

    async def open_position(
        self,
        pool: PoolName,
        symbol: str,
        side: Side,
        entry_pricing: EntryPricing,
        amount: float,
        *,
        opened_at: datetime | None = None,
    ) -> PositionState:
        """Allocate `amount` of the pool's available liquidity to a new position.

        A price range collapses to one entry price here and never changes afterwards.
        `opened_at` may be in the past (historical positions).

        Raises:
            InsufficientLiquidityError: If `amount` exceeds available liquidity.
        """
        symbol = symbol.strip().upper()
        if not symbol:
            raise ValidationError("Symbol is required")
        if not amount > 0:
            raise ValidationError(f"Allocation amount must be positive (got {amount})")

        entry_price = await self._resolve_entry(symbol, entry_pricing)
        shares = amount / entry_price
        position_id = str(uuid.uuid4())
        entry_range = entry_pricing if isinstance(entry_pricing, PriceRange) else None

        async with self._locks.position(position_id), self._pool_txn(pool) as txn:
            current = await self._current_pool_state(txn)
            if amount > current.available_liquidity + EPSILON:
                raise InsufficientLiquidityError(
                    pool.value, requested=amount, available=current.available_liquidity
                )
            state = await self._append_and_refold(
                txn,
                LedgerEvent(
                    event_type=EventType.OPEN.value,
                    pool=pool.value,
                    position_id=position_id,
                    symbol=symbol,
                    side=side.value,
                    entry_price=entry_price,
                    entry_range_min=entry_range.low if entry_range else None,
                    entry_range_max=entry_range.high if entry_range else None,
                    shares=shares,
                    amount=amount,
                    effective_at=self._effective(opened_at),
                    recorded_at=self._clock(),
                ),
            )

        logger.info(
            "Position opened",
            pool=pool.value,
            position_id=position_id,
            symbol=symbol,
            side=side.value,
            entry_price=entry_price,
            amount=amount,
        )
        return state

    async def _append_fill(
        self,
        position_id: str,
        percentage: float,
        *,
        price: float | None,
        price_range: PriceRange | None,
        effective_at: datetime | None,
    ) -> tuple[str, PositionState]:
        _validate_percentage(percentage)
        if price is not None and not price > 0:
            raise ValidationError(f"Fill price must be positive (got {price})")
        fill_id = str(uuid.uuid4())
        moment = self._effective(effective_at)

        async with self._position_txn(position_id) as txn:
            state = fold_position(await txn.store.require_events(position_id))
            _require_active(state, "sell")
            if moment < state.opened_at:
                raise ValidationError(
                    f"Fill date {moment.isoformat()} precedes position open "
                    f"{state.opened_at.isoformat()}"
                )
            if percentage > state.sellable_pct + EPSILON:
                raise OverAllocationError(position_id, percentage, state.sellable_pct)
            new_state = await self._append_and_refold(
                txn,
                LedgerEvent(
                    event_type=EventType.FILL.value,
                    pool=txn.pool.value,
                    position_id=position_id,
                    fill_id=fill_id,
                    percentage=percentage,
                    price=price,
                    price_range_min=price_range.low if price_range else None,
                    price_range_max=price_range.high if price_range else None,
                    effective_at=moment,
                    recorded_at=self._clock(),
                ),
            )
        return fill_id, new_state

    async def record_fill(
        self,
        position_id: str,
        percentage_sold: float,
        price: float,
        effective_date: datetime | None = None,
    ) -> PositionState:
        """Sell `percentage_sold` percent of the original participation at `price`.

        Raises:
            OverAllocationError: If the sale exceeds the unsold, unreserved participation.
            InvalidStateError: If the position is not ACTIVE.
        """
        fill_id, state = await self._append_fill(
            position_id,
            percentage_sold,
            price=price,
            price_range=None,
            effective_at=effective_date,
        )
        logger.info(
            "Fill recorded",
            position_id=position_id,
            fill_id=fill_id,
            percentage=percentage_sold,
            price=price,
            remaining_pct=state.remaining_participation_pct,
        )
        return state

    async def schedule_fill(
        self,
        position_id: str,
        percentage_sold: float,
        price_range: PriceRange,
        effective_date: datetime | None = None,
    ) -> PositionState:
        """Record a PENDING sale against a price range; it reserves its percentage."""
        fill_id, state = await self._append_fill(
            position_id,
            percentage_sold,
            price=None,
            price_range=price_range,
            effective_at=effective_date,
        )
        logger.info(
            "Fill scheduled",
            position_id=position_id,
            fill_id=fill_id,
            percentage=percentage_sold,
            low=price_range.low,
            high=price_range.high,
        )
        return state

    async def confirm_fill(
        self,
        fill_id: str,
        price: float | None = None,
        effective_date: datetime | None = None,
    ) -> PositionState:
        """Execute a PENDING fill at `price` (or at the current quote when omitted).

        Raises:
            PriceUnavailableError: If no price was given and no quote is available.
            InvalidStateError: If the fill is not pending or the position is not ACTIVE.
        """
        async with self._db.session_factory() as session:
            store = LedgerStore(session)
            position_id = await store.position_for_fill(fill_id)
            symbol = fold_position(await store.events_for(position_id)).symbol

        if price is None:
            if self._price_source is None:
                raise PriceUnavailableError(symbol, "no price given and no price source")
            price = await fetch_price(
                self._price_source, symbol, self._config.price_timeout_seconds
            )
        if not price > 0:
            raise ValidationError(f"Confirmation price must be positive (got {price})")

        async with self._position_txn(position_id) as txn:
            state = fold_position(await txn.store.require_events(position_id))
            fill = state.fill(fill_id)
            if fill is None or fill.state is not FillState.PENDING:
                current = fill.state.value if fill is not None else "unknown"
                raise InvalidStateError(f"Fill {fill_id} is not pending (state: {current})")
            _require_active(state, "confirm a fill on")
            new_state = await self._append_and_refold(
                txn,
                LedgerEvent(
                    event_type=EventType.FILL_CONFIRMED.value,
                    pool=txn.pool.value,
                    position_id=position_id,
                    fill_id=fill_id,
                    price=price,
                    effective_at=self._effective(effective_date),
                    recorded_at=self._clock(),
                ),
            )
        logger.info("Fill confirmed", position_id=position_id, fill_id=fill_id, price=price)
        return new_state

    async def confirm_pending_fills(self, pool: PoolName) -> list[PositionState]:
        """Confirm every pending fill of a pool at its symbol's current quote.

        Fills whose symbol has no quote stay pending.
        """
        if self._price_source is None:
            raise PriceUnavailableError(pool.value, "no price source configured")
        async with self._db.session_factory() as session:
            grouped = await LedgerStore(session).events_by_position(pool.value)
        pending = [
            (state.symbol, fill.fill_id)
            for state in fold_pool(grouped)
            if state.is_active
            for fill in state.fills
            if fill.is_pending
        ]

        confirmed: list[PositionState] = []
        for symbol, fill_id in pending:
            try:
                price = await fetch_price(
                    self._price_source, symbol, self._config.price_timeout_seconds
                )
            except PriceUnavailableError as e:
                logger.warning(
                    "Pending fill left pending", fill_id=fill_id, symbol=symbol, reason=e.reason
                )
                continue
            confirmed.append(await self.confirm_fill(fill_id, price))
        return confirmed

    async def discard_fill(self, fill_id: str, reason: str) -> PositionState:
        """Void a fill; the position returns to the state it had without it. Idempotent."""
        async with self._db.session_factory() as session:
            position_id = await LedgerStore(session).position_for_fill(fill_id)

        async with self._position_txn(position_id) as txn:
            state = fold_position(await txn.store.require_events(position_id))
            fill = state.fill(fill_id)
            if fill is not None and fill.state is FillState.DISCARDED:
                logger.debug("Fill already discarded", fill_id=fill_id)
                return state
            new_state = await self._append_and_refold(
                txn,
                LedgerEvent(
                    event_type=EventType.FILL_DISCARDED.value,
                    pool=txn.pool.value,
                    position_id=position_id,
                    fill_id=fill_id,
                    reason=reason,
                    effective_at=self._clock(),
                    recorded_at=self._clock(),
                ),
            )
        logger.info(
            "Fill discarded",
            position_id=position_id,
            fill_id=fill_id,
            reason=reason,
            status=new_state.status.value,
        )
        return new_state

    async def close_position(
        self,
        position_id: str,
        price: float | None = None,
        effective_date: datetime | None = None,
    ) -> PositionState:
        """Close a position.

        With a price, the whole unsold participation is sold as a final fill. Without one,
        the remaining allocation is released at cost.
        """
        state = await self.get_position(position_id)
        _require_active(state, "close")
        if state.pending_pct > EPSILON:
            raise InvalidStateError(
                f"Position {position_id} has pending fills; confirm or discard them first"
            )
        if price is not None:
            return await self.record_fill(
                position_id, state.sellable_pct, price, effective_date=effective_date
            )

        async with self._position_txn(position_id) as txn:
            state = fold_position(await txn.store.require_events(position_id))
            _require_active(state, "close")
            new_state = await self._append_and_refold(
                txn,
                LedgerEvent(
                    event_type=EventType.CLOSE.value,
                    pool=txn.pool.value,
                    position_id=position_id,
                    effective_at=self._effective(effective_date),
                    recorded_at=self._clock(),
                ),
            )
        logger.info("Position closed at cost", position_id=position_id)
        return new_state

    async def discard_position(self, position_id: str, reason: str) -> PositionState:
        """Void a position that never sold anything. Idempotent."""
        async with self._position_txn(position_id) as txn:
            state = fold_position(await txn.store.require_events(position_id))
            if state.status is PositionStatus.DISCARDED:
                return state
            _require_active(state, "discard")
            if state.executed_pct > EPSILON:
                raise InvalidStateError(
                    f"Position {position_id} has executed fills; discard those fills first"
                )
            new_state = await self._append_and_refold(
                txn,
                LedgerEvent(
                    event_type=EventType.DISCARD.value,
                    pool=txn.pool.value,
                    position_id=position_id,
                    reason=reason,
                    effective_at=self._clock(),
                    recorded_at=self._clock(),
                ),
            )
        logger.info("Position discarded", position_id=position_id, reason=reason)
        return new_state

    async def discard_broken_ranges(self, pool: PoolName) -> list[PositionState]:
        """Discard range-entry positions whose current quote left the entry range.

        Only ACTIVE positions opened from a range and with no executed sale are checked.
        Positions without a quote are left alone.
        """
        if self._price_source is None:
            raise PriceUnavailableError(pool.value, "no price source configured")
        async with self._db.session_factory() as session:
            grouped = await LedgerStore(session).events_by_position(pool.value)
        candidates = [
            (state, state.entry_range)
            for state in fold_pool(grouped)
            if state.is_active
            and state.entry_range is not None
            and state.executed_pct <= EPSILON
        ]

        discarded: list[PositionState] = []
        for state, entry_range in candidates:
            try:
                price = await fetch_price(
                    self._price_source, state.symbol, self._config.price_timeout_seconds
                )
            except PriceUnavailableError as e:
                logger.warning(
                    "Range not checked",
                    position_id=state.position_id,
                    symbol=state.symbol,
                    reason=e.reason,
                )
                continue
            if entry_range.contains(price):
                continue
            if price < entry_range.low:
                detail = f"price {price:g} below range minimum {entry_range.low:g}"
            else:
                detail = f"price {price:g} above range maximum {entry_range.high:g}"
            try:
                discarded.append(
                    await self.discard_position(state.position_id, f"RANGE_BREAK: {detail}")
                )
            except InvalidStateError as e:
                # Sold or closed since the sweep started.
                logger.warning(
                    "Range break not applied", position_id=state.position_id, error=str(e)
                )
        logger.info(
            "Range sweep finished",
            pool=pool.value,
            checked=len(candidates),
            discarded=len(discarded),
        )
        return discarded

    async def correct_position(
        self,
        position_id: str,
        *,
        reason: str,
        entry_price: float | None = None,
        shares: float | None = None,
        opened_at: datetime | None = None,
    ) -> PositionState:
        """Admin correction of the OPEN data, followed by a full re-fold.

        Raises:
            InsufficientLiquidityError: If the corrected allocation no longer fits the pool.
        """
        if entry_price is None and shares is None and opened_at is None:
            raise ValidationError("Nothing to correct")
        if not reason.strip():
            raise ValidationError("A reason is required for a correction")

        async with self._position_txn(position_id) as txn:
            events = await txn.store.require_events(position_id)
            state = fold_position(events)
            if state.status is PositionStatus.DISCARDED:
                raise InvalidStateError(f"Position {position_id} is discarded")

            new_entry = entry_price if entry_price is not None else state.entry_price
            new_shares = shares if shares is not None else state.original_shares
            corrected_at = as_utc(opened_at) if opened_at is not None else state.opened_at
            superseded = [e for e in events if e.event_type in (EventType.OPEN, EventType.AMEND)]
            amend = LedgerEvent(
                event_type=EventType.AMEND.value,
                pool=txn.pool.value,
                position_id=position_id,
                entry_price=entry_price,
                shares=shares,
                amount=new_entry * new_shares,
                supersedes_event_id=superseded[-1].id,
                reason=reason,
                effective_at=corrected_at,
                recorded_at=self._clock(),
            )

            # A new entry price also moves the realized P&L of executed fills.
            row = await txn.pools.require(txn.pool.value)
            grouped = await txn.store.events_by_position(txn.pool.value)
            grouped[position_id] = [*events, amend]
            corrected = compute_pool_state(txn.pool, row.initial_liquidity, fold_pool(grouped))
            if corrected.available_liquidity < -EPSILON:
                raise InsufficientLiquidityError(
                    txn.pool.value,
                    requested=corrected.distributed_liquidity,
                    available=corrected.total_liquidity,
                )
            new_state = await self._append_and_refold(txn, amend)
        logger.info(
            "Position corrected",
            position_id=position_id,
            entry_price=new_entry,
            shares=new_shares,
            reason=reason,
        )
        return new_state

    async def refold(self, position_id: str) -> PositionState:
        """Re-derive one position and rewrite its pool's projection."""
        async with self._position_txn(position_id) as txn:
            await self._recompute(txn)
            return fold_position(await txn.store.require_events(position_id))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_position(self, position_id: str) -> PositionState:
        """Current state of one position."""
        async with self._db.session_factory() as session:
            events = await LedgerStore(session).require_events(position_id)
        return fold_position(events)

    async def position_events(self, position_id: str) -> Sequence[LedgerEvent]:
        """Raw ledger events of one position, in append order."""
        async with self._db.session_factory() as session:
            return await LedgerStore(session).require_events(position_id)

    async def list_positions(
        self, pool: PoolName, status: PositionStatus | None = None
    ) -> list[PositionState]:
        """All positions of a pool, optionally filtered by status."""
        async with self._locks.pool_read(pool.value):
            async with self._db.session_factory() as session:
                await PoolRepository(session).require(pool.value)
                grouped = await LedgerStore(session).events_by_position(pool.value)
        positions = fold_pool(grouped)
        if status is not None:
            positions = [p for p in positions if p.status is status]
        return positions
