"""Position aggregator: fold one position's ledger events into its current state.

Folding is always from scratch over the ordered event list. Nothing is patched in place, so a
correction (a discarded fill, an amended OPEN) is applied simply by re-folding, and replaying
the same events always yields the same `PositionState`.

Rules:
- The first event must be OPEN; it fixes symbol, side, pool, entry price and shares.
- AMEND events override the entry price, the original shares and/or the open time.
- FILL events with a price are executed immediately; FILL events with only a price range stay
  pending until a FILL_CONFIRMED event supplies the price.
- FILL_DISCARDED voids a fill. Discarded fills are skipped, never reversed.
- A position is CLOSED the first time its remaining participation reaches zero (within
  `EPSILON`) or when a CLOSE event exists; a DISCARD event makes it DISCARDED.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from liquidity_ledger.clock import as_utc
from liquidity_ledger.exceptions import ValidationError
from liquidity_ledger.ledger.models import Fill, PositionState, PriceRange
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
    from collections.abc import Sequence
    from datetime import datetime

    from liquidity_ledger.data.models import LedgerEvent


@dataclass
class _FillDraft:
    fill_id: str
    effective_at: datetime
    percentage: float
    price: float | None
    price_range: PriceRange | None
    state: FillState
    discard_reason: str | None = None


def _range_or_none(low: float | None, high: float | None) -> PriceRange | None:
    if low is None or high is None:
        return None
    return PriceRange(low=low, high=high)


def _require_fill(drafts: dict[str, _FillDraft], event: LedgerEvent) -> _FillDraft:
    if event.fill_id is None or event.fill_id not in drafts:
        raise ValidationError(
            f"{event.event_type} references unknown fill {event.fill_id!r} "
            f"on position {event.position_id}"
        )
    return drafts[event.fill_id]


def _apply_fill(drafts: dict[str, _FillDraft], event: LedgerEvent) -> None:
    if event.fill_id is None:
        raise ValidationError("FILL event requires a fill_id")
    if event.fill_id in drafts:
        raise ValidationError(f"Duplicate fill id {event.fill_id!r}")
    percentage = event.percentage
    if percentage is None or not 0 < percentage <= FULL_PARTICIPATION_PCT:
        raise ValidationError(f"Fill percentage must be in (0, 100] (got {percentage!r})")

    price_range = _range_or_none(event.price_range_min, event.price_range_max)
    if event.price is None and price_range is None:
        raise ValidationError("FILL event requires a price or a price range")
    if event.price is not None and not event.price > 0:
        raise ValidationError(f"Fill price must be positive (got {event.price})")

    drafts[event.fill_id] = _FillDraft(
        fill_id=event.fill_id,
        effective_at=as_utc(event.effective_at),
        percentage=percentage,
        price=event.price,
        price_range=price_range,
        state=FillState.EXECUTED if event.price is not None else FillState.PENDING,
    )


def _apply_confirmation(drafts: dict[str, _FillDraft], event: LedgerEvent) -> None:
    draft = _require_fill(drafts, event)
    if draft.state is FillState.DISCARDED:
        return
    if draft.state is FillState.EXECUTED:
        raise ValidationError(f"Fill {draft.fill_id} is already executed")
    if event.price is None or not event.price > 0:
        raise ValidationError(f"Confirmation price must be positive (got {event.price!r})")
    draft.price = event.price
    draft.effective_at = as_utc(event.effective_at)
    draft.state = FillState.EXECUTED


def fold_position(events: Sequence[LedgerEvent]) -> PositionState:
    """Fold the ordered events of one position into its `PositionState`.

    Raises:
        ValidationError: If the sequence is malformed (no leading OPEN, mixed positions,
            unknown fill references, invalid amounts).
    """
    if not events:
        raise ValidationError("Cannot fold an empty event list")

    opening = events[0]
    if opening.event_type != EventType.OPEN.value:
        raise ValidationError(
            f"First event of position {opening.position_id} must be OPEN "
            f"(got {opening.event_type})"
        )
    if opening.symbol is None or opening.side is None:
        raise ValidationError("OPEN event requires symbol and side")
    if opening.entry_price is None or not opening.entry_price > 0:
        raise ValidationError(f"OPEN entry price must be positive (got {opening.entry_price!r})")
    if opening.shares is None or not opening.shares > 0:
        raise ValidationError(f"OPEN shares must be positive (got {opening.shares!r})")

    position_id = opening.position_id
    side = Side(opening.side)
    entry_price = opening.entry_price
    original_shares = opening.shares
    opened_at = as_utc(opening.effective_at)
    entry_range = _range_or_none(opening.entry_range_min, opening.entry_range_max)

    drafts: dict[str, _FillDraft] = {}
    close_event_at: datetime | None = None
    discard_reason: str | None = None
    discarded = False

    for event in events[1:]:
        if event.position_id != position_id:
            raise ValidationError(
                f"Event {event.id} belongs to position {event.position_id}, not {position_id}"
            )
        kind = EventType(event.event_type)
        if kind is EventType.OPEN:
            raise ValidationError(f"Position {position_id} has more than one OPEN event")
        if kind is EventType.AMEND:
            if event.entry_price is not None:
                if not event.entry_price > 0:
                    raise ValidationError("Amended entry price must be positive")
                entry_price = event.entry_price
            if event.shares is not None:
                if not event.shares > 0:
                    raise ValidationError("Amended shares must be positive")
                original_shares = event.shares
            opened_at = as_utc(event.effective_at)
        elif kind is EventType.FILL:
            _apply_fill(drafts, event)
        elif kind is EventType.FILL_CONFIRMED:
            _apply_confirmation(drafts, event)
        elif kind is EventType.FILL_DISCARDED:
            draft = _require_fill(drafts, event)
            if draft.state is not FillState.DISCARDED:
                draft.state = FillState.DISCARDED
                draft.discard_reason = event.reason
        elif kind is EventType.CLOSE:
            if close_event_at is None:
                close_event_at = as_utc(event.effective_at)
        elif kind is EventType.DISCARD:
            discarded = True
            discard_reason = event.reason

    fills: list[Fill] = []
    executed_pct = 0.0
    realized_pnl = 0.0
    sold_out_at: datetime | None = None
    for draft in drafts.values():
        shares_sold = original_shares * draft.percentage / FULL_PARTICIPATION_PCT
        delta = 0.0
        if draft.state is FillState.EXECUTED and draft.price is not None:
            delta = shares_sold * (draft.price - entry_price) * side.sign
            executed_pct += draft.percentage
            realized_pnl += delta
            if sold_out_at is None and FULL_PARTICIPATION_PCT - executed_pct <= EPSILON:
                sold_out_at = draft.effective_at
        fills.append(
            Fill(
                fill_id=draft.fill_id,
                position_id=position_id,
                effective_at=draft.effective_at,
                percentage_sold=draft.percentage,
                shares_sold=shares_sold,
                state=draft.state,
                price_at_fill=draft.price,
                price_range=draft.price_range,
                realized_pnl_delta=delta,
                discard_reason=draft.discard_reason,
            )
        )

    remaining_pct = min(FULL_PARTICIPATION_PCT, max(0.0, FULL_PARTICIPATION_PCT - executed_pct))
    if remaining_pct <= EPSILON:
        remaining_pct = 0.0
    remaining_shares = original_shares * remaining_pct / FULL_PARTICIPATION_PCT

    closed_at: datetime | None = None
    if discarded:
        status = PositionStatus.DISCARDED
    elif sold_out_at is not None or close_event_at is not None:
        status = PositionStatus.CLOSED
        candidates = [t for t in (sold_out_at, close_event_at) if t is not None]
        closed_at = min(candidates)
    else:
        status = PositionStatus.ACTIVE

    return PositionState(
        position_id=position_id,
        pool=PoolName(opening.pool),
        symbol=opening.symbol,
        side=side,
        entry_price=entry_price,
        entry_range=entry_range,
        original_allocated_amount=original_shares * entry_price,
        original_shares=original_shares,
        original_participation_pct=FULL_PARTICIPATION_PCT,
        remaining_shares=remaining_shares,
        remaining_participation_pct=remaining_pct,
        realized_pnl=realized_pnl,
        status=status,
        opened_at=opened_at,
        fills=tuple(fills),
        closed_at=closed_at,
        discard_reason=discard_reason,
        event_count=len(events),
    )


_RETROACTIVE = frozenset({EventType.AMEND, EventType.FILL_DISCARDED, EventType.DISCARD})


def fold_position_as_of(events: Sequence[LedgerEvent], at: datetime) -> PositionState | None:
    """Fold only the events effective by `at`.

    Corrections (AMEND, FILL_DISCARDED, DISCARD) always apply: they describe how the history
    should have looked, not something that happened later. Returns None when the position
    was not yet open at `at`.
    """
    cutoff = as_utc(at)
    current = fold_position(events)
    if current.opened_at > cutoff:
        return None

    kept = [events[0]]
    known_fills: set[str] = set()
    for event in events[1:]:
        kind = EventType(event.event_type)
        if kind in _RETROACTIVE:
            if kind is EventType.FILL_DISCARDED and event.fill_id not in known_fills:
                continue
            kept.append(event)
            continue
        if as_utc(event.effective_at) > cutoff:
            continue
        if kind is EventType.FILL_CONFIRMED and event.fill_id not in known_fills:
            continue
        if kind is EventType.FILL and event.fill_id is not None:
            known_fills.add(event.fill_id)
        kept.append(event)
    return fold_position(kept)
