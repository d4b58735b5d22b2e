"""Append-only ledger store for position events."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from liquidity_ledger.clock import as_utc
from liquidity_ledger.data.models import LedgerEvent
from liquidity_ledger.data.repositories.base import BaseRepository
from liquidity_ledger.exceptions import (
    FillNotFoundError,
    OverAllocationError,
    PositionNotFoundError,
)
from liquidity_ledger.ledger.aggregator import fold_position
from liquidity_ledger.types import EPSILON, FULL_PARTICIPATION_PCT, EventType

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from liquidity_ledger.ledger.models import PositionState

logger = structlog.get_logger()


class LedgerStore(BaseRepository[LedgerEvent]):
    """Repository over `ledger_events`.

    Rows are never updated or deleted. Callers serialize appends per position (see
    `liquidity_ledger.locks`) and run each append inside the same transaction as the pool
    recompute that follows it.
    """

    model = LedgerEvent

    async def events_for(self, position_id: str) -> Sequence[LedgerEvent]:
        """All events of one position in append order."""
        stmt = (
            select(LedgerEvent)
            .where(LedgerEvent.position_id == position_id)
            .order_by(LedgerEvent.id.asc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def require_events(self, position_id: str) -> Sequence[LedgerEvent]:
        """Events of a position, or `PositionNotFoundError` when it was never opened."""
        events = await self.events_for(position_id)
        if not events:
            raise PositionNotFoundError(position_id)
        return events

    async def all_events(
        self, pool: str, since: datetime | None = None
    ) -> Sequence[LedgerEvent]:
        """All events of a pool in append order, optionally only those recorded since a time."""
        stmt = select(LedgerEvent).where(LedgerEvent.pool == pool)
        if since is not None:
            stmt = stmt.where(LedgerEvent.recorded_at >= as_utc(since))
        stmt = stmt.order_by(LedgerEvent.id.asc())
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def events_by_position(self, pool: str) -> dict[str, list[LedgerEvent]]:
        """Events of a pool grouped by position, each group in append order."""
        grouped: dict[str, list[LedgerEvent]] = {}
        for event in await self.all_events(pool):
            grouped.setdefault(event.position_id, []).append(event)
        return grouped

    async def position_for_fill(self, fill_id: str) -> str:
        """Position id a fill belongs to."""
        stmt = (
            select(LedgerEvent.position_id)
            .where(
                LedgerEvent.fill_id == fill_id,
                LedgerEvent.event_type == EventType.FILL.value,
            )
            .limit(1)
        )
        result = await self._session.execute(stmt)
        position_id = result.scalar_one_or_none()
        if position_id is None:
            raise FillNotFoundError(fill_id)
        return position_id

    async def append(self, event: LedgerEvent) -> int:
        """Validate an event against a fresh fold of its position and append it.

        Returns:
            The new event id (append order).

        Raises:
            ValidationError: If the resulting event sequence cannot be folded.
            OverAllocationError: If executed plus pending fills would exceed 100%.
        """
        existing = list(await self.events_for(event.position_id))
        if existing or event.event_type != EventType.OPEN.value:
            await self._check_bounds(existing, event)
        else:
            fold_position([event])

        await self.add(event)
        logger.debug(
            "Ledger event appended",
            event_id=event.id,
            event_type=event.event_type,
            position_id=event.position_id,
            fill_id=event.fill_id,
        )
        return event.id

    async def _check_bounds(self, existing: list[LedgerEvent], event: LedgerEvent) -> None:
        if not existing:
            raise PositionNotFoundError(event.position_id)
        before = fold_position(existing)
        after: PositionState = fold_position([*existing, event])
        committed = after.executed_pct + after.pending_pct
        if committed > FULL_PARTICIPATION_PCT + EPSILON:
            raise OverAllocationError(
                event.position_id,
                requested_pct=event.percentage or 0.0,
                available_pct=before.sellable_pct,
            )
