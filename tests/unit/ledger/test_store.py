"""Tests for the append-only ledger store (real SQLite)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select

from liquidity_ledger.data.models import LedgerEvent, Pool
from liquidity_ledger.exceptions import (
    FillNotFoundError,
    OverAllocationError,
    PositionNotFoundError,
    ValidationError,
)
from liquidity_ledger.ledger.store import LedgerStore
from liquidity_ledger.types import EventType, PoolName

if TYPE_CHECKING:
    from liquidity_ledger.data.database import DatabaseManager

T0 = datetime(2026, 3, 1, 14, 0, tzinfo=UTC)
POOL = PoolName.TRADER_CALL.value


def _open(position_id: str = "pos-1") -> LedgerEvent:
    return LedgerEvent(
        event_type=EventType.OPEN.value,
        pool=POOL,
        position_id=position_id,
        symbol="AAPL",
        side="BUY",
        entry_price=100.0,
        shares=10.0,
        amount=1000.0,
        effective_at=T0,
        recorded_at=T0,
    )


def _fill(
    fill_id: str, percentage: float, price: float | None = 110.0, **extra: float
) -> LedgerEvent:
    return LedgerEvent(
        event_type=EventType.FILL.value,
        pool=POOL,
        position_id="pos-1",
        fill_id=fill_id,
        percentage=percentage,
        price=price,
        effective_at=T0 + timedelta(days=1),
        recorded_at=T0 + timedelta(days=1),
        **extra,
    )


@pytest.fixture
async def seeded(db: DatabaseManager) -> DatabaseManager:
    async with db.session_factory() as session, session.begin():
        session.add(Pool(name=POOL, initial_liquidity=10_000.0))
    return db


class TestLedgerStore:
    async def test_append_returns_increasing_ids(self, seeded: DatabaseManager) -> None:
        async with seeded.session_factory() as session, session.begin():
            store = LedgerStore(session)
            first = await store.append(_open())
            second = await store.append(_fill("f1", 50))

        assert second > first

    async def test_events_for_in_append_order(self, seeded: DatabaseManager) -> None:
        async with seeded.session_factory() as session, session.begin():
            store = LedgerStore(session)
            await store.append(_open())
            await store.append(_fill("f1", 20))
            await store.append(_fill("f2", 30))

        async with seeded.session_factory() as session:
            events = await LedgerStore(session).events_for("pos-1")

        assert [e.event_type for e in events] == ["OPEN", "FILL", "FILL"]
        assert [e.fill_id for e in events[1:]] == ["f1", "f2"]

    async def test_rejects_fill_beyond_remaining(self, seeded: DatabaseManager) -> None:
        async with seeded.session_factory() as session, session.begin():
            store = LedgerStore(session)
            await store.append(_open())
            await store.append(_fill("f1", 70))

        async with seeded.session_factory() as session:
            store = LedgerStore(session)
            with pytest.raises(OverAllocationError) as exc_info:
                await store.append(_fill("f2", 40))

        assert exc_info.value.available_pct == pytest.approx(30.0)
        assert isinstance(exc_info.value, ValidationError)

    async def test_pending_fills_count_against_bound(self, seeded: DatabaseManager) -> None:
        async with seeded.session_factory() as session, session.begin():
            store = LedgerStore(session)
            await store.append(_open())
            await store.append(
                _fill("f1", 80, price=None, price_range_min=105.0, price_range_max=115.0)
            )

        async with seeded.session_factory() as session:
            with pytest.raises(OverAllocationError):
                await LedgerStore(session).append(_fill("f2", 30))

    async def test_event_for_unknown_position(self, seeded: DatabaseManager) -> None:
        async with seeded.session_factory() as session:
            with pytest.raises(PositionNotFoundError):
                await LedgerStore(session).append(_fill("f1", 10))

    async def test_all_events_since(self, seeded: DatabaseManager) -> None:
        async with seeded.session_factory() as session, session.begin():
            store = LedgerStore(session)
            await store.append(_open())
            await store.append(_fill("f1", 10))

        async with seeded.session_factory() as session:
            store = LedgerStore(session)
            everything = await store.all_events(POOL)
            recent = await store.all_events(POOL, since=T0 + timedelta(hours=1))

        assert len(everything) == 2
        assert [e.event_type for e in recent] == ["FILL"]

    async def test_position_for_fill(self, seeded: DatabaseManager) -> None:
        async with seeded.session_factory() as session, session.begin():
            store = LedgerStore(session)
            await store.append(_open())
            await store.append(_fill("f1", 10))

        async with seeded.session_factory() as session:
            store = LedgerStore(session)
            assert await store.position_for_fill("f1") == "pos-1"
            with pytest.raises(FillNotFoundError):
                await store.position_for_fill("missing")


class TestAppendOnly:
    async def test_update_is_rejected(self, seeded: DatabaseManager) -> None:
        async with seeded.session_factory() as session, session.begin():
            await LedgerStore(session).append(_open())

        async with seeded.session_factory() as session:
            stored = (await session.execute(select(LedgerEvent))).scalar_one()
            stored.entry_price = 1.0
            with pytest.raises(ValidationError, match="append-only"):
                await session.flush()

    async def test_delete_is_rejected(self, seeded: DatabaseManager) -> None:
        async with seeded.session_factory() as session, session.begin():
            await LedgerStore(session).append(_open())

        async with seeded.session_factory() as session:
            stored = (await session.execute(select(LedgerEvent))).scalar_one()
            await session.delete(stored)
            with pytest.raises(ValidationError, match="append-only"):
                await session.flush()
