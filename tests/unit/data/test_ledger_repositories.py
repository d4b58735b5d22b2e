"""Repository and database manager tests against real SQLite."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from liquidity_ledger.data import DatabaseManager
from liquidity_ledger.data.models import Pool, PoolSnapshot, PriceMark
from liquidity_ledger.data.repositories import (
    PoolRepository,
    PriceMarkRepository,
    SnapshotRepository,
)
from liquidity_ledger.exceptions import PoolNotFoundError, ValidationError

if TYPE_CHECKING:
    from pathlib import Path

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=UTC)


def make_snapshot(day: date, value: float, pool: str = "TraderCall") -> PoolSnapshot:
    return PoolSnapshot(
        pool=pool,
        snapshot_date=day,
        total_portfolio_value=value,
        initial_liquidity=10_000.0,
        cumulative_realized_pnl=0.0,
        unrealized_pnl=value - 10_000.0,
        total_liquidity=10_000.0,
        distributed_liquidity=0.0,
        available_liquidity=10_000.0,
        positions_active=0,
        positions_closed=0,
        created_at=NOW,
    )


@pytest.fixture
async def pools(db: DatabaseManager) -> DatabaseManager:
    async with db.session_factory() as session, session.begin():
        repo = PoolRepository(session)
        await repo.add_many(
            [
                Pool(name="TraderCall", initial_liquidity=10_000.0),
                Pool(name="SmartMoney", initial_liquidity=5_000.0),
            ]
        )
    return db


class TestDatabaseManager:
    async def test_file_database_uses_wal(self, tmp_path: Path) -> None:
        async with DatabaseManager(tmp_path / "nested" / "ledger.db") as db:
            await db.create_tables()
            async with db.engine.connect() as conn:
                mode = (await conn.execute(text("PRAGMA journal_mode"))).scalar_one()

        assert mode == "wal"
        assert (tmp_path / "nested" / "ledger.db").exists()

    async def test_close_is_idempotent(self, tmp_path: Path) -> None:
        db = DatabaseManager(tmp_path / "ledger.db")
        await db.create_tables()

        await db.close()
        await db.close()


class TestPoolRepository:
    async def test_require_and_list(self, pools: DatabaseManager) -> None:
        async with pools.session_factory() as session:
            repo = PoolRepository(session)
            pool = await repo.require("TraderCall")

            assert pool.initial_liquidity == 10_000.0
            assert pool.distributed_liquidity == 0.0
            assert await repo.list_names() == ["SmartMoney", "TraderCall"]

    async def test_require_missing(self, db: DatabaseManager) -> None:
        async with db.session_factory() as session:
            with pytest.raises(PoolNotFoundError, match="Nope"):
                await PoolRepository(session).require("Nope")


class TestSnapshotRepository:
    async def test_range_queries(self, pools: DatabaseManager) -> None:
        d0 = date(2026, 3, 1)
        async with pools.session_factory() as session, session.begin():
            await SnapshotRepository(session).add_many(
                [
                    make_snapshot(d0, 10_000.0),
                    make_snapshot(d0 + timedelta(days=2), 10_200.0),
                    make_snapshot(d0 + timedelta(days=5), 10_500.0),
                    make_snapshot(d0 + timedelta(days=2), 5_000.0, pool="SmartMoney"),
                ]
            )

        async with pools.session_factory() as session:
            repo = SnapshotRepository(session)
            in_range = await repo.get_range(
                "TraderCall", d0 + timedelta(days=1), d0 + timedelta(days=5)
            )
            nearest = await repo.get_latest_on_or_before("TraderCall", d0 + timedelta(days=4))
            exact = await repo.get_for_date("SmartMoney", d0 + timedelta(days=2))
            none_before = await repo.get_latest_on_or_before("TraderCall", d0 - timedelta(days=1))

        assert [s.total_portfolio_value for s in in_range] == [10_200.0, 10_500.0]
        assert nearest is not None
        assert nearest.snapshot_date == d0 + timedelta(days=2)
        assert exact is not None
        assert exact.total_portfolio_value == 5_000.0
        assert none_before is None

    async def test_one_snapshot_per_pool_and_day(self, pools: DatabaseManager) -> None:
        day = date(2026, 3, 1)
        async with pools.session_factory() as session, session.begin():
            await SnapshotRepository(session).add(make_snapshot(day, 10_000.0))

        with pytest.raises(IntegrityError):
            async with pools.session_factory() as session, session.begin():
                await SnapshotRepository(session).add(make_snapshot(day, 10_100.0))

    async def test_snapshot_rows_are_immutable(self, pools: DatabaseManager) -> None:
        day = date(2026, 3, 1)
        async with pools.session_factory() as session, session.begin():
            await SnapshotRepository(session).add(make_snapshot(day, 10_000.0))

        with pytest.raises(ValidationError, match="append-only"):
            async with pools.session_factory() as session, session.begin():
                snapshot = await SnapshotRepository(session).get_for_date("TraderCall", day)
                assert snapshot is not None
                snapshot.total_portfolio_value = 1.0

    async def test_refresh_open_day_rewrites_one_row(self, pools: DatabaseManager) -> None:
        day = date(2026, 3, 1)
        async with pools.session_factory() as session, session.begin():
            await SnapshotRepository(session).add_many(
                [make_snapshot(day, 10_000.0), make_snapshot(day - timedelta(days=1), 9_900.0)]
            )

        async with pools.session_factory() as session, session.begin():
            await SnapshotRepository(session).refresh_open_day(
                "TraderCall", day, {"total_portfolio_value": 10_400.0, "unrealized_pnl": 400.0}
            )

        async with pools.session_factory() as session:
            rows = await SnapshotRepository(session).get_range("TraderCall")

        assert [(s.total_portfolio_value, s.unrealized_pnl) for s in rows] == [
            (9_900.0, -100.0),
            (10_400.0, 400.0),
        ]


class TestPriceMarkRepository:
    async def test_latest_batch(self, db: DatabaseManager) -> None:
        async with db.session_factory() as session, session.begin():
            await PriceMarkRepository(session).add_many(
                [
                    PriceMark(symbol="AAPL", price=180.0, marked_at=NOW),
                    PriceMark(symbol="AAPL", price=181.0, marked_at=NOW),
                    PriceMark(symbol="MSFT", price=400.0, marked_at=NOW),
                ]
            )

        async with db.session_factory() as session:
            marks = await PriceMarkRepository(session).get_latest_batch(["aapl", "msft", "nvda"])

        assert {symbol: mark.price for symbol, mark in marks.items()} == {
            "AAPL": 181.0,
            "MSFT": 400.0,
        }
