from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from liquidity_ledger.cli import app
from liquidity_ledger.data import DatabaseManager
from liquidity_ledger.ledger.store import LedgerStore
from liquidity_ledger.types import EventType

if TYPE_CHECKING:
    from pathlib import Path

runner = CliRunner()

POSITION_ID = re.compile(r"Opened position ([0-9a-f-]{36})")


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "ledger.db"
    result = runner.invoke(
        app, ["pool", "create", "--pool", "tradercall", "10000", "--db", str(path)]
    )
    assert result.exit_code == 0, result.stdout
    return path


def open_position(db_path: Path, *args: str) -> str:
    result = runner.invoke(
        app,
        ["position", "open", "--pool", "TraderCall", *args, "--db", str(db_path)],
    )
    assert result.exit_code == 0, result.stdout
    match = POSITION_ID.search(result.stdout)
    assert match is not None, result.stdout
    return match.group(1)


def fill_ids(db_path: Path, position_id: str) -> list[str]:
    async def _ids() -> list[str]:
        async with DatabaseManager(db_path) as db:
            async with db.session_factory() as session:
                events = await LedgerStore(session).events_for(position_id)
        return [e.fill_id for e in events if e.event_type == EventType.FILL and e.fill_id]

    return asyncio.run(_ids())


def test_version() -> None:
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert "liquidity-ledger v0.1.0" in result.stdout


def test_data_init_creates_database(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "ledger.db"

    result = runner.invoke(app, ["data", "init", "--db", str(path)])

    assert result.exit_code == 0
    assert "Database initialized" in result.stdout
    assert path.exists()


class TestPoolCommands:
    def test_show(self, db_path: Path) -> None:
        result = runner.invoke(
            app, ["pool", "show", "--pool", "TraderCall", "--db", str(db_path)]
        )

        assert result.exit_code == 0
        assert "$10,000.00" in result.stdout

    def test_create_twice_fails(self, db_path: Path) -> None:
        result = runner.invoke(
            app, ["pool", "create", "--pool", "TraderCall", "5000", "--db", str(db_path)]
        )

        assert result.exit_code == 1
        assert "already exists" in result.stdout

    def test_unknown_pool_fails(self, tmp_path: Path) -> None:
        result = runner.invoke(
            app, ["pool", "show", "--pool", "SmartMoney", "--db", str(tmp_path / "x.db")]
        )

        assert result.exit_code == 1
        assert "Pool not found" in result.stdout

    def test_verify_consistent(self, db_path: Path) -> None:
        open_position(db_path, "AAPL", "1000", "--price", "100")

        result = runner.invoke(
            app, ["pool", "verify", "--pool", "TraderCall", "--db", str(db_path)]
        )

        assert result.exit_code == 0
        assert "consistent" in result.stdout

    def test_amend_initial(self, db_path: Path) -> None:
        result = runner.invoke(
            app,
            [
                "pool",
                "amend-initial",
                "--pool",
                "TraderCall",
                "12000",
                "--reason",
                "second wire",
                "--db",
                str(db_path),
            ],
        )

        assert result.exit_code == 0
        assert "$12,000.00" in result.stdout


class TestPositionCommands:
    def test_open_fill_and_discard(self, db_path: Path) -> None:
        position_id = open_position(db_path, "AAPL", "1000", "--price", "100")

        result = runner.invoke(
            app, ["position", "fill", position_id, "50", "110", "--db", str(db_path)]
        )
        assert result.exit_code == 0, result.stdout
        assert "Fill recorded" in result.stdout

        pool = runner.invoke(app, ["pool", "show", "--pool", "TraderCall", "--db", str(db_path)])
        assert "$10,050.00" in pool.stdout
        assert "$9,550.00" in pool.stdout

        [fill_id] = fill_ids(db_path, position_id)
        result = runner.invoke(
            app,
            ["position", "discard-fill", fill_id, "--reason", "duplicate", "--db", str(db_path)],
        )
        assert result.exit_code == 0, result.stdout

        pool = runner.invoke(app, ["pool", "show", "--pool", "TraderCall", "--db", str(db_path)])
        assert "$9,000.00" in pool.stdout

    def test_open_rejects_price_and_range(self, db_path: Path) -> None:
        result = runner.invoke(
            app,
            [
                "position",
                "open",
                "--pool",
                "TraderCall",
                "AAPL",
                "1000",
                "--price",
                "100",
                "--low",
                "99",
                "--db",
                str(db_path),
            ],
        )

        assert result.exit_code == 1
        assert "either --price or --low/--high" in result.stdout

    def test_open_beyond_available_fails(self, db_path: Path) -> None:
        result = runner.invoke(
            app,
            [
                "position",
                "open",
                "--pool",
                "TraderCall",
                "AAPL",
                "20000",
                "--price",
                "100",
                "--db",
                str(db_path),
            ],
        )

        assert result.exit_code == 1
        assert "Insufficient liquidity" in result.stdout

    def test_oversell_fails(self, db_path: Path) -> None:
        position_id = open_position(db_path, "AAPL", "1000", "--price", "100")
        runner.invoke(app, ["position", "fill", position_id, "80", "110", "--db", str(db_path)])

        result = runner.invoke(
            app, ["position", "fill", position_id, "30", "110", "--db", str(db_path)]
        )

        assert result.exit_code == 1
        assert "Cannot sell 30%" in result.stdout

    def test_schedule_and_confirm_with_mark(self, db_path: Path) -> None:
        position_id = open_position(db_path, "AAPL", "1000", "--price", "100")
        result = runner.invoke(
            app,
            [
                "position",
                "schedule-fill",
                position_id,
                "50",
                "--low",
                "105",
                "--high",
                "115",
                "--db",
                str(db_path),
            ],
        )
        assert result.exit_code == 0, result.stdout

        runner.invoke(app, ["prices", "set", "AAPL", "112", "--db", str(db_path)])
        result = runner.invoke(
            app, ["position", "confirm-pending", "--pool", "TraderCall", "--db", str(db_path)]
        )

        assert result.exit_code == 0, result.stdout
        assert "Confirmed 1 fill(s)" in result.stdout

    def test_check_ranges_discards_broken_range(self, db_path: Path) -> None:
        position_id = open_position(db_path, "NVDA", "1020", "--low", "100", "--high", "104")
        args = ["position", "check-ranges", "--pool", "TraderCall", "--db", str(db_path)]

        untouched = runner.invoke(app, args)
        assert untouched.exit_code == 0, untouched.stdout
        assert "No entry ranges broken" in untouched.stdout

        runner.invoke(app, ["prices", "set", "NVDA", "120", "--db", str(db_path)])
        result = runner.invoke(app, args)

        assert result.exit_code == 0, result.stdout
        assert position_id in result.stdout
        assert "RANGE_BREAK: price 120 above range maximum 104" in result.stdout
        assert "Discarded 1 position(s)" in result.stdout

    def test_close_and_list(self, db_path: Path) -> None:
        position_id = open_position(db_path, "MSFT", "1000", "--price", "100")

        result = runner.invoke(
            app, ["position", "close", position_id, "--price", "120", "--db", str(db_path)]
        )
        assert result.exit_code == 0, result.stdout
        assert "CLOSED" in result.stdout

        listed = runner.invoke(
            app,
            [
                "position",
                "list",
                "--pool",
                "TraderCall",
                "--status",
                "closed",
                "--db",
                str(db_path),
            ],
        )
        assert listed.exit_code == 0
        assert "MSFT" in listed.stdout
        assert "CLOSED" in listed.stdout
        assert position_id[:8] in listed.stdout
        assert position_id not in listed.stdout

    def test_unknown_position(self, db_path: Path) -> None:
        result = runner.invoke(app, ["position", "show", "missing", "--db", str(db_path)])

        assert result.exit_code == 1
        assert "Position not found" in result.stdout


class TestPortfolioAndSnapshotCommands:
    def test_value_uses_latest_mark(self, db_path: Path) -> None:
        open_position(db_path, "AAPL", "1000", "--price", "50")
        runner.invoke(app, ["prices", "set", "AAPL", "60", "--db", str(db_path)])

        result = runner.invoke(
            app, ["portfolio", "value", "--pool", "TraderCall", "--db", str(db_path)]
        )

        assert result.exit_code == 0, result.stdout
        assert "$10,200.00" in result.stdout
        assert "+20.00%" in result.stdout

    def test_value_without_mark_flags_fallback(self, db_path: Path) -> None:
        open_position(db_path, "AAPL", "1000", "--price", "50")

        result = runner.invoke(
            app, ["portfolio", "value", "--pool", "TraderCall", "--db", str(db_path)]
        )

        assert result.exit_code == 0
        assert "marked at entry price" in result.stdout

    def test_materialize_past_date_is_idempotent(self, db_path: Path) -> None:
        args = [
            "snapshot",
            "materialize",
            "--pool",
            "TraderCall",
            "--date",
            "2025-01-02",
            "--db",
            str(db_path),
        ]

        first = runner.invoke(app, args)
        second = runner.invoke(app, args)

        assert "Snapshot written" in first.stdout
        assert "already exists" in second.stdout

    def test_run_once_materializes_every_pool(self, db_path: Path) -> None:
        runner.invoke(
            app, ["pool", "create", "--pool", "SmartMoney", "5000", "--db", str(db_path)]
        )

        result = runner.invoke(app, ["snapshot", "run", "--once", "--db", str(db_path)])

        assert result.exit_code == 0, result.stdout
        assert "SmartMoney: snapshot written" in result.stdout
        assert "TraderCall: snapshot written" in result.stdout

    def test_returns(self, db_path: Path) -> None:
        result = runner.invoke(
            app, ["portfolio", "returns", "--pool", "TraderCall", "--db", str(db_path)]
        )

        assert result.exit_code == 0
        for label in ("1d", "7d", "365d"):
            assert label in result.stdout
