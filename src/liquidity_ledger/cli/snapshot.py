"""Typer CLI commands for daily pool snapshots."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Required at runtime for Typer introspection
from typing import TYPE_CHECKING, Annotated

import typer
from rich.table import Table

from liquidity_ledger.cli.utils import (
    DbOption,
    PoolOption,
    console,
    format_currency,
    format_signed_currency,
    run_async,
)
from liquidity_ledger.types import PoolName

if TYPE_CHECKING:
    from collections.abc import Sequence

    from liquidity_ledger.data.models import PoolSnapshot

app = typer.Typer(help="Daily snapshot commands.")


@app.command("materialize")
def snapshot_materialize(
    pool: PoolOption,
    day: Annotated[
        datetime | None,
        typer.Option("--date", formats=["%Y-%m-%d"], help="Business date (default today)."),
    ] = None,
    db_path: DbOption = None,
) -> None:
    """Write the snapshot of a pool for one business date.

    Past dates are written once; today's snapshot is rewritten on every run.
    """
    from liquidity_ledger.cli.db import open_services

    async def _materialize() -> bool:
        async with open_services(db_path) as services:
            return await services.snapshots.materialize_daily(
                pool, day.date() if day is not None else None
            )

    if run_async(_materialize()):
        console.print(f"[green]✓[/green] Snapshot written for {pool.value}")
    else:
        console.print(f"[yellow]Snapshot already exists for {pool.value}[/yellow]")


@app.command("list")
def snapshot_list(
    pool: PoolOption,
    start: Annotated[
        datetime | None, typer.Option("--from", formats=["%Y-%m-%d"], help="First date.")
    ] = None,
    end: Annotated[
        datetime | None, typer.Option("--to", formats=["%Y-%m-%d"], help="Last date.")
    ] = None,
    db_path: DbOption = None,
) -> None:
    """List stored snapshots of a pool."""
    from liquidity_ledger.cli.db import open_services

    async def _list() -> Sequence[PoolSnapshot]:
        async with open_services(db_path) as services:
            return await services.snapshots.list_snapshots(
                pool,
                start.date() if start is not None else None,
                end.date() if end is not None else None,
            )

    snapshots = run_async(_list())
    if not snapshots:
        console.print("[yellow]No snapshots found[/yellow]")
        return

    table = Table(title=f"Snapshots of {pool.value}", show_header=True)
    table.add_column("Date", no_wrap=True)
    table.add_column("Total value", justify="right")
    table.add_column("Realized", justify="right")
    table.add_column("Unrealized", justify="right")
    table.add_column("Available", justify="right")
    table.add_column("Active", justify="right")
    table.add_column("Closed", justify="right")
    for snapshot in snapshots:
        table.add_row(
            snapshot.snapshot_date.isoformat(),
            format_currency(snapshot.total_portfolio_value),
            format_signed_currency(snapshot.cumulative_realized_pnl),
            format_signed_currency(snapshot.unrealized_pnl),
            format_currency(snapshot.available_liquidity),
            str(snapshot.positions_active),
            str(snapshot.positions_closed),
        )
    console.print(table)


@app.command("run")
def snapshot_run(
    interval: Annotated[
        float,
        typer.Option(
            "--interval", "-i", min=1.0, help="Seconds between materialization runs."
        ),
    ] = 3600.0,
    once: Annotated[
        bool, typer.Option("--once", help="Materialize every pool once and exit.")
    ] = False,
    db_path: DbOption = None,
) -> None:
    """Materialize today's snapshot of every pool on a schedule."""
    import asyncio

    from liquidity_ledger.cli.db import open_services
    from liquidity_ledger.data.repositories.pools import PoolRepository
    from liquidity_ledger.portfolio.scheduler import SnapshotScheduler

    async def _run() -> None:
        async with open_services(db_path) as services:

            async def _pools() -> list[PoolName]:
                async with services.db.session_factory() as session:
                    names = await PoolRepository(session).list_names()
                return [PoolName(name) for name in names]

            scheduler = SnapshotScheduler(services.snapshots, _pools, interval)
            if once:
                results = await scheduler.run_once()
                for name, written in results.items():
                    state = "written" if written else "already present"
                    console.print(f"{name.value}: snapshot {state}")
                return

            async with scheduler:
                console.print(
                    f"[green]Snapshot scheduler running every {interval:g}s.[/green] "
                    "Press Ctrl+C to stop."
                )
                while True:
                    await asyncio.sleep(3600)

    run_async(_run())
