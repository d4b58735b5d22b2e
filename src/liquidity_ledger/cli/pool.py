"""Typer CLI commands for pool setup and auditing."""

from __future__ import annotations

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

if TYPE_CHECKING:
    from liquidity_ledger.portfolio.allocator import PoolAudit, PoolState

app = typer.Typer(help="Pool setup and audit commands.")


def print_pool_state(state: PoolState) -> None:
    table = Table(title=f"Pool {state.pool.value}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Initial liquidity", format_currency(state.initial_liquidity))
    table.add_row("Realized P&L", format_signed_currency(state.cumulative_realized_pnl))
    table.add_row("Total liquidity", format_currency(state.total_liquidity))
    table.add_row("Distributed", format_currency(state.distributed_liquidity))
    table.add_row("Available", format_currency(state.available_liquidity))
    table.add_row("Active positions", str(state.positions_active))
    table.add_row("Closed positions", str(state.positions_closed))
    console.print(table)


@app.command("create")
def pool_create(
    pool: PoolOption,
    initial_liquidity: Annotated[
        float, typer.Argument(help="Starting capital of the pool (dollars).")
    ],
    db_path: DbOption = None,
) -> None:
    """Create a pool with its initial liquidity."""
    from liquidity_ledger.cli.db import open_services

    async def _create() -> PoolState:
        async with open_services(db_path) as services:
            return await services.allocator.create_pool(pool, initial_liquidity)

    state = run_async(_create())
    console.print(f"[green]✓[/green] Pool {pool.value} created")
    print_pool_state(state)


@app.command("show")
def pool_show(pool: PoolOption, db_path: DbOption = None) -> None:
    """Show pool totals (recomputed from the ledger)."""
    from liquidity_ledger.cli.db import open_services

    async def _show() -> PoolState:
        async with open_services(db_path) as services:
            return await services.allocator.pool_state(pool)

    print_pool_state(run_async(_show()))


@app.command("amend-initial")
def pool_amend_initial(
    pool: PoolOption,
    initial_liquidity: Annotated[float, typer.Argument(help="Corrected starting capital.")],
    reason: Annotated[str, typer.Option("--reason", "-r", help="Why the correction is made.")],
    db_path: DbOption = None,
) -> None:
    """Admin correction of a pool's initial liquidity."""
    from liquidity_ledger.cli.db import open_services

    async def _amend() -> PoolState:
        async with open_services(db_path) as services:
            return await services.allocator.amend_initial_liquidity(
                pool, initial_liquidity, reason
            )

    state = run_async(_amend())
    console.print(f"[green]✓[/green] Initial liquidity of {pool.value} amended")
    print_pool_state(state)


@app.command("verify")
def pool_verify(pool: PoolOption, db_path: DbOption = None) -> None:
    """Compare the stored pool totals with a full recomputation."""
    from liquidity_ledger.cli.db import open_services

    async def _verify() -> PoolAudit:
        async with open_services(db_path) as services:
            return await services.allocator.verify_pool(pool)

    audit = run_async(_verify())
    if audit.is_consistent:
        console.print(f"[green]✓[/green] Pool {pool.value} is consistent with its ledger")
        return

    table = Table(title=f"Drift in pool {pool.value}")
    table.add_column("Field", style="cyan")
    table.add_column("Stored", justify="right")
    table.add_column("Difference", justify="right")
    for field_name, difference in audit.drift.items():
        table.add_row(field_name, f"{audit.persisted[field_name]:,.2f}", f"{difference:+,.2f}")
    console.print(table)
    console.print("[dim]Run `ledger position refold <id>` to rewrite the pool totals.[/dim]")
    raise typer.Exit(1)
