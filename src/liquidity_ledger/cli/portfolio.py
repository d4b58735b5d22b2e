"""Typer CLI commands for portfolio valuation and performance."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Required at runtime for Typer introspection
from typing import TYPE_CHECKING, Annotated

import typer
from rich.table import Table

from liquidity_ledger.cli.utils import (
    DATETIME_FORMATS,
    DbOption,
    PoolOption,
    console,
    format_currency,
    format_pct,
    format_signed_currency,
    run_async,
    to_utc,
)

if TYPE_CHECKING:
    from liquidity_ledger.portfolio.snapshots import EvolutionPoint
    from liquidity_ledger.portfolio.valuator import PeriodReturn, PortfolioValuation

app = typer.Typer(help="Portfolio valuation and performance commands.")


def print_valuation(valuation: PortfolioValuation) -> None:
    state = valuation.pool_state
    table = Table(title=f"Portfolio {state.pool.value}", show_header=True)
    table.add_column("Symbol", style="cyan")
    table.add_column("Side", style="magenta")
    table.add_column("Shares", justify="right")
    table.add_column("Entry", justify="right")
    table.add_column("Current", justify="right")
    table.add_column("Unrealized", justify="right")
    table.add_column("Return", justify="right")
    for mark in valuation.positions:
        position = mark.position
        current = format_currency(mark.current_price)
        if mark.price_is_fallback:
            current = f"[yellow]{current}*[/yellow]"
        table.add_row(
            position.symbol,
            position.side.value,
            f"{position.remaining_shares:,.4f}",
            format_currency(position.entry_price),
            current,
            format_signed_currency(mark.unrealized_pnl),
            format_pct(mark.unrealized_return),
        )
    if valuation.positions:
        console.print(table)
    else:
        console.print("[yellow]No active positions[/yellow]")

    console.print(f"\nTotal liquidity: {format_currency(state.total_liquidity)}")
    console.print(f"Distributed:     {format_currency(state.distributed_liquidity)}")
    console.print(f"Available:       {format_currency(state.available_liquidity)}")
    console.print(f"Realized P&L:    {format_signed_currency(state.cumulative_realized_pnl)}")
    console.print(f"Unrealized P&L:  {format_signed_currency(valuation.unrealized_pnl)}")
    console.print(f"Weighted return: {format_pct(valuation.weighted_return)}")
    console.print(f"[bold]Total value:     {format_currency(valuation.total_value)}[/bold]")
    console.print(
        f"Positions: {valuation.positions_active} active, {valuation.positions_closed} closed"
    )
    if any(m.price_is_fallback for m in valuation.positions):
        console.print("[dim]* no quote available; marked at entry price[/dim]")


@app.command("value")
def portfolio_value(
    pool: PoolOption,
    at: Annotated[
        datetime | None,
        typer.Option(
            "--at",
            formats=DATETIME_FORMATS,
            help="Value the pool as of a past time (UTC), marked at entry prices.",
            show_default=False,
        ),
    ] = None,
    db_path: DbOption = None,
) -> None:
    """Show current portfolio value of a pool."""
    from liquidity_ledger.cli.db import open_services

    async def _value() -> PortfolioValuation:
        async with open_services(db_path) as services:
            moment = to_utc(at)
            if moment is None:
                return await services.valuator.current_value(pool)
            return await services.valuator.value_as_of(pool, moment)

    print_valuation(run_async(_value()))


@app.command("evolution")
def portfolio_evolution(
    pool: PoolOption,
    start: Annotated[
        datetime, typer.Option("--from", formats=["%Y-%m-%d"], help="First business date.")
    ],
    end: Annotated[
        datetime | None,
        typer.Option("--to", formats=["%Y-%m-%d"], help="Last business date (default today)."),
    ] = None,
    db_path: DbOption = None,
) -> None:
    """Show daily total value over a date range."""
    from liquidity_ledger.cli.db import open_services

    async def _evolution() -> list[EvolutionPoint]:
        async with open_services(db_path) as services:
            return await services.snapshots.evolution_series(
                pool, start.date(), end.date() if end is not None else None
            )

    points = run_async(_evolution())
    table = Table(title=f"Evolution of {pool.value}", show_header=True)
    table.add_column("Date", no_wrap=True)
    table.add_column("Total value", justify="right")
    table.add_column("Source", style="dim")
    for point in points:
        table.add_row(
            point.day.isoformat(), format_currency(point.total_value), point.source.value
        )
    console.print(table)


@app.command("returns")
def portfolio_returns(pool: PoolOption, db_path: DbOption = None) -> None:
    """Show returns over the standard windows (1d to 365d)."""
    from liquidity_ledger.cli.db import open_services

    async def _returns() -> dict[str, PeriodReturn]:
        async with open_services(db_path) as services:
            return await services.valuator.returns_by_period(pool)

    table = Table(title=f"Returns of {pool.value}", show_header=True)
    table.add_column("Period", style="cyan")
    table.add_column("From", no_wrap=True)
    table.add_column("Start value", justify="right")
    table.add_column("Change", justify="right")
    table.add_column("Return", justify="right")
    for label, result in run_async(_returns()).items():
        table.add_row(
            label,
            result.start.isoformat(),
            format_currency(result.start_value),
            format_signed_currency(result.change),
            format_pct(result.return_fraction),
        )
    console.print(table)
