"""Typer CLI commands for operator-recorded price marks."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

import typer
from rich.table import Table

from liquidity_ledger.cli.utils import DbOption, console, format_currency, run_async

if TYPE_CHECKING:
    from liquidity_ledger.data.models import PriceMark

app = typer.Typer(help="Price mark commands.")


@app.command("set")
def prices_set(
    symbol: Annotated[str, typer.Argument(help="Ticker symbol.")],
    price: Annotated[float, typer.Argument(help="Current price.")],
    source: Annotated[str, typer.Option("--source", help="Where the quote came from.")] = "manual",
    db_path: DbOption = None,
) -> None:
    """Record the current price of a symbol."""
    from liquidity_ledger.cli.db import load_config, open_db
    from liquidity_ledger.data.models import PriceMark
    from liquidity_ledger.data.repositories.prices import PriceMarkRepository
    from liquidity_ledger.exceptions import ValidationError

    async def _set() -> None:
        if not price > 0:
            raise ValidationError(f"Price must be positive (got {price})")
        async with open_db(load_config(db_path).db_path) as db:
            async with db.session_factory() as session, session.begin():
                await PriceMarkRepository(session).add(
                    PriceMark(symbol=symbol.strip().upper(), price=price, source=source)
                )

    run_async(_set())
    console.print(f"[green]✓[/green] {symbol.upper()} marked at {format_currency(price)}")


@app.command("list")
def prices_list(
    symbols: Annotated[list[str], typer.Argument(help="Symbols to show.")],
    db_path: DbOption = None,
) -> None:
    """Show the latest mark of each symbol."""
    from liquidity_ledger.cli.db import load_config, open_db
    from liquidity_ledger.data.repositories.prices import PriceMarkRepository

    async def _list() -> dict[str, PriceMark]:
        async with open_db(load_config(db_path).db_path) as db:
            async with db.session_factory() as session:
                return await PriceMarkRepository(session).get_latest_batch(symbols)

    marks = run_async(_list())
    table = Table(title="Latest marks", show_header=True)
    table.add_column("Symbol", style="cyan")
    table.add_column("Price", justify="right")
    table.add_column("Source")
    table.add_column("Marked at", no_wrap=True)
    for symbol in symbols:
        mark = marks.get(symbol.upper())
        if mark is None:
            table.add_row(symbol.upper(), "-", "-", "-")
            continue
        table.add_row(
            mark.symbol,
            format_currency(mark.price),
            mark.source,
            mark.marked_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
