"""
CLI application for the liquidity ledger.

Provides commands for pools, positions, valuation, snapshots and price marks.
"""

from __future__ import annotations

from typing import Annotated

import typer
from dotenv import find_dotenv, load_dotenv

from liquidity_ledger.cli.data import app as data_app
from liquidity_ledger.cli.pool import app as pool_app
from liquidity_ledger.cli.portfolio import app as portfolio_app
from liquidity_ledger.cli.position import app as position_app
from liquidity_ledger.cli.prices import app as prices_app
from liquidity_ledger.cli.snapshot import app as snapshot_app
from liquidity_ledger.cli.utils import console

app = typer.Typer(
    name="ledger",
    help="Liquidity Ledger CLI - pool allocation, fills and portfolio P&L.",
    add_completion=False,
)

app.add_typer(data_app, name="data")
app.add_typer(pool_app, name="pool")
app.add_typer(position_app, name="position")
app.add_typer(portfolio_app, name="portfolio")
app.add_typer(snapshot_app, name="snapshot")
app.add_typer(prices_app, name="prices")


@app.callback()
def main() -> None:
    """Liquidity Ledger CLI."""
    load_dotenv(find_dotenv(usecwd=True))


@app.command()
def version() -> None:
    """Show version information."""
    from liquidity_ledger import __version__

    console.print(f"liquidity-ledger v{__version__}")


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address.")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", help="Bind port.")] = 8000,
) -> None:
    """Run the reporting API (configured from LEDGER_* environment variables)."""
    import uvicorn

    from liquidity_ledger.server.app import create_app_from_env

    uvicorn.run(create_app_from_env(), host=host, port=port)


if __name__ == "__main__":
    app()
