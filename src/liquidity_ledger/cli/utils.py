"""Shared utilities for CLI commands (console output, formatting, async helpers)."""

from __future__ import annotations

import asyncio
from pathlib import Path  # noqa: TC003 - Required at runtime for Typer introspection
from typing import TYPE_CHECKING, Annotated, TypeVar

import typer
from rich.console import Console

from liquidity_ledger.clock import as_utc
from liquidity_ledger.exceptions import LedgerError
from liquidity_ledger.types import PoolName

if TYPE_CHECKING:
    from collections.abc import Coroutine
    from datetime import datetime

console = Console()

T = TypeVar("T")

# Accepted by every date/time option.
DATETIME_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]


def run_async(coro: Coroutine[object, object, T]) -> T:
    """Run a coroutine from a sync CLI command.

    Ledger errors are printed and turned into exit code 1.

    Raises:
        typer.Exit: With code 1 on a `LedgerError`, 130 on KeyboardInterrupt.
    """
    try:
        return asyncio.run(coro)
    except LedgerError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        raise typer.Exit(130) from None


def to_utc(value: datetime | None) -> datetime | None:
    """CLI datetimes are naive; interpret them as UTC."""
    return as_utc(value) if value is not None else None


def format_currency(amount: float) -> str:
    return f"${amount:,.2f}"


def format_signed_currency(amount: float) -> str:
    """Format a dollar amount as a signed currency string with color.

    Args:
        amount: Amount in dollars (can be positive, negative, or zero).

    Returns:
        Formatted string with color markup.
    """
    value = f"${abs(amount):,.2f}"
    if amount > 0:
        return f"[green]+{value}[/green]"
    if amount < 0:
        return f"[red]-{value}[/red]"
    return value


def format_pct(fraction: float | None) -> str:
    """Format a fraction (0.06) as a signed percentage (+6.00%)."""
    if fraction is None:
        return "-"
    text = f"{fraction * 100:+.2f}%"
    if fraction > 0:
        return f"[green]{text}[/green]"
    if fraction < 0:
        return f"[red]{text}[/red]"
    return text


DbOption = Annotated[
    Path | None,
    typer.Option(
        "--db",
        "-d",
        help="Path to SQLite database file. Defaults to LEDGER_DB_PATH or data/ledger.db.",
        show_default=False,
    ),
]
PoolOption = Annotated[
    PoolName,
    typer.Option("--pool", "-p", case_sensitive=False, help="Capital pool."),
]
