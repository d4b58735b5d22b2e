"""Typer CLI commands for opening, selling and correcting positions."""

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
    format_signed_currency,
    run_async,
    to_utc,
)
from liquidity_ledger.exceptions import ValidationError
from liquidity_ledger.types import PositionStatus, Side

if TYPE_CHECKING:
    from collections.abc import Sequence

    from liquidity_ledger.data.models import LedgerEvent
    from liquidity_ledger.ledger.models import EntryPricing, PositionState

app = typer.Typer(help="Position lifecycle commands.")

PositionArg = Annotated[str, typer.Argument(help="Position id.")]
FillArg = Annotated[str, typer.Argument(help="Fill id.")]
WhenOption = Annotated[
    datetime | None,
    typer.Option(
        "--at",
        formats=DATETIME_FORMATS,
        help="Effective time (UTC). Defaults to now; may be in the past.",
        show_default=False,
    ),
]


def _entry_pricing(price: float | None, low: float | None, high: float | None) -> EntryPricing:
    from liquidity_ledger.ledger.models import FixedPrice, PriceRange

    if price is not None and (low is not None or high is not None):
        raise ValidationError("Give either --price or --low/--high, not both")
    if price is not None:
        return FixedPrice(price)
    if low is None or high is None:
        raise ValidationError("An entry price (--price) or a range (--low and --high) is required")
    return PriceRange(low, high)


def print_position(state: PositionState) -> None:
    """Print one position and its fills."""
    status_style = {
        PositionStatus.ACTIVE: "green",
        PositionStatus.CLOSED: "blue",
        PositionStatus.DISCARDED: "dim",
    }[state.status]
    console.print(
        f"[bold]{state.symbol}[/bold] {state.side.value} "
        f"[{status_style}]{state.status.value}[/{status_style}] "
        f"[dim]({state.position_id})[/dim]"
    )
    console.print(
        f"Entry {format_currency(state.entry_price)} · "
        f"{state.remaining_shares:,.4f}/{state.original_shares:,.4f} shares · "
        f"{state.remaining_participation_pct:.2f}% remaining · "
        f"allocated {format_currency(state.allocated_amount)} · "
        f"realized {format_signed_currency(state.realized_pnl)}"
    )
    if not state.fills:
        return

    table = Table(show_header=True)
    table.add_column("Fill", style="dim", no_wrap=True)
    table.add_column("Effective", no_wrap=True)
    table.add_column("%", justify="right")
    table.add_column("Shares", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("State")
    table.add_column("Realized", justify="right")
    for fill in state.fills:
        if fill.price_at_fill is not None:
            price = format_currency(fill.price_at_fill)
        elif fill.price_range is not None:
            price = f"{fill.price_range.low:g}-{fill.price_range.high:g}"
        else:
            price = "-"
        table.add_row(
            fill.fill_id,
            fill.effective_at.strftime("%Y-%m-%d %H:%M"),
            f"{fill.percentage_sold:.2f}",
            f"{fill.shares_sold:,.4f}",
            price,
            fill.state.value,
            format_signed_currency(fill.realized_pnl_delta) if fill.is_executed else "-",
        )
    console.print(table)


@app.command("open")
def position_open(
    pool: PoolOption,
    symbol: Annotated[str, typer.Argument(help="Ticker symbol.")],
    amount: Annotated[float, typer.Argument(help="Capital to allocate (dollars).")],
    side: Annotated[
        Side, typer.Option("--side", "-s", case_sensitive=False, help="Alert direction.")
    ] = Side.BUY,
    price: Annotated[
        float | None, typer.Option("--price", help="Fixed entry price.", show_default=False)
    ] = None,
    low: Annotated[
        float | None, typer.Option("--low", help="Entry range low.", show_default=False)
    ] = None,
    high: Annotated[
        float | None, typer.Option("--high", help="Entry range high.", show_default=False)
    ] = None,
    opened_at: WhenOption = None,
    db_path: DbOption = None,
) -> None:
    """Allocate capital from a pool to a new position."""
    from liquidity_ledger.cli.db import open_services

    async def _open() -> PositionState:
        pricing = _entry_pricing(price, low, high)
        async with open_services(db_path) as services:
            return await services.allocator.open_position(
                pool, symbol, side, pricing, amount, opened_at=to_utc(opened_at)
            )

    state = run_async(_open())
    console.print(f"[green]✓[/green] Opened position {state.position_id}")
    print_position(state)


@app.command("fill")
def position_fill(
    position_id: PositionArg,
    percentage: Annotated[float, typer.Argument(help="Percent of the original position sold.")],
    price: Annotated[float, typer.Argument(help="Sale price.")],
    effective_at: WhenOption = None,
    db_path: DbOption = None,
) -> None:
    """Record an executed partial or full sale."""
    from liquidity_ledger.cli.db import open_services

    async def _fill() -> PositionState:
        async with open_services(db_path) as services:
            return await services.allocator.record_fill(
                position_id, percentage, price, to_utc(effective_at)
            )

    state = run_async(_fill())
    console.print("[green]✓[/green] Fill recorded")
    print_position(state)


@app.command("schedule-fill")
def position_schedule_fill(
    position_id: PositionArg,
    percentage: Annotated[float, typer.Argument(help="Percent of the original position sold.")],
    low: Annotated[float, typer.Option("--low", help="Sale range low.")],
    high: Annotated[float, typer.Option("--high", help="Sale range high.")],
    effective_at: WhenOption = None,
    db_path: DbOption = None,
) -> None:
    """Record a pending sale against a price range."""
    from liquidity_ledger.cli.db import open_services
    from liquidity_ledger.ledger.models import PriceRange

    async def _schedule() -> PositionState:
        price_range = PriceRange(low, high)
        async with open_services(db_path) as services:
            return await services.allocator.schedule_fill(
                position_id, percentage, price_range, to_utc(effective_at)
            )

    state = run_async(_schedule())
    console.print("[green]✓[/green] Pending fill scheduled")
    print_position(state)


@app.command("confirm-fill")
def position_confirm_fill(
    fill_id: FillArg,
    price: Annotated[
        float | None,
        typer.Option("--price", help="Execution price. Defaults to the latest mark."),
    ] = None,
    effective_at: WhenOption = None,
    db_path: DbOption = None,
) -> None:
    """Execute a pending fill."""
    from liquidity_ledger.cli.db import open_services

    async def _confirm() -> PositionState:
        async with open_services(db_path) as services:
            return await services.allocator.confirm_fill(fill_id, price, to_utc(effective_at))

    state = run_async(_confirm())
    console.print(f"[green]✓[/green] Fill {fill_id} confirmed")
    print_position(state)


@app.command("confirm-pending")
def position_confirm_pending(pool: PoolOption, db_path: DbOption = None) -> None:
    """Confirm every pending fill of a pool at the latest marks."""
    from liquidity_ledger.cli.db import open_services

    async def _confirm_all() -> list[PositionState]:
        async with open_services(db_path) as services:
            return await services.allocator.confirm_pending_fills(pool)

    confirmed = run_async(_confirm_all())
    if not confirmed:
        console.print("[yellow]No pending fills could be confirmed[/yellow]")
        return
    console.print(f"[green]✓[/green] Confirmed {len(confirmed)} fill(s)")


@app.command("check-ranges")
def position_check_ranges(pool: PoolOption, db_path: DbOption = None) -> None:
    """Discard range-entry positions whose latest mark left the entry range."""
    from liquidity_ledger.cli.db import open_services

    async def _sweep() -> list[PositionState]:
        async with open_services(db_path) as services:
            return await services.allocator.discard_broken_ranges(pool)

    discarded = run_async(_sweep())
    if not discarded:
        console.print("[green]✓[/green] No entry ranges broken")
        return
    for state in discarded:
        console.print(f"[yellow]Discarded[/yellow] {state.position_id} {state.symbol}")
        console.print(f"  [dim]{state.discard_reason}[/dim]")
    console.print(f"[green]✓[/green] Discarded {len(discarded)} position(s)")


@app.command("discard-fill")
def position_discard_fill(
    fill_id: FillArg,
    reason: Annotated[str, typer.Option("--reason", "-r", help="Why the fill is voided.")],
    db_path: DbOption = None,
) -> None:
    """Void a fill; the position is restored as if it never executed."""
    from liquidity_ledger.cli.db import open_services

    async def _discard() -> PositionState:
        async with open_services(db_path) as services:
            return await services.allocator.discard_fill(fill_id, reason)

    state = run_async(_discard())
    console.print(f"[green]✓[/green] Fill {fill_id} discarded")
    print_position(state)


@app.command("close")
def position_close(
    position_id: PositionArg,
    price: Annotated[
        float | None,
        typer.Option("--price", help="Sell the remainder at this price. Omit to release at cost."),
    ] = None,
    effective_at: WhenOption = None,
    db_path: DbOption = None,
) -> None:
    """Close a position."""
    from liquidity_ledger.cli.db import open_services

    async def _close() -> PositionState:
        async with open_services(db_path) as services:
            return await services.allocator.close_position(
                position_id, price, to_utc(effective_at)
            )

    state = run_async(_close())
    console.print(f"[green]✓[/green] Position {position_id} closed")
    print_position(state)


@app.command("discard")
def position_discard(
    position_id: PositionArg,
    reason: Annotated[str, typer.Option("--reason", "-r", help="Why the position is voided.")],
    db_path: DbOption = None,
) -> None:
    """Void a position that never sold anything."""
    from liquidity_ledger.cli.db import open_services

    async def _discard() -> PositionState:
        async with open_services(db_path) as services:
            return await services.allocator.discard_position(position_id, reason)

    state = run_async(_discard())
    console.print(f"[green]✓[/green] Position {position_id} discarded")
    print_position(state)


@app.command("correct")
def position_correct(
    position_id: PositionArg,
    reason: Annotated[str, typer.Option("--reason", "-r", help="Why the correction is made.")],
    entry_price: Annotated[
        float | None, typer.Option("--entry-price", help="Corrected entry price.")
    ] = None,
    shares: Annotated[float | None, typer.Option("--shares", help="Corrected shares.")] = None,
    opened_at: Annotated[
        datetime | None,
        typer.Option("--opened-at", formats=DATETIME_FORMATS, help="Corrected open time (UTC)."),
    ] = None,
    db_path: DbOption = None,
) -> None:
    """Admin correction of a position's opening data."""
    from liquidity_ledger.cli.db import open_services

    async def _correct() -> PositionState:
        async with open_services(db_path) as services:
            return await services.allocator.correct_position(
                position_id,
                reason=reason,
                entry_price=entry_price,
                shares=shares,
                opened_at=to_utc(opened_at),
            )

    state = run_async(_correct())
    console.print(f"[green]✓[/green] Position {position_id} corrected")
    print_position(state)


@app.command("refold")
def position_refold(position_id: PositionArg, db_path: DbOption = None) -> None:
    """Re-derive a position from its ledger and rewrite its pool totals."""
    from liquidity_ledger.cli.db import open_services

    async def _refold() -> PositionState:
        async with open_services(db_path) as services:
            return await services.allocator.refold(position_id)

    print_position(run_async(_refold()))


@app.command("show")
def position_show(position_id: PositionArg, db_path: DbOption = None) -> None:
    """Show a position and its fills."""
    from liquidity_ledger.cli.db import open_services

    async def _show() -> PositionState:
        async with open_services(db_path) as services:
            return await services.allocator.get_position(position_id)

    print_position(run_async(_show()))


@app.command("list")
def position_list(
    pool: PoolOption,
    status: Annotated[
        PositionStatus | None,
        typer.Option("--status", case_sensitive=False, help="Filter by status."),
    ] = None,
    full_ids: Annotated[
        bool, typer.Option("--full-ids", help="Show full position ids instead of prefixes.")
    ] = False,
    db_path: DbOption = None,
) -> None:
    """List the positions of a pool."""
    from liquidity_ledger.cli.db import open_services

    async def _list() -> list[PositionState]:
        async with open_services(db_path) as services:
            return await services.allocator.list_positions(pool, status)

    positions = run_async(_list())
    if not positions:
        console.print("[yellow]No positions found[/yellow]")
        return

    table = Table(title=f"Positions in {pool.value}", show_header=True)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Symbol", style="cyan", no_wrap=True)
    table.add_column("Side", style="magenta", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Entry", justify="right")
    table.add_column("Left %", justify="right")
    table.add_column("Allocated", justify="right")
    table.add_column("Realized", justify="right")
    for state in positions:
        table.add_row(
            state.position_id if full_ids else state.position_id[:8],
            state.symbol,
            state.side.value,
            state.status.value,
            format_currency(state.entry_price),
            f"{state.remaining_participation_pct:.2f}",
            format_currency(state.allocated_amount),
            format_signed_currency(state.realized_pnl),
        )
    console.print(table)


@app.command("events")
def position_events(position_id: PositionArg, db_path: DbOption = None) -> None:
    """Show the raw ledger events of a position."""
    from liquidity_ledger.cli.db import open_services

    async def _events() -> Sequence[LedgerEvent]:
        async with open_services(db_path) as services:
            return await services.allocator.position_events(position_id)

    table = Table(title=f"Ledger of {position_id}", show_header=True)
    table.add_column("#", justify="right")
    table.add_column("Type", style="cyan")
    table.add_column("Effective", no_wrap=True)
    table.add_column("Fill", style="dim")
    table.add_column("%", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Reason")
    for event in run_async(_events()):
        table.add_row(
            str(event.id),
            event.event_type,
            event.effective_at.strftime("%Y-%m-%d %H:%M"),
            event.fill_id or "",
            f"{event.percentage:.2f}" if event.percentage is not None else "",
            f"{event.price if event.price is not None else event.entry_price or ''}",
            event.reason or "",
        )
    console.print(table)
