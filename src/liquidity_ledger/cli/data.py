"""Typer CLI commands for database setup and schema migrations."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from liquidity_ledger.cli.utils import DbOption, console, run_async

app = typer.Typer(help="Database management commands.")


def find_alembic_ini() -> Path:
    """Locate alembic.ini in the working directory or above the installed package."""
    alembic_ini = Path("alembic.ini")
    if alembic_ini.exists():
        return alembic_ini

    for parent in Path(__file__).resolve().parents:
        candidate = parent / "alembic.ini"
        if candidate.exists():
            return candidate

    raise FileNotFoundError("alembic.ini not found")


@app.command("init")
def data_init(db_path: DbOption = None) -> None:
    """Create the ledger tables if they do not exist."""
    from liquidity_ledger.cli.db import load_config, open_db

    path = load_config(db_path).db_path

    async def _init() -> None:
        async with open_db(path):
            pass

    run_async(_init())
    console.print(f"[green]✓[/green] Database initialized at {path}")


@app.command("migrate")
def data_migrate(
    db_path: DbOption = None,
    revision: Annotated[str, typer.Option("--revision", help="Target revision.")] = "head",
) -> None:
    """Run Alembic schema migrations."""
    from alembic import command
    from alembic.config import Config

    from liquidity_ledger.cli.db import load_config

    path = load_config(db_path).db_path
    try:
        alembic_ini = find_alembic_ini()
    except FileNotFoundError:
        console.print("[red]Error:[/red] Could not find alembic.ini")
        console.print("[dim]Run from the repository root.[/dim]")
        raise typer.Exit(1) from None

    path.parent.mkdir(parents=True, exist_ok=True)
    alembic_cfg = Config(str(alembic_ini))
    # env.py runs migrations through the async engine.
    alembic_cfg.set_main_option("sqlalchemy.url", f"sqlite+aiosqlite:///{path}")
    try:
        command.upgrade(alembic_cfg, revision)
    except Exception as exc:
        console.print(f"[red]Error:[/red] Migration failed: {exc}")
        raise typer.Exit(1) from None
    console.print(f"[green]✓[/green] Schema at {revision} for {path}")
