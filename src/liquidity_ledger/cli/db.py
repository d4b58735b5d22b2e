"""Shared helpers for CLI database and service setup."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import replace
from typing import TYPE_CHECKING

from liquidity_ledger.config import LedgerConfig
from liquidity_ledger.data import DatabaseManager
from liquidity_ledger.portfolio.services import build_services

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from liquidity_ledger.portfolio.services import LedgerServices


def load_config(db_path: Path | None) -> LedgerConfig:
    """Environment configuration, with `--db` taking precedence over LEDGER_DB_PATH."""
    config = LedgerConfig.from_env()
    if db_path is not None:
        config = replace(config, db_path=db_path)
    return config


@asynccontextmanager
async def open_db(db_path: Path) -> AsyncIterator[DatabaseManager]:
    """Open a database manager and ensure tables exist before yielding."""
    async with DatabaseManager(db_path) as db:
        await db.create_tables()
        yield db


@asynccontextmanager
async def open_services(db_path: Path | None) -> AsyncIterator[LedgerServices]:
    """Open the database and build the ledger services around it."""
    config = load_config(db_path)
    async with open_db(config.db_path) as db:
        yield build_services(db, config)
