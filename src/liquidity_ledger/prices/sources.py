"""Concrete price sources."""

from __future__ import annotations

from typing import TYPE_CHECKING

from liquidity_ledger.data.repositories.prices import PriceMarkRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


class StaticPriceSource:
    """In-memory quotes, keyed by upper-cased symbol."""

    def __init__(self, prices: dict[str, float] | None = None) -> None:
        self._prices = {k.upper(): v for k, v in (prices or {}).items()}

    def set(self, symbol: str, price: float) -> None:
        self._prices[symbol.upper()] = price

    async def get_current_price(self, symbol: str) -> float | None:
        return self._prices.get(symbol.upper())


class DatabasePriceSource:
    """Latest operator-recorded mark from the `price_marks` table.

    Opens its own short-lived session so lookups never share a transaction with a mutation.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_current_price(self, symbol: str) -> float | None:
        async with self._session_factory() as session:
            mark = await PriceMarkRepository(session).get_latest(symbol)
        return mark.price if mark is not None else None
