"""Price source contract and the bounded lookup used by the valuator."""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog

from liquidity_ledger.exceptions import PriceUnavailableError

logger = structlog.get_logger()


class PriceSource(Protocol):
    """Anything that can quote the current price of a symbol."""

    async def get_current_price(self, symbol: str) -> float | None:
        """Return the latest price, or None when the symbol has no quote."""
        ...


async def fetch_price(source: PriceSource, symbol: str, timeout_seconds: float) -> float:
    """Fetch one quote, bounded by a timeout.

    Raises:
        PriceUnavailableError: On timeout, source failure, a missing quote, or a
            non-positive price.
    """
    try:
        price = await asyncio.wait_for(source.get_current_price(symbol), timeout=timeout_seconds)
    except TimeoutError:
        raise PriceUnavailableError(symbol, f"timed out after {timeout_seconds:g}s") from None
    except PriceUnavailableError:
        raise
    except Exception as e:
        raise PriceUnavailableError(symbol, f"source error: {e}") from e

    if price is None:
        raise PriceUnavailableError(symbol, "no quote")
    if not price > 0:
        raise PriceUnavailableError(symbol, f"invalid quote {price}")
    return float(price)


async def price_or_fallback(
    source: PriceSource, symbol: str, fallback: float, timeout_seconds: float
) -> tuple[float, bool]:
    """Quote a symbol, falling back to `fallback` (the entry price) when unavailable.

    Returns:
        (price, is_fallback)
    """
    try:
        return await fetch_price(source, symbol, timeout_seconds), False
    except PriceUnavailableError as e:
        logger.warning(
            "Price unavailable; using entry price",
            symbol=symbol,
            reason=e.reason,
            fallback=fallback,
        )
        return fallback, True
