"""Price sources consumed by the valuator."""

from liquidity_ledger.prices.base import PriceSource, fetch_price, price_or_fallback
from liquidity_ledger.prices.sources import DatabasePriceSource, StaticPriceSource

__all__ = [
    "DatabasePriceSource",
    "PriceSource",
    "StaticPriceSource",
    "fetch_price",
    "price_or_fallback",
]
