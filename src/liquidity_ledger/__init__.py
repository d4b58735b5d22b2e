"""
Liquidity Ledger.

Capital allocation and P&L ledger for subscription trading-alert portfolios.
"""

__version__ = "0.1.0"

# Configure structlog once at import time (quiet by default).
from liquidity_ledger.logging import configure_structlog

configure_structlog()

__all__ = ["__version__"]
