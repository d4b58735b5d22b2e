"""Shared enumerations and numeric tolerances for the ledger domain."""

from __future__ import annotations

from enum import Enum

# Tolerance used when comparing participation percentages and money amounts.
EPSILON = 1e-6

FULL_PARTICIPATION_PCT = 100.0


class PoolName(str, Enum):
    """Capital pools (one per product line)."""

    TRADER_CALL = "TraderCall"
    SMART_MONEY = "SmartMoney"


class Side(str, Enum):
    """Direction of the alert that opened a position."""

    BUY = "BUY"
    SELL = "SELL"

    @property
    def sign(self) -> int:
        """+1 when price increases are gains, -1 when they are losses."""
        return 1 if self is Side.BUY else -1


class PositionStatus(str, Enum):
    """Lifecycle of a position."""

    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"
    DISCARDED = "DISCARDED"


class FillState(str, Enum):
    """Lifecycle of a fill (partial or full sale)."""

    PENDING = "PENDING"
    EXECUTED = "EXECUTED"
    DISCARDED = "DISCARDED"


class EventType(str, Enum):
    """Kinds of ledger events.

    OPEN allocates capital; AMEND corrects the OPEN data; FILL records a sale (pending when it
    carries only a price range); FILL_CONFIRMED executes a pending fill; FILL_DISCARDED voids a
    fill; CLOSE releases the remaining allocation at cost; DISCARD voids a position that never
    sold anything.
    """

    OPEN = "OPEN"
    AMEND = "AMEND"
    FILL = "FILL"
    FILL_CONFIRMED = "FILL_CONFIRMED"
    FILL_DISCARDED = "FILL_DISCARDED"
    CLOSE = "CLOSE"
    DISCARD = "DISCARD"
