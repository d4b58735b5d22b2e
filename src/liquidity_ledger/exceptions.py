"""Exceptions raised by the ledger, allocator and valuation services."""

from __future__ import annotations


class LedgerError(Exception):
    """Base exception for ledger errors."""


class ValidationError(LedgerError):
    """Malformed input or an event that would break a ledger invariant."""


class OverAllocationError(ValidationError):
    """Fills would exceed 100% of a position's participation."""

    def __init__(self, position_id: str, requested_pct: float, available_pct: float) -> None:
        self.position_id = position_id
        self.requested_pct = requested_pct
        self.available_pct = available_pct
        super().__init__(
            f"Cannot sell {requested_pct:g}% of position {position_id}: "
            f"only {available_pct:g}% remains"
        )


class InsufficientLiquidityError(LedgerError):
    """Allocation exceeds the pool's available liquidity."""

    def __init__(self, pool: str, requested: float, available: float) -> None:
        self.pool = pool
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient liquidity in pool {pool}: "
            f"requested {requested:.2f}, available {available:.2f}"
        )


class InvalidStateError(LedgerError):
    """Operation is not valid for the current position or fill status."""


class PriceUnavailableError(LedgerError):
    """No usable quote for a symbol (recoverable; callers fall back)."""

    def __init__(self, symbol: str, reason: str) -> None:
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"Price unavailable for {symbol}: {reason}")


class ConcurrencyConflictError(LedgerError):
    """Timed out waiting for a position or pool lock. Safe to retry."""

    def __init__(self, resource: str, timeout_seconds: float) -> None:
        self.resource = resource
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Timed out after {timeout_seconds:g}s waiting for lock on {resource}")


class NotFoundError(LedgerError):
    """Referenced entity does not exist."""


class PoolNotFoundError(NotFoundError):
    """Pool has not been created."""

    def __init__(self, pool: str) -> None:
        self.pool = pool
        super().__init__(f"Pool not found: {pool}")


class PositionNotFoundError(NotFoundError):
    """Position id has no OPEN event."""

    def __init__(self, position_id: str) -> None:
        self.position_id = position_id
        super().__init__(f"Position not found: {position_id}")


class FillNotFoundError(NotFoundError):
    """Fill id was never recorded."""

    def __init__(self, fill_id: str) -> None:
        self.fill_id = fill_id
        super().__init__(f"Fill not found: {fill_id}")
