"""Runtime configuration for the ledger services."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from liquidity_ledger.paths import DEFAULT_DB_PATH

DEFAULT_PRICE_TIMEOUT_SECONDS = 2.0
DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0
# Business day boundary for daily snapshots (the desk operates on Uruguay time).
DEFAULT_TIMEZONE = "America/Montevideo"


def _positive_float(name: str, raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive (got {raw!r})")
    return value


@dataclass(frozen=True)
class LedgerConfig:
    """Configuration shared by the allocator, valuator and snapshot services."""

    db_path: Path = DEFAULT_DB_PATH
    price_timeout_seconds: float = DEFAULT_PRICE_TIMEOUT_SECONDS
    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    timezone: str = DEFAULT_TIMEZONE

    def __post_init__(self) -> None:
        if self.price_timeout_seconds <= 0:
            raise ValueError("price_timeout_seconds must be positive")
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {self.timezone!r}") from None

    @property
    def tzinfo(self) -> ZoneInfo:
        """Timezone used to derive business dates."""
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls) -> LedgerConfig:
        """Load configuration from environment variables.

        Optional:
            LEDGER_DB_PATH: SQLite database path (default: data/ledger.db)
            LEDGER_PRICE_TIMEOUT: Price lookup timeout in seconds (default: 2)
            LEDGER_LOCK_TIMEOUT: Position/pool lock wait in seconds (default: 5)
            LEDGER_TIMEZONE: IANA timezone for business dates (default: America/Montevideo)
        """
        return cls(
            db_path=Path(os.environ.get("LEDGER_DB_PATH", str(DEFAULT_DB_PATH))),
            price_timeout_seconds=_positive_float(
                "LEDGER_PRICE_TIMEOUT",
                os.environ.get("LEDGER_PRICE_TIMEOUT", str(DEFAULT_PRICE_TIMEOUT_SECONDS)),
            ),
            lock_timeout_seconds=_positive_float(
                "LEDGER_LOCK_TIMEOUT",
                os.environ.get("LEDGER_LOCK_TIMEOUT", str(DEFAULT_LOCK_TIMEOUT_SECONDS)),
            ),
            timezone=os.environ.get("LEDGER_TIMEZONE", DEFAULT_TIMEZONE),
        )
