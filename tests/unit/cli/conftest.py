from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _isolate_ledger_env(monkeypatch: pytest.MonkeyPatch) -> None:
    names = ("LEDGER_DB_PATH", "LEDGER_PRICE_TIMEOUT", "LEDGER_LOCK_TIMEOUT", "LEDGER_TIMEZONE")
    for name in names:
        monkeypatch.delenv(name, raising=False)
