from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from liquidity_ledger.clock import as_utc, business_date, end_of_business_day, utc_now

MONTEVIDEO = ZoneInfo("America/Montevideo")


def test_utc_now_is_aware() -> None:
    assert utc_now().tzinfo is UTC


def test_as_utc_treats_naive_as_utc() -> None:
    naive = datetime(2026, 3, 10, 12, 0)

    assert as_utc(naive) == datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def test_as_utc_converts_offsets() -> None:
    local = datetime(2026, 3, 10, 9, 0, tzinfo=timezone(timedelta(hours=-3)))

    assert as_utc(local) == datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
    assert as_utc(local).tzinfo is UTC


def test_business_date_uses_business_timezone() -> None:
    # 01:30 UTC is still the previous evening in Montevideo (UTC-3).
    moment = datetime(2026, 3, 11, 1, 30, tzinfo=UTC)

    assert business_date(moment, MONTEVIDEO) == date(2026, 3, 10)
    assert business_date(moment, ZoneInfo("UTC")) == date(2026, 3, 11)


def test_end_of_business_day() -> None:
    end = end_of_business_day(date(2026, 3, 10), MONTEVIDEO)

    assert end == datetime(2026, 3, 11, 2, 59, 59, 999999, tzinfo=UTC)
    assert business_date(end, MONTEVIDEO) == date(2026, 3, 10)
    assert business_date(end + timedelta(microseconds=1), MONTEVIDEO) == date(2026, 3, 11)
