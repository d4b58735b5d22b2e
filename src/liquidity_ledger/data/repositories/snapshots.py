"""Pool snapshot repository for data access."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select, update

from liquidity_ledger.data.models import PoolSnapshot
from liquidity_ledger.data.repositories.base import BaseRepository

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import date


class SnapshotRepository(BaseRepository[PoolSnapshot]):
    """Repository for PoolSnapshot entities."""

    model = PoolSnapshot

    async def get_for_date(self, pool: str, snapshot_date: date) -> PoolSnapshot | None:
        """Get the snapshot of a pool for one business date."""
        stmt = select(PoolSnapshot).where(
            PoolSnapshot.pool == pool, PoolSnapshot.snapshot_date == snapshot_date
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_range(
        self,
        pool: str,
        start: date | None = None,
        end: date | None = None,
    ) -> Sequence[PoolSnapshot]:
        """Get snapshots within an inclusive date range, oldest first."""
        stmt = select(PoolSnapshot).where(PoolSnapshot.pool == pool)
        if start is not None:
            stmt = stmt.where(PoolSnapshot.snapshot_date >= start)
        if end is not None:
            stmt = stmt.where(PoolSnapshot.snapshot_date <= end)
        stmt = stmt.order_by(PoolSnapshot.snapshot_date.asc())
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def get_latest_on_or_before(self, pool: str, target: date) -> PoolSnapshot | None:
        """Get the closest snapshot at or before a date."""
        stmt = (
            select(PoolSnapshot)
            .where(PoolSnapshot.pool == pool, PoolSnapshot.snapshot_date <= target)
            .order_by(PoolSnapshot.snapshot_date.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def refresh_open_day(
        self, pool: str, snapshot_date: date, values: dict[str, float | int]
    ) -> None:
        """Overwrite the valuation of the still-open business day.

        Bulk UPDATE bypasses the unit-of-work hooks that keep flushed snapshots read-only;
        callers must only pass today's business date.
        """
        stmt = (
            update(PoolSnapshot)
            .where(PoolSnapshot.pool == pool, PoolSnapshot.snapshot_date == snapshot_date)
            .values(**values)
        )
        await self._session.execute(stmt)
