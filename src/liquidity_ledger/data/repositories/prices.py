"""Price mark repository for data access."""

from __future__ import annotations

from sqlalchemy import func, select

from liquidity_ledger.data.models import PriceMark
from liquidity_ledger.data.repositories.base import BaseRepository


class PriceMarkRepository(BaseRepository[PriceMark]):
    """Repository for PriceMark entities."""

    model = PriceMark

    async def get_latest(self, symbol: str) -> PriceMark | None:
        """Get the most recent mark for a symbol."""
        stmt = (
            select(PriceMark)
            .where(PriceMark.symbol == symbol.upper())
            .order_by(PriceMark.marked_at.desc(), PriceMark.id.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_latest_batch(self, symbols: list[str]) -> dict[str, PriceMark]:
        """Get the most recent mark for multiple symbols."""
        wanted = [s.upper() for s in symbols]
        subq = (
            select(
                PriceMark.symbol,
                func.max(PriceMark.id).label("max_id"),
            )
            .where(PriceMark.symbol.in_(wanted))
            .group_by(PriceMark.symbol)
            .subquery()
        )
        stmt = select(PriceMark).join(subq, PriceMark.id == subq.c.max_id)
        result = await self._session.execute(stmt)
        return {mark.symbol: mark for mark in result.scalars().all()}
