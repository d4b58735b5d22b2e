"""Pool repository for data access."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from liquidity_ledger.data.models import Pool
from liquidity_ledger.data.repositories.base import BaseRepository
from liquidity_ledger.exceptions import PoolNotFoundError

if TYPE_CHECKING:
    from collections.abc import Sequence


class PoolRepository(BaseRepository[Pool]):
    """Repository for Pool entities (primary key is the pool name)."""

    model = Pool

    async def require(self, name: str) -> Pool:
        """Get a pool by name or raise `PoolNotFoundError`."""
        pool = await self.get(name)
        if pool is None:
            raise PoolNotFoundError(name)
        return pool

    async def list_names(self) -> Sequence[str]:
        """Names of all created pools, sorted."""
        result = await self._session.execute(select(Pool.name).order_by(Pool.name))
        return result.scalars().all()
