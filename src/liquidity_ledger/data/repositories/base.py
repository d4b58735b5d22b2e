"""Base repository class with common CRUD operations."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar

from liquidity_ledger.data.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """
    Generic repository providing common read/insert operations.

    Type parameter T should be a SQLAlchemy model class.
    """

    model: type[T]

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with a database session."""
        self._session = session

    @property
    def session(self) -> AsyncSession:
        """Session this repository reads and writes through."""
        return self._session

    async def get(self, pk: Any) -> T | None:
        """Get a single entity by primary key."""
        return await self._session.get(self.model, pk)

    async def add(self, entity: T, *, flush: bool = True) -> T:
        """Add a new entity.

        Args:
            entity: Entity to add.
            flush: Flush the session immediately (default: True).

        Note:
            For SQLite, primary keys are populated on flush.
        """
        self._session.add(entity)
        if flush:
            await self._session.flush()
        return entity

    async def add_many(self, entities: list[T], *, flush: bool = True) -> list[T]:
        """Add multiple entities."""
        self._session.add_all(entities)
        if flush:
            await self._session.flush()
        return entities
