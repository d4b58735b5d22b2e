"""Database connection management for ledger storage."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from liquidity_ledger.data.models import Base
from liquidity_ledger.paths import DEFAULT_DB_PATH

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

MEMORY_DB = ":memory:"


class DatabaseManager:
    """
    Async database connection manager for SQLite.

    Handles connection pooling, session management, and schema creation.
    """

    def __init__(
        self,
        db_path: str | Path = DEFAULT_DB_PATH,
        echo: bool = False,
    ) -> None:
        """
        Initialize database manager.

        Args:
            db_path: Path to SQLite database file (or ":memory:")
            echo: Whether to echo SQL statements (for debugging)
        """
        self._in_memory = str(db_path) == MEMORY_DB
        self._db_path = Path(db_path)
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the async engine."""
        if self._engine is None:
            if self._in_memory:
                url = "sqlite+aiosqlite:///:memory:"
            else:
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
                url = f"sqlite+aiosqlite:///{self._db_path}"

            self._engine = create_async_engine(
                url,
                echo=self._echo,
                connect_args={"check_same_thread": False},
            )

            @event.listens_for(self._engine.sync_engine, "connect")
            def set_sqlite_pragma(dbapi_connection: Any, _connection_record: Any) -> None:
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                if not self._in_memory:
                    cursor.execute("PRAGMA journal_mode=WAL")
                cursor.close()

        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        return self._session_factory

    async def create_tables(self) -> None:
        """Create all database tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Close the database connection."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    async def __aenter__(self) -> DatabaseManager:
        """Enter async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Exit async context manager."""
        await self.close()
