"""Database connection management with provider-agnostic factory pattern."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from file_upload_service.config import (
    DatabaseConfig,
    PostgresStorageConfig,
    ServiceConfig,
    SqliteStorageConfig,
)
from file_upload_service.storage.models import Base


class DatabaseManager:
    """Manages database connections and sessions.

    Provider-agnostic: works with SQLite, PostgreSQL, or any SQLAlchemy-supported backend.
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_tables(self) -> None:
        """Create all tables defined in models."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> None:
        """Run a trivial query; raises if the database is unreachable."""
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session with automatic cleanup.

        Commits when the block exits normally and rolls back on any exception.
        """
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def close(self) -> None:
        """Close the database engine."""
        await self._engine.dispose()


def _create_engine_for_sqlite(config: SqliteStorageConfig) -> AsyncEngine:
    url = f"sqlite+aiosqlite:///{config.db_path}"
    return create_async_engine(
        url,
        echo=False,
        connect_args={"check_same_thread": False},
    )


def _create_engine_for_postgres(config: PostgresStorageConfig) -> AsyncEngine:
    return create_async_engine(
        config.connection_url,
        echo=False,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_pre_ping=True,
    )


def create_engine_from_config(config: DatabaseConfig) -> AsyncEngine:
    """Create the engine matching the configured database type."""
    match config:
        case SqliteStorageConfig():
            return _create_engine_for_sqlite(config)
        case PostgresStorageConfig():
            return _create_engine_for_postgres(config)
        case _:
            raise ValueError(f"Unknown database type: {type(config)}")


def create_database_manager(config: DatabaseConfig) -> DatabaseManager:
    """Create a DatabaseManager from database config."""
    engine = create_engine_from_config(config)
    return DatabaseManager(engine)


# -----------------------------------------------------------------------------
# Global instance management (set during app startup)
# -----------------------------------------------------------------------------

_database_manager: DatabaseManager | None = None


async def init_database(config: ServiceConfig) -> DatabaseManager:
    """Initialize the global database manager and create tables."""
    global _database_manager

    _database_manager = create_database_manager(config.database)
    await _database_manager.create_tables()

    return _database_manager


async def close_database() -> None:
    """Close the global database manager."""
    global _database_manager
    if _database_manager is not None:
        await _database_manager.close()
        _database_manager = None
