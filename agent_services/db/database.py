"""Database connection and session management"""

import logging

from sqlalchemy import event, inspect
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from agent_services.config import settings
from agent_services.db.models import Base

logger = logging.getLogger(__name__)

# Create async engine
if settings.database_url.startswith("sqlite"):
    # SQLite configuration for development and tests
    engine = create_async_engine(
        settings.database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=settings.debug,
    )

    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
else:
    # PostgreSQL (long-running process, direct connection)
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
    )

# Session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncSession:
    """Dependency for getting database sessions"""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> list[str]:
    """Create the orchestrator tables that do not exist yet.

    Safe to run on every start-up. Returns the names of the tables created.
    """
    created: list[str] = []

    def _migrate(sync_conn) -> None:
        for table in Base.metadata.sorted_tables:
            if inspect(sync_conn).has_table(table.name):
                logger.info("[migrate] %s table already exists.", table.name)
                continue
            logger.info("[migrate] Creating %s table...", table.name)
            table.create(sync_conn)
            created.append(table.name)

    async with engine.begin() as conn:
        await conn.run_sync(_migrate)
    return created


async def drop_db():
    """Drop all database tables (for testing)"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
