"""
coursegrade/database.py
Async database configuration for the course tree
"""
import os
import logging
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from dotenv import load_dotenv

from coursegrade.orm.base import Base
import coursegrade.orm  # registers all models on Base.metadata

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./coursegrade.db")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str = DATABASE_URL, **kwargs) -> AsyncEngine:
    """
    Create an async engine.

    SQLite gets foreign key enforcement switched on for every connection so
    ON DELETE CASCADE behaves as it does on PostgreSQL.
    """
    if "sqlite" in url.lower():
        engine = create_async_engine(
            url,
            echo=False,
            future=True,
            connect_args={"timeout": 30.0},
            **kwargs
        )
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    else:
        engine = create_async_engine(
            url,
            echo=False,
            future=True,
            pool_pre_ping=True,
            pool_size=20,
            max_overflow=30,
            pool_timeout=30,
            pool_recycle=3600,
            **kwargs
        )
    return engine


engine = build_engine()

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db():
    """Yield an async database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: AsyncEngine = None):
    """Create all tables that do not exist yet"""
    bind = bind or engine
    logger.info("Initializing database (%s)...", bind.url.get_backend_name())
    try:
        async with bind.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✓ Database initialization complete")
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        raise


async def close_db():
    """Close database connection"""
    await engine.dispose()
    logger.info("Database connection closed")
