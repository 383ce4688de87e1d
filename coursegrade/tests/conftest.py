"""
Shared fixtures: a fresh SQLite database per test.
"""
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursegrade.config.weight_settings import TopicSharePolicy, WeightSettings
from coursegrade.database import build_engine, init_db


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'coursegrade_test.db'}"


@pytest.fixture
async def db_engine(database_url):
    engine = build_engine(database_url)
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(db_engine) -> AsyncSession:
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> WeightSettings:
    return WeightSettings()


@pytest.fixture
def equal_settings() -> WeightSettings:
    return WeightSettings(topic_share_policy=TopicSharePolicy.EQUAL)
