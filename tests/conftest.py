"""pytest fixtures for genqueue tests.

Provides:
- database_url: Session-scoped database URL (SQLite file by default,
  testcontainer PostgreSQL when TEST_DATABASE=postgres)
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped session factory with tables created and
  truncated after each test
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- settings, storage, make_client: Pipeline collaborators
"""

import os
from typing import AsyncGenerator

# Required before genqueue.app is imported (it builds an app at import time)
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./genqueue-test.db")

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from genqueue.core.config import Settings
from genqueue.core.database import create_tables, setup_db_session
from genqueue.services.image_storage import ImageStorage
from genqueue.uow import create_uow_factory

from fakes import FakeImageClient

# Child tables first
TABLES = [
    "queue_locks",
    "generation_tags",
    "generation_queue",
    "reference_photos",
    "generations",
]


@pytest.fixture(scope="session")
def database_url(tmp_path_factory):
    """Provide the test database URL.

    SQLite file per test session by default. With TEST_DATABASE=postgres a
    PostgreSQL container starts once per session and is reused by all tests.
    """
    if os.environ.get("TEST_DATABASE") == "postgres":
        from testcontainers.postgres import PostgresContainer

        with PostgresContainer(
            image="postgres:17",
            username="test",
            password="test",
            dbname="test_genqueue",
        ) as container:
            yield container.get_connection_url(driver="psycopg")
        return

    db_path = tmp_path_factory.mktemp("db") / "genqueue.db"
    yield f"sqlite+aiosqlite:///{db_path}"


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory(database_url) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a session factory over a schema with empty tables.

    Tables are created on first use and truncated after every test.
    """
    factory = setup_db_session(database_url, pool_size=5)
    engine = factory.kw["bind"]
    await create_tables(engine)

    yield factory

    async with engine.begin() as conn:
        for table in TABLES:
            await conn.execute(text(f"DELETE FROM {table}"))
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a function-scoped database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def settings(database_url) -> Settings:
    return Settings(  # type: ignore[call-arg]
        _env_file=None,
        DATABASE_URL=database_url,
        APP_ENV="test",
        GENERATION_ASPECT_RATIO="3:4",
        GENERATION_IMAGE_SIZE="2K",
    )


@pytest.fixture
def storage(tmp_path) -> ImageStorage:
    return ImageStorage(tmp_path / "public")


@pytest.fixture
def make_client():
    """Build a FakeImageClient from scripted results."""
    return FakeImageClient
