"""Service test fixtures — async DB, quote services and FastAPI test client.

Invariants:
    - Every test gets a fresh in-memory SQLite database
    - get_db dependency overridden to use the test session factory
    - app.state carries a db_manager and a QuoteServices container built over
      the test engine, MemoryStorage and a FakeForwarder (the lifespan never
      runs under ASGITransport)

Design Decisions:
    - SQLite in-memory with StaticPool: one connection shared by every session,
      so background tasks and the test see the same database
    - Retry delay 3600s in the app container: route tests assert what was
      queued, never wait for a timer
"""

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncSession, create_async_engine, async_sessionmaker,
)
from sqlalchemy.pool import StaticPool
from httpx import ASGITransport, AsyncClient

from quotedesk.config import Settings
from quotedesk.db.base import Base
from quotedesk.infrastructure.database import get_db, DatabaseSessionManager
from quotedesk.infrastructure.key_value_storage import MemoryStorage
from quotedesk.main import app
import quotedesk.models  # noqa: F401
from quotedesk.services.wiring import build_services

from tests.fakes import FakeForwarder


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def db_manager(test_engine, test_session_factory):
    return DatabaseSessionManager.from_session_factory(
        test_engine, test_session_factory,
    )


@pytest.fixture
def forwarder():
    return FakeForwarder()


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        queue_storage="memory",
        retry_delay_seconds=3600,
        admin_api_key=None,
        _env_file=None,
    )


@pytest.fixture
async def services(settings, db_manager, forwarder):
    services = build_services(
        settings, db_manager, storage=MemoryStorage(), forwarder=forwarder,
    )
    yield services
    await services.scheduler.shutdown()


@pytest.fixture
async def client(test_session_factory, db_manager, services):
    """FastAPI test client with DB dependency and app.state overridden."""
    async def override_get_db():
        async with test_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.db_manager = db_manager
    app.state.services = services

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
    del app.state.db_manager
    del app.state.services
