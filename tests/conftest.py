"""
Shared fixtures: in-memory SQLite, a fake provider context, and an API client.
"""

import os

# Settings are read on first import, so the environment must be in place before that
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SERVICES_API_KEY"] = "test-key"
os.environ["RECONCILE_SCHEDULE_ENABLED"] = "false"

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from agent_services.db import init_db, drop_db, async_session_maker
from agent_services.services.context import ServiceContext
from fakes import API_KEY, make_context


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Create a fresh database for each test"""
    await init_db()
    yield
    await drop_db()


@pytest_asyncio.fixture
async def db_session():
    """Get a database session"""
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def ctx() -> ServiceContext:
    return make_context()


@pytest_asyncio.fixture
async def client(ctx: ServiceContext):
    """API client wired to the fake provider context"""
    from agent_services.api.deps import get_context
    from agent_services.main import app

    app.dependency_overrides[get_context] = lambda: ctx
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {API_KEY}"},
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
