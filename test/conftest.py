"""
Shared fixtures: a fresh file-backed SQLite database per test.
"""

import pytest_asyncio
import httpx

from deploytrack.config import Settings
from deploytrack.database import Database, DeploymentRepository, AutoDeployRuleRepository
from deploytrack.main import create_app

WEBHOOK_SECRET = "test-webhook-secret"


@pytest_asyncio.fixture(scope="function")
async def database(tmp_path):
    """Create a test database with all tables (fresh for each test)"""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'deploytrack.db'}")
    await db.open()
    await db.create_all()
    yield db
    await db.close()


@pytest_asyncio.fixture(scope="function")
async def db_session(database):
    async with database.session() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def repo(db_session):
    return DeploymentRepository(db_session)


@pytest_asyncio.fixture(scope="function")
async def rules(db_session):
    return AutoDeployRuleRepository(db_session)


@pytest_asyncio.fixture(scope="function")
async def client(database):
    """HTTP client bound to an app that shares the test database"""
    settings = Settings()
    settings.github_webhook_secret = WEBHOOK_SECRET
    settings.environment = "test"
    app = create_app(settings=settings, database=database)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client
