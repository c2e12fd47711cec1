"""Pytest configuration and fixtures for Compass tests."""
import os
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test env BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("PROVIDER_MAX_ATTEMPTS", "2")
# Provider keys stay empty so nothing can reach a real API
for _key in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "TAVILY_API_KEY", "ALPHA_VANTAGE_API_KEY"):
    os.environ[_key] = ""

# Clear config cache so get_settings picks up test env
from compass.config import get_settings

get_settings.cache_clear()

from compass.database import get_db, get_session_factory  # noqa: E402
from compass.main import app  # noqa: E402
from compass.models.base import Base  # noqa: E402

# Import all models so Base.metadata has all tables
import compass.models  # noqa: E402,F401

TEST_DATABASE_URL = "sqlite+aiosqlite://"

TEST_PASSWORD = "TestPass123!"


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory database per test, shared by every session of that test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Test client with the database and background session factory pointed at the test DB."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def test_user_data() -> dict:
    return {
        "email": "test@example.com",
        "password": TEST_PASSWORD,
        "full_name": "Test User",
    }


async def register_and_login(client: AsyncClient, email: str, password: str = TEST_PASSWORD) -> dict:
    await client.post(
        "/api/v1/auth/register",
        json={"email": email, "password": password, "full_name": "Test User"},
    )
    response = await client.post("/api/v1/auth/login", json={"email": email, "password": password})
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def auth_headers(client: AsyncClient, test_user_data: dict) -> dict:
    """Register a test user, log in, and return auth headers."""
    return await register_and_login(client, test_user_data["email"], test_user_data["password"])


@pytest.fixture
async def other_auth_headers(client: AsyncClient) -> dict:
    return await register_and_login(client, "someone-else@example.com")


@pytest.fixture
async def company(client: AsyncClient, auth_headers: dict) -> dict:
    response = await client.post(
        "/api/v1/companies",
        json={"name": "Acme Corp", "description": "Widgets", "website": "https://www.acme.example"},
        headers=auth_headers,
    )
    assert response.status_code == 201
    return response.json()
