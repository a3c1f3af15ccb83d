"""
Shared fixtures for integration tests.

All integration tests in this project MUST:
1. Use async tests with @pytest.mark.asyncio
2. Use the `client` fixture (AsyncClient) - NOT TestClient
3. Use the `test_db` fixture (AsyncSession) - NOT sync Session
4. Prefix all routes with /api/v1/

The ASGI transport does not run the app lifespan, so the provider registry
is injected through a dependency override.

Example:
    @pytest.mark.asyncio
    async def test_something(client, test_db, worker):
        response = await client.get(
            f"/api/v1/workers/{worker.id}/verifications",
            headers=get_auth_headers(worker.user_id),
        )
        assert response.status_code == 200
"""

import uuid

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.service import ADMIN_ROLE, AuthService
from app.core.config import settings
from app.core.database import Base, get_db
from app.main import app
from app.models import OnboardingStatus, Worker, WorkerStatus
from app.verification.orchestrator import build_orchestrator
from app.verification.providers import build_provider_registry
from app.verification.router import get_provider_registry


# =============================================================================
# Test Database Configuration
# =============================================================================

SQLALCHEMY_TEST_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_db():
    """
    Create a fresh async in-memory database for each test.

    Creates tables before each test and drops them afterwards.
    """
    engine = create_async_engine(
        SQLALCHEMY_TEST_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def registry():
    """Provider registry built from test settings."""
    return build_provider_registry(settings)


@pytest_asyncio.fixture
async def orchestrator(test_db, registry):
    return build_orchestrator(test_db, registry)


@pytest_asyncio.fixture
async def client(test_db, registry):
    """
    Create async test client with database and registry overrides.

    IMPORTANT: Always use `await` with client methods.
    """

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider_registry] = lambda: registry

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# =============================================================================
# API Prefix Constant
# =============================================================================

API_PREFIX = "/api/v1"


# =============================================================================
# Authentication Helpers
# =============================================================================


def get_auth_headers(user_id: str, role: str = "user") -> dict:
    """Generate JWT auth headers for a caller."""
    access_token = AuthService().create_access_token(
        data={"sub": user_id, "role": role}
    )
    return {"Authorization": f"Bearer {access_token}"}


def get_admin_headers() -> dict:
    return get_auth_headers("admin-1", role=ADMIN_ROLE)


# =============================================================================
# Test Data Helpers
# =============================================================================


async def create_worker(test_db, user_id: str = "user-1", required=None) -> Worker:
    worker = Worker(
        id=str(uuid.uuid4()),
        user_id=user_id,
        name="Test Worker",
        status=WorkerStatus.ONBOARDING_IN_PROGRESS,
        onboarding_status=OnboardingStatus.IN_PROGRESS,
        required_verification_types=required,
    )
    test_db.add(worker)
    await test_db.commit()
    await test_db.refresh(worker)
    return worker


@pytest_asyncio.fixture
async def worker(test_db):
    """Worker owned by user-1 that only requires a WWCC."""
    return await create_worker(test_db, required=["WWCC"])
