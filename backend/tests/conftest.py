"""
Guardian Angel - Test Fixtures
==============================

Shared pytest fixtures for all tests.
"""

from collections.abc import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from passlib.hash import bcrypt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from guardian.api.deps import create_access_token
from guardian.api.main import app
from guardian.core.database import Base, get_db
from guardian.core.models import User
from guardian.core.timeline import EngineRegistry


# ==========================================================================
# Test Database Setup
# ==========================================================================

# Use in-memory SQLite for tests (fast)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ==========================================================================
# Database Fixtures
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a clean database session for each test.

    Each test gets its own in-memory database, created and disposed on the
    test's event loop.
    """
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide test HTTP client with database override and a fresh engine
    registry.
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.engines = EngineRegistry()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ==========================================================================
# User Fixtures
# ==========================================================================

async def _make_user(db: AsyncSession, email: str, password: str, name: str, is_active: bool = True) -> User:
    user = User(
        id=uuid4(),
        email=email,
        password_hash=bcrypt.hash(password),
        name=name,
        is_active=is_active,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """
    Create a test user.

    Password: TestPass123!
    """
    return await _make_user(db_session, "test@example.com", "TestPass123!", "Test User")


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    """A second user, for ownership checks."""
    return await _make_user(db_session, "other@example.com", "OtherPass123!", "Other User")


@pytest_asyncio.fixture
async def inactive_user(db_session: AsyncSession) -> User:
    """Create an inactive test user."""
    return await _make_user(
        db_session, "inactive@example.com", "TestPass123!", "Inactive User", is_active=False
    )


# ==========================================================================
# Auth Fixtures
# ==========================================================================

@pytest.fixture
def auth_headers(test_user: User) -> dict[str, str]:
    """Get authorization headers for test user."""
    token = create_access_token(test_user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_headers(other_user: User) -> dict[str, str]:
    token = create_access_token(other_user.id)
    return {"Authorization": f"Bearer {token}"}


# ==========================================================================
# Snapshot Fixtures
# ==========================================================================

@pytest.fixture
def branching_snapshot() -> dict:
    """
    Root action -> decision with two branches; the decision has chosen
    "fast" twice and "slow" once.
    """
    return {
        "nodes": {
            "root": {
                "id": "root",
                "title": "Wake up",
                "kind": "action",
                "children": ["choice"],
                "parentId": None,
                "defaultDurationMs": 1500,
                "durationsMs": [1000, 2000],
                "createdAt": 1700000000000,
            },
            "choice": {
                "id": "choice",
                "title": "Breakfast?",
                "kind": "decision",
                "children": ["fast", "slow"],
                "parentId": "root",
                "chosenChildIds": ["fast", "slow", "fast"],
                "createdAt": 1700000001000,
            },
            "fast": {
                "id": "fast",
                "title": "Coffee",
                "kind": "action",
                "children": [],
                "parentId": "choice",
                "defaultDurationMs": 300000,
                "createdAt": 1700000002000,
            },
            "slow": {
                "id": "slow",
                "title": "Full breakfast",
                "kind": "action",
                "children": [],
                "parentId": "choice",
                "defaultDurationMs": 1800000,
                "createdAt": 1700000003000,
            },
        },
        "rootId": "root",
        "lastEdited": 1700000004000,
    }
