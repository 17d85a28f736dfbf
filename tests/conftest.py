"""Shared fixtures for Guardian tests.

Uses SQLite (aiosqlite) by default; no PostgreSQL required.
Set TEST_DATABASE_URL to override (e.g. for CI with real PostgreSQL).
"""

import os
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")

# Ensure settings can be loaded without .env
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-unit-tests")

from guardian.database import Base, make_engine, make_sessionmaker  # noqa: E402

API = "/api/v1"
PASSWORD = "testpassword123"

# ---------------------------------------------------------------------------
# Engine: SQLite in-memory with StaticPool (shared across connections)
# ---------------------------------------------------------------------------

_engine = make_engine(TEST_DATABASE_URL)
_TestSession = make_sessionmaker(_engine)


# ---------------------------------------------------------------------------
# Session-scoped: create / drop tables
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(scope="session", autouse=True)
async def _setup_tables():
    import guardian.models  # noqa: F401 (populate Base.metadata)

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await _engine.dispose()


# ---------------------------------------------------------------------------
# Reset rate-limiter counters before every test
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_rate_limits():
    """Clear in-memory rate-limit counters so tests never block each other."""
    from guardian.core.rate_limit import limiter

    storage = getattr(limiter, "_storage", None)
    if storage is not None and hasattr(storage, "reset"):
        storage.reset()


# ---------------------------------------------------------------------------
# Per-test session with rollback
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def db_session():
    async with _TestSession() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# HTTP test client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def client(db_session: AsyncSession):
    from guardian.database import get_db
    from guardian.main import app

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Users created directly through the ORM (service tests)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def make_user(db_session: AsyncSession):
    """Factory: ``await make_user(UserRole.PARENT)`` returns a flushed User."""
    from guardian.core.security import get_password_hash
    from guardian.models.enums import UserRole
    from guardian.models.user import User

    async def _make(*roles: UserRole, name: str = "Test User") -> User:
        user = User(
            id=uuid.uuid4(),
            email=f"user-{uuid.uuid4().hex[:8]}@test.de",
            password_hash=get_password_hash(PASSWORD),
            name=name,
            roles=set(roles) or {UserRole.PARENT},
        )
        db_session.add(user)
        await db_session.flush()
        return user

    return _make


# ---------------------------------------------------------------------------
# Users registered through the API
# ---------------------------------------------------------------------------

async def register_and_login(client: AsyncClient, role: str = "PARENT", name: str = "Test Eltern") -> dict:
    """Register a user with ``role`` and log in.

    Keys: headers, user_id, email, access_token
    """
    email = f"{role.lower()}-{uuid.uuid4().hex[:8]}@test.de"
    resp = await client.post(f"{API}/auth/register", json={
        "email": email,
        "password": PASSWORD,
        "name": name,
        "role": role,
    })
    assert resp.status_code == 201, resp.text

    resp = await client.post(f"{API}/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200, resp.text
    data = resp.json()
    return {
        "headers": {"Authorization": f"Bearer {data['access_token']}"},
        "user_id": data["user_id"],
        "email": email,
        "access_token": data["access_token"],
    }


@pytest_asyncio.fixture()
async def registered_parent(client: AsyncClient) -> dict:
    return await register_and_login(client, "PARENT")


@pytest_asyncio.fixture()
async def child_of_parent(client: AsyncClient, registered_parent: dict) -> dict:
    """A child with PIN 1234 whose primary guardian is ``registered_parent``."""
    resp = await client.post(f"{API}/children/", headers=registered_parent["headers"], json={
        "name": "Mia",
        "birth_date": "2018-04-01",
        "gender": "FEMALE",
        "pin": "1234",
    })
    assert resp.status_code == 201, resp.text
    return resp.json()
