# tests/conftest.py
import os

# Set up test environment variables BEFORE any other imports
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("DATABASE_URL", os.environ["TEST_DATABASE_URL"])
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-relay-tests-0123456789")
os.environ.setdefault("ADMIN_USERNAME", "admin")
os.environ.setdefault("ADMIN_PASSWORD", "admin-pass")
os.environ.setdefault("OLLAMA_HOST", "http://ollama.test")

from datetime import UTC, datetime

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from app.core.security import create_access_token, hash_password
from app.database import create_session_factory, get_db
from app.domains.chat.service import ConversationStore
from app.domains.quota.service import QuotaLedger
from app.domains.relay.model_client import OllamaClient
from app.domains.relay.services import build_relay_services, get_relay_services
from app.main import app
from app.shared.locks import KeyedLock
from models import Base, User


def ollama_tags_handler(request: httpx.Request) -> httpx.Response:
    """Mock Ollama that only knows how to list models."""
    if request.url.path == "/api/tags":
        return httpx.Response(200, json={"models": [{"name": "llama2"}, {"name": "mistral"}]})
    return httpx.Response(404, json={"error": "not found"})


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """A throwaway SQLite database per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}", poolclass=NullPool, echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest_asyncio.fixture
async def test_db(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def locks():
    return KeyedLock()


@pytest.fixture
def ledger(session_factory, locks):
    return QuotaLedger(session_factory, locks, reset_hour=0, reset_minute=0)


@pytest.fixture
def store(session_factory, locks):
    return ConversationStore(session_factory, locks, title_length=50)


async def _make_user(db, username, password="secret", max_tokens=100, used=0, **extra):
    user = User(
        username=username,
        password_hash=hash_password(password),
        max_tokens=max_tokens,
        tokens_used_today=used,
        personal_prompt=extra.pop("personal_prompt", ""),
        quota_reset_at=extra.pop("quota_reset_at", datetime.now(UTC)),
        **extra,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


# User fixtures
@pytest_asyncio.fixture
async def test_user(test_db):
    """Create a test user with a cap of 100 tokens."""
    return await _make_user(test_db, "alice")


@pytest_asyncio.fixture
async def test_user_2(test_db):
    """Create a second test user."""
    return await _make_user(test_db, "bob", password="hunter2", max_tokens=50)


@pytest.fixture
def make_user(test_db):
    async def _factory(username, **kwargs):
        return await _make_user(test_db, username, **kwargs)

    return _factory


@pytest.fixture
def auth_token(test_user):
    return create_access_token(test_user.username)


@pytest_asyncio.fixture
async def relay_services(session_factory):
    services = build_relay_services(
        session_factory,
        model_client=OllamaClient(transport=httpx.MockTransport(ollama_tags_handler)),
    )
    yield services
    await services.aclose()


@pytest_asyncio.fixture
async def client(session_factory, relay_services):
    """Create a test client with database and relay service overrides."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_relay_services] = lambda: relay_services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def authenticated_client(client, auth_token):
    """Client that sends a bearer token for the test user."""
    client.headers["Authorization"] = f"Bearer {auth_token}"
    yield client


@pytest.fixture
def admin_auth():
    return ("admin", "admin-pass")
