"""Pytest configuration and fixtures."""

import os
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment before importing app
os.environ["TESTING"] = "1"

from trailhook.audit.models import AuditEvent
from trailhook.db.base import Base
from trailhook.db.session import get_db
from trailhook.main import app
from trailhook.webhooks.config import WebhookSettings
from trailhook.webhooks.registry import WebhookRegistry

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_SECRET = "test-secret-0123456789"


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory handed to the scheduler and dispatcher."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def webhook_settings() -> WebhookSettings:
    """Engine settings with no backoff so retries are immediately due."""
    return WebhookSettings(
        max_attempts=3,
        retry_base_delay_seconds=0,
        retry_max_delay_seconds=0,
        retry_jitter_ratio=0,
        delivery_timeout_seconds=2,
        lease_grace_seconds=1,
        worker_concurrency=2,
        poll_interval_seconds=0.01,
        batch_size=10,
    )


@pytest.fixture
def org_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest_asyncio.fixture
async def webhook(db_session: AsyncSession, org_id: uuid.UUID):
    """A webhook subscribed to user.login with a known secret."""
    created = await WebhookRegistry(db_session).create(
        org_id,
        "Primary",
        "https://hooks.example.com/trail",
        ["user.login"],
        secret=TEST_SECRET,
    )
    return created.webhook


async def record_event(
    db: AsyncSession,
    org_id: uuid.UUID,
    resource_type: str = "user",
    action: str = "login",
    created_at: datetime | None = None,
) -> AuditEvent:
    """Store an audit event directly, without waking the scheduler."""
    event = AuditEvent(
        org_id=org_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(uuid.uuid4()),
        actor_id="actor-1",
        details={"ip": "203.0.113.7"},
    )
    if created_at is not None:
        event.created_at = created_at
    db.add(event)
    await db.commit()
    return event


def mock_http_client(handler) -> httpx.AsyncClient:
    """HTTP client whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with mocked dependencies."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    # Mock Valkey client
    mock_redis = AsyncMock()
    mock_redis.rpush.return_value = 1
    mock_redis.blpop.return_value = None

    async def mock_get_valkey():
        return mock_redis

    with patch("trailhook.valkey.get_valkey", mock_get_valkey):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

    app.dependency_overrides.clear()
