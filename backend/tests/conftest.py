"""Shared fixtures: in-memory SQLite schema, fake providers and a fake clock."""

import os

# Settings are cached on first import; point them at test values first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SYNC_WEBHOOK_SECRET"] = ""

from datetime import datetime, timezone
from typing import Optional

import fakeredis.aioredis
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from database import get_db, get_session_factory
from middleware.rate_limit import limiter
from models import Base
from services.providers import get_registry
from services.providers.base import ProviderData, ProviderRegistry
from services.run_store import RunStore


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


def build_provider_data(
    account_id: str = "UC-creator",
    username: Optional[str] = "creator",
    followers: int = 1000,
    total_views: int = 10000,
    total_likes: int = 500,
    total_comments: int = 100,
    media: Optional[list[dict]] = None,
    metadata: Optional[dict] = None,
    synced_at: Optional[datetime] = None,
) -> ProviderData:
    return ProviderData.model_validate(
        {
            "account": {
                "account_id": account_id,
                "username": username,
                "display_name": username.title() if username else None,
                "profile_url": f"https://example.com/{username}" if username else None,
                "stats": {
                    "followers": followers,
                    "total_views": total_views,
                    "total_likes": total_likes,
                    "total_comments": total_comments,
                },
                "metadata": metadata or {},
                "last_synced_at": synced_at or datetime.now(timezone.utc),
            },
            "media": media or [],
        }
    )


@pytest.fixture
def provider_data():
    """Factory for ProviderData payloads."""
    return build_provider_data


@pytest.fixture
def make_registry():
    """Build a registry from async callables keyed by platform."""

    def _make(**fetchers) -> ProviderRegistry:
        return ProviderRegistry(fetchers)

    return _make


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps."""

    def __init__(self):
        self.now = 1000.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def fake_redis():
    """Point RunStore at an isolated in-memory Redis."""
    RunStore._pool = fakeredis.aioredis.FakeRedis(
        server=fakeredis.FakeServer(),
        decode_responses=True,
    )
    yield RunStore._pool
    await RunStore.close()


@pytest.fixture
def registry():
    """Empty registry used by the API client; tests register fetchers on it."""
    return ProviderRegistry()


@pytest.fixture
async def client(session_factory, registry, fake_redis):
    """HTTP client against the app, wired to the test database and registry."""
    from main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_registry] = lambda: registry
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    limiter.enabled = True
