"""
Shared test fixtures: async DB, fake clock, stub geolocation, FastAPI test client.
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import analytics_api.models  # noqa: F401  (registers every table on Base.metadata)
from analytics_api.config import settings
from analytics_api.database import Base, get_db, get_session_factory
from analytics_api.deps import get_geo_resolver, get_rate_limiter
from analytics_api.main import app
from analytics_api.models.visitor_session import VisitorSession
from analytics_api.services.geolocation import GeoResolver
from analytics_api.services.rate_limiter import RateLimiter


# ── Test Database (SQLite in-memory) ────────────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"
ADMIN_TOKEN = "test-admin-token"
ADMIN_HEADERS = {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest_asyncio.fixture()
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ── Clock / limiter / geolocation ───────────────────────

class FakeClock:
    """Monotonic-style clock the test advances by hand."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter(limit=100, window_seconds=60, clock=clock)


@pytest.fixture
def geo_resolver():
    """Resolver stub: every lookup answers "BG" without touching the network."""
    resolver = MagicMock(spec=GeoResolver)
    resolver.resolve = AsyncMock(return_value="BG")
    return resolver


# ── Settings ────────────────────────────────────────────

@pytest.fixture(autouse=True)
def admin_token(monkeypatch):
    monkeypatch.setattr(settings, "admin_token", ADMIN_TOKEN)
    return ADMIN_TOKEN


# ── FastAPI client ──────────────────────────────────────

@pytest_asyncio.fixture()
async def client(session_factory, rate_limiter, geo_resolver):
    """FastAPI test client with test DB, limiter and resolver injected."""

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_geo_resolver] = lambda: geo_resolver

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Sample data ─────────────────────────────────────────

CHROME_WINDOWS_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
SAFARI_IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1_2 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)

SAMPLE_BEACON = {
    "sessionId": "3f2b8c1e-0000-4000-8000-000000000001",
    "visitorId": "a" * 32,
    "deviceType": "windows",
    "browser": "Chrome",
    "browserVersion": "120.0",
    "os": "Windows",
    "osVersion": "10/11",
    "referrer": "https://www.google.com/search?q=shop",
    "referrerCategory": "google",
    "entryPage": "/",
    "exitPage": "/",
    "pageViews": 1,
    "sessionDuration": 0,
    "isBounce": True,
    "isNewSession": True,
}


@pytest.fixture
def sample_beacon():
    return dict(SAMPLE_BEACON)


def make_session(created_at: datetime, **overrides) -> VisitorSession:
    """Session Store row with sensible dimensions; override anything."""
    fields = dict(
        session_id=overrides.pop("session_id", None) or str(uuid.uuid4()),
        visitor_id="visitor-1",
        country="BG",
        device_type="windows",
        browser="Chrome",
        os="Windows",
        referrer_category="direct",
        entry_page="/",
        exit_page="/",
        page_views=1,
        session_duration=0,
        is_bounce=True,
        last_activity=created_at,
        created_at=created_at,
    )
    fields.update(overrides)
    return VisitorSession(**fields)


@pytest.fixture
def fixed_now():
    return datetime(2026, 3, 14, 15, 30, tzinfo=timezone.utc)
