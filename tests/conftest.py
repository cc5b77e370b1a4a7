import json
from typing import AsyncGenerator, Awaitable, Callable
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.main import app
from app.database import Base, get_db
from app.core.redis import get_redis
from app.core.security import create_access_token
from app.models import Profile

# Test database URL (use SQLite for simplicity or PostgreSQL)
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

# Create test engine
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    poolclass=NullPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory(db_session: AsyncSession) -> async_sessionmaker:
    """Session factory for tests that need several independent sessions."""
    return TestSessionLocal


class MockRedisClient:
    """Mock Redis client that records published messages."""

    def __init__(self):
        self.published = []

    async def publish(self, channel: str, message: str):
        self.published.append((channel, message))
        return 0

    async def publish_json(self, channel: str, value):
        return await self.publish(channel, json.dumps(value, default=str))

    def events(self, event_type: str = None) -> list[dict]:
        decoded = [json.loads(message) for _, message in self.published]
        if event_type is None:
            return decoded
        return [event for event in decoded if event["type"] == event_type]


@pytest.fixture
def mock_redis() -> MockRedisClient:
    """Create a mock Redis client."""
    return MockRedisClient()


ProfileFactory = Callable[..., Awaitable[Profile]]


@pytest.fixture
def make_profile(db_session: AsyncSession) -> ProfileFactory:
    """Factory for profiles; the auth service owns accounts, so tests insert directly."""

    async def factory(username: str, is_private: bool = False, **fields) -> Profile:
        profile = Profile(username=username, is_private=is_private, **fields)
        db_session.add(profile)
        await db_session.commit()
        return profile

    return factory


@pytest.fixture
async def alice(make_profile: ProfileFactory) -> Profile:
    return await make_profile("alice", display_name="Alice", bio="Hello from Alice")


@pytest.fixture
async def bob(make_profile: ProfileFactory) -> Profile:
    return await make_profile("bob", display_name="Bob")


@pytest.fixture
async def carol(make_profile: ProfileFactory) -> Profile:
    return await make_profile("carol", display_name="Carol")


@pytest.fixture
def auth_headers() -> Callable[[Profile], dict]:
    """Bearer headers for a profile, signed like the auth service signs them."""

    def build(profile: Profile) -> dict:
        token = create_access_token({"sub": str(profile.id)})
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture
async def client(db_session: AsyncSession, mock_redis: MockRedisClient) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with overridden dependencies."""

    async def override_get_db():
        yield db_session

    async def override_get_redis():
        return mock_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
