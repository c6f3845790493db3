"""
Test infrastructure for the article engine.

Strategy
--------
- SQLite in-memory via aiosqlite; StaticPool keeps every task on the one
  connection that holds the in-memory database.
- ``configure_sqlite`` is applied to the test engine exactly as in
  production so SAVEPOINT retries and foreign keys behave like they do on
  PostgreSQL.
- The app's get_db dependency is overridden with the test session factory.
- Tables are created before each test and dropped after.
- Redis is disabled (``cache._redis = None``); the CacheManager treats that
  as a permanent miss.
"""
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from app.database import Base, configure_sqlite, get_db
from app.main import app
from app.cache import cache
from app.middleware import install_query_counter
from app.models import User, new_id

# ---------------------------------------------------------------------------
# Test database engine: SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

configure_sqlite(engine_test)
install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            cache.discard_deferred(session)
            raise
        await cache.apply_deferred(session)


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """A live session for service-level tests; never committed."""
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    cache._redis = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ---------------------------------------------------------------------------
# Helpers shared by several test modules
# ---------------------------------------------------------------------------

async def make_user(db: AsyncSession, username: str) -> User:
    user = User(id=new_id(), username=username, email=f"{username}@example.com")
    db.add(user)
    await db.flush()
    return user


def auth(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Token {user_id}"}


async def register(client: AsyncClient, username: str) -> tuple[str, dict[str, str]]:
    """Register *username* over HTTP and return (user id, auth headers)."""
    resp = await client.post("/api/users", json={
        "user": {"username": username, "email": f"{username}@example.com"},
    })
    assert resp.status_code == 201, resp.text
    user_id = resp.json()["user"]["id"]
    return user_id, auth(user_id)


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis`` (string values only)."""

    def __init__(self, fail: bool = False):
        self.store: dict[str, str] = {}
        self.fail = fail

    async def get(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise ConnectionError("redis down")
        self.store[key] = value

    async def delete(self, key):
        self.store.pop(key, None)

    async def aclose(self):
        pass
