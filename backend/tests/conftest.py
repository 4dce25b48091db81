"""Pytest configuration and shared fixtures for API tests."""

import os
import time

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Configure before app imports so settings/engine pick it up
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("REFRESH_SECRET_KEY", "test-refresh-secret-key")
os.environ.setdefault("IP_RATE_LIMIT", "10000/minute")
os.environ.setdefault("APP_ENV", "test")

from app.core import background
from app.core.auth import hash_password
from app.db.session import init_db
from app.main import app, configure_services
from app.models.user import User
from app.services.cache import CacheClient

TEST_PASSWORD = "password123"


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis covering the commands CacheClient uses."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._expires: dict[str, float] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("Connection refused")

    def _purge(self, key: str) -> None:
        deadline = self._expires.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self._store.pop(key, None)
            self._expires.pop(key, None)

    async def ping(self):
        self._check()
        return True

    async def get(self, key: str):
        self._check()
        self._purge(key)
        return self._store.get(key)

    async def set(self, key: str, value, ex: int | None = None):
        self._check()
        self._store[key] = str(value)
        if ex is None:
            self._expires.pop(key, None)
        else:
            self._expires[key] = time.monotonic() + ex
        return True

    async def delete(self, *keys: str):
        self._check()
        removed = 0
        for key in keys:
            self._purge(key)
            if self._store.pop(key, None) is not None:
                removed += 1
            self._expires.pop(key, None)
        return removed

    async def incr(self, key: str):
        self._check()
        self._purge(key)
        value = int(self._store.get(key, "0")) + 1
        self._store[key] = str(value)
        return value

    async def exists(self, *keys: str):
        self._check()
        count = 0
        for key in keys:
            self._purge(key)
            count += key in self._store
        return count

    def ttl(self, key: str) -> int:
        """Seconds left (test helper, synchronous): -1 no expiry, -2 missing."""
        self._purge(key)
        if key not in self._store:
            return -2
        deadline = self._expires.get(key)
        if deadline is None:
            return -1
        return int(round(deadline - time.monotonic()))

    def expire_now(self, key: str) -> None:
        self._expires[key] = time.monotonic() - 1

    async def aclose(self):
        pass


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return CacheClient(fake_redis)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh SQLite database per test with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await background.drain(1.0)
    await engine.dispose()


@pytest_asyncio.fixture
async def test_app(cache, session_factory):
    configure_services(app, cache, session_factory)
    yield app
    await background.drain(1.0)


@pytest_asyncio.fixture
async def client(test_app):
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac


async def _create_user(session_factory, **overrides) -> User:
    fields = {
        "email": "test@test.com",
        "username": "tester",
        "password_hash": hash_password(TEST_PASSWORD),
        "is_verified": False,
        "is_active": True,
    }
    fields.update(overrides)
    async with session_factory() as session:
        user = User(**fields)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


@pytest_asyncio.fixture
async def test_user(session_factory):
    return await _create_user(session_factory)


@pytest.fixture
def make_user(session_factory):
    """Factory for extra users: `await make_user(email=..., username=..., is_active=False)`."""

    async def factory(**overrides) -> User:
        return await _create_user(session_factory, **overrides)

    return factory


@pytest.fixture
def token_pair(test_app, test_user):
    return test_app.state.tokens.issue(test_user.id)


@pytest.fixture
def auth_headers(token_pair):
    """Return dict of Authorization header for test_user."""
    return {"Authorization": f"Bearer {token_pair.access_token}"}
