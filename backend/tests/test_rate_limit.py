"""Unit tests for the per-user trailing-window rate limiter and its event log."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from app.core.errors import StoreUnavailableError
from app.core.rate_limit import RateLimiter
from app.services.event_log import EventLog

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeEventLog:
    """In-memory event log: timestamps per user."""

    def __init__(self):
        self.events: dict[str, list[datetime]] = {}
        self.calls: list[tuple[str, datetime]] = []

    def add(self, user_id: str, *stamps: datetime) -> None:
        self.events.setdefault(user_id, []).extend(stamps)

    async def count_since(self, user_id: str, since: datetime) -> int:
        self.calls.append((user_id, since))
        return sum(1 for t in self.events.get(user_id, []) if t > since)


@pytest.fixture
def event_log():
    return FakeEventLog()


@pytest.fixture
def limiter(event_log):
    return RateLimiter(event_log, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_at_limit_is_rejected_with_retry_after(limiter, event_log):
    event_log.add("u1", *[NOW - timedelta(seconds=i + 1) for i in range(5)])
    decision = await limiter.check("u1", max_requests=5, window_seconds=60)
    assert decision.allowed is False
    assert decision.retry_after == 60
    assert decision.count == 5


@pytest.mark.asyncio
async def test_below_limit_is_admitted(limiter, event_log):
    event_log.add("u1", *[NOW - timedelta(seconds=i + 1) for i in range(4)])
    decision = await limiter.check("u1", max_requests=5, window_seconds=60)
    assert decision.allowed is True
    assert decision.retry_after is None
    assert decision.count == 4


@pytest.mark.asyncio
async def test_only_events_inside_window_count(limiter, event_log):
    event_log.add("u1", *[NOW - timedelta(minutes=5)] * 10)
    event_log.add("u1", NOW - timedelta(seconds=60))  # exactly on the boundary: outside
    decision = await limiter.check("u1", max_requests=1, window_seconds=60)
    assert decision.allowed is True
    assert event_log.calls == [("u1", NOW - timedelta(seconds=60))]


@pytest.mark.asyncio
async def test_limits_are_per_identity(limiter, event_log):
    event_log.add("u1", *[NOW] * 3)
    assert (await limiter.check("u1", 3, 60)).allowed is False
    assert (await limiter.check("u2", 3, 60)).allowed is True


@pytest.mark.asyncio
async def test_retry_after_rounds_up(limiter, event_log):
    event_log.add("u1", NOW)
    decision = await limiter.check("u1", 1, 90.5)
    assert decision.retry_after == 91


@pytest.mark.asyncio
async def test_event_log_failure_fails_open(caplog):
    failing = AsyncMock()
    failing.count_since.side_effect = StoreUnavailableError("count_since timed out after 2.0s")
    limiter = RateLimiter(failing, clock=lambda: NOW)
    with caplog.at_level(logging.WARNING, logger="app.core.rate_limit"):
        decision = await limiter.check("u1", 5, 60)
    assert decision.allowed is True
    assert decision.count is None
    assert "rate limiting error" in caplog.text


@pytest.mark.asyncio
async def test_unexpected_failure_also_fails_open():
    failing = AsyncMock()
    failing.count_since.side_effect = RuntimeError("boom")
    limiter = RateLimiter(failing, clock=lambda: NOW)
    assert (await limiter.check("u1", 0, 60)).allowed is True


@pytest.mark.asyncio
async def test_event_log_counts_strictly_after(session_factory, make_user):
    user = await make_user()
    log = EventLog(session_factory, timeout=2.0)
    now = datetime.now(timezone.utc)
    await log.record(user.id, "content_view", at=now - timedelta(minutes=10))
    await log.record(user.id, "content_view", at=now - timedelta(seconds=30))
    await log.record(user.id, "login", {"session_id": "s"}, at=now - timedelta(seconds=5))
    assert await log.count_since(user.id, now - timedelta(minutes=1)) == 2
    assert await log.count_since(user.id, now - timedelta(hours=1)) == 3
    assert await log.count_since("someone-else", now - timedelta(hours=1)) == 0


@pytest.mark.asyncio
async def test_event_log_timeout_surfaces_as_store_error(session_factory):
    log = EventLog(session_factory, timeout=0.01)

    async def slow_count(user_id, since):
        await asyncio.sleep(1)
        return 0

    log._count = slow_count
    with pytest.raises(StoreUnavailableError):
        await log.count_since("u1", datetime.now(timezone.utc))
