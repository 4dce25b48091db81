"""SessionStore: key shapes, default TTLs, miss transparency, counters."""

import pytest

from app.core.errors import CacheUnavailableError
from app.schemas.cache import SessionData
from app.services.session_store import DEACTIVATED_SESSION_TTL_SECONDS, SessionStore


@pytest.fixture
def store(cache):
    return SessionStore(cache)


def _session(user_id="u1", session_id="s1") -> SessionData:
    return SessionData(session_id=session_id, user_id=user_id, user_agent="Expo/1.0")


@pytest.mark.asyncio
async def test_session_roundtrip_uses_session_key_and_ttl(store, fake_redis):
    await store.set_session(_session())
    assert "session:u1" in fake_redis._store
    assert 86390 <= fake_redis.ttl("session:u1") <= 86400
    got = await store.get_session("u1")
    assert got is not None
    assert got.session_id == "s1"
    assert got.user_agent == "Expo/1.0"
    assert got.is_active is True


@pytest.mark.asyncio
async def test_session_is_overwritten_not_appended(store, fake_redis):
    await store.set_session(_session(session_id="first"))
    await store.set_session(_session(session_id="second"))
    assert (await store.get_session("u1")).session_id == "second"
    assert [k for k in fake_redis._store if k.startswith("session:")] == ["session:u1"]


@pytest.mark.asyncio
async def test_delete_session(store):
    await store.set_session(_session())
    await store.delete_session("u1")
    assert await store.get_session("u1") is None
    # Deleting again is fine
    await store.delete_session("u1")


@pytest.mark.asyncio
async def test_get_absent_or_expired_is_none(store, fake_redis):
    assert await store.get_session("nobody") is None
    assert await store.get_feed("nobody") is None
    await store.cache_feed("u1", [{"id": "c1"}])
    fake_redis.expire_now("user:u1:feed")
    assert await store.get_feed("u1") is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        "{not json",
        '{"version": 2, "items": []}',
        '{"items": "nope"}',
        "[]",
    ],
)
async def test_undecodable_payload_is_a_miss(store, fake_redis, payload):
    fake_redis._store["user:u1:feed"] = payload
    assert await store.get_feed("u1") is None


@pytest.mark.asyncio
async def test_feed_and_recommendation_keys_and_ttls(store, fake_redis):
    items = [{"id": "c1", "title": "Flamenco"}, {"id": "c2", "title": "Tango"}]
    await store.cache_feed("u1", items)
    await store.cache_recommendations("u1", items[:1])
    assert 3590 <= fake_redis.ttl("user:u1:feed") <= 3600
    assert 1790 <= fake_redis.ttl("user:u1:recommendations") <= 1800
    assert await store.get_feed("u1") == items
    assert await store.get_recommendations("u1") == items[:1]


@pytest.mark.asyncio
async def test_collection_is_replaced_wholesale(store):
    await store.cache_feed("u1", [{"id": "a"}, {"id": "b"}])
    await store.cache_feed("u1", [{"id": "c"}])
    assert await store.get_feed("u1") == [{"id": "c"}]


@pytest.mark.asyncio
async def test_explicit_ttl_overrides_default(store, fake_redis):
    await store.cache_feed("u1", [], ttl=60)
    assert 50 <= fake_redis.ttl("user:u1:feed") <= 60
    # An empty cached list is still a hit
    assert await store.get_feed("u1") == []


@pytest.mark.asyncio
async def test_invalidate_caches(store):
    await store.cache_feed("u1", [{"id": "a"}])
    await store.cache_recommendations("u1", [{"id": "b"}])
    await store.invalidate_feed("u1")
    await store.invalidate_recommendations("u1")
    assert await store.get_feed("u1") is None
    assert await store.get_recommendations("u1") is None


@pytest.mark.asyncio
async def test_view_counter_increments_without_expiry(store, fake_redis):
    assert await store.get_view_count("c1") == 0
    assert await store.increment_view_count("c1") == 1
    assert await store.increment_view_count("c1") == 2
    assert await store.get_view_count("c1") == 2
    assert fake_redis.ttl("content:c1:views") == -1


@pytest.mark.asyncio
async def test_deactivate_session_only_matching_id(store, fake_redis):
    await store.set_session(_session(session_id="live"))
    assert await store.deactivate_session("u1", "other") is False
    assert (await store.get_session("u1")).is_active is True
    assert await store.deactivate_session("u1", "live") is True
    got = await store.get_session("u1")
    assert got.is_active is False
    assert fake_redis.ttl("session:u1") <= DEACTIVATED_SESSION_TTL_SECONDS


@pytest.mark.asyncio
async def test_touch_session_updates_last_used(store):
    original = _session()
    await store.set_session(original)
    touched = await store.touch_session(original)
    assert touched.last_used >= original.last_used
    assert (await store.get_session("u1")).last_used == touched.last_used


@pytest.mark.asyncio
async def test_cache_outage_is_not_a_miss(store, fake_redis):
    fake_redis.fail = True
    with pytest.raises(CacheUnavailableError):
        await store.get_session("u1")


@pytest.mark.asyncio
async def test_touch_session_with_explicit_ttl(store, fake_redis):
    week = 7 * 24 * 60 * 60
    await store.set_session(_session(), ttl=week)
    await store.touch_session(await store.get_session("u1"), ttl=week)
    assert fake_redis.ttl("session:u1") >= week - 5
    # Without a ttl the namespace default applies
    await store.touch_session(await store.get_session("u1"))
    assert fake_redis.ttl("session:u1") <= 86400
