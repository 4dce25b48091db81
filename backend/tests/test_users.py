"""Users router: verified-only access to the cached feed and recommendations."""

import pytest
import pytest_asyncio
from httpx import AsyncClient

from app.api.deps import get_request_user, require_verified
from app.core.errors import AuthError


@pytest.mark.asyncio
async def test_feed_requires_verified_email(client: AsyncClient, auth_headers):
    resp = await client.get("/api/v1/users/me/feed", headers=auth_headers)
    assert resp.status_code == 403
    assert resp.json()["code"] == "VERIFICATION_REQUIRED"


@pytest.mark.asyncio
async def test_feed_requires_token(client: AsyncClient):
    resp = await client.get("/api/v1/users/me/feed")
    assert resp.status_code == 401
    assert resp.json()["code"] == "TOKEN_MISSING"


@pytest_asyncio.fixture
async def verified_headers(test_app, make_user):
    user = await make_user(email="v@test.com", username="verified", is_verified=True)
    token = test_app.state.tokens.issue(user.id).access_token
    return user, {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_feed_miss_then_hit(client: AsyncClient, test_app, verified_headers):
    user, headers = verified_headers
    resp = await client.get("/api/v1/users/me/feed", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"items": [], "cached": False}

    await test_app.state.sessions.cache_feed(user.id, [{"id": "c1"}])
    resp = await client.get("/api/v1/users/me/feed", headers=headers)
    assert resp.json() == {"items": [{"id": "c1"}], "cached": True}


@pytest.mark.asyncio
async def test_recommendations_and_cache_clear(client: AsyncClient, test_app, verified_headers):
    user, headers = verified_headers
    await test_app.state.sessions.cache_recommendations(user.id, [{"id": "r1"}])
    await test_app.state.sessions.cache_feed(user.id, [{"id": "f1"}])
    resp = await client.get("/api/v1/users/me/recommendations", headers=headers)
    assert resp.json()["cached"] is True

    resp = await client.delete("/api/v1/users/me/caches", headers=headers)
    assert resp.status_code == 200
    assert await test_app.state.sessions.get_feed(user.id) is None
    assert await test_app.state.sessions.get_recommendations(user.id) is None


def test_request_user_without_prior_auth_is_auth_required():
    class _State:
        pass

    class _Request:
        state = _State()

    with pytest.raises(AuthError) as exc_info:
        get_request_user(_Request())
    assert exc_info.value.code == "AUTH_REQUIRED"
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_require_verified_passes_verified_user(test_user):
    test_user.is_verified = True
    assert await require_verified(test_user) is test_user


@pytest.mark.asyncio
async def test_users_router_applies_default_user_limit(client: AsyncClient, test_app, verified_headers):
    user, headers = verified_headers
    for _ in range(100):
        await test_app.state.event_log.record(user.id, "content_view")
    resp = await client.get("/api/v1/users/me/feed", headers=headers)
    assert resp.status_code == 429
    assert resp.json()["retryAfter"] == 15 * 60
    assert resp.headers["Retry-After"] == "900"
