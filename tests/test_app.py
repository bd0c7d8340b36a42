"""Application-level tests: health, error envelope and QR rendering."""

import base64
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from shortlinks.database import get_db
from shortlinks.dependencies import ServiceManager, get_link_service
from shortlinks.errors import GENERIC_SERVER_ERROR, error_body
from shortlinks.main import app
from shortlinks.qr import render_qr_data_url
from shortlinks.rate_limiter import FixedWindowRateLimiter
from shortlinks.redis import get_redis

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def _override_health(session: AsyncMock, cache: AsyncMock) -> None:
    async def fake_db():
        yield session

    app.dependency_overrides[get_db] = fake_db
    app.dependency_overrides[get_redis] = lambda: cache


@pytest.mark.asyncio
async def test_health_all_up(client: AsyncClient) -> None:
    _override_health(AsyncMock(), AsyncMock())

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "healthy", "cache": "healthy"}


@pytest.mark.asyncio
async def test_health_reports_cache_down(client: AsyncClient) -> None:
    cache = AsyncMock()
    cache.ping.side_effect = RedisConnectionError("down")
    _override_health(AsyncMock(), cache)

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "unhealthy", "database": "healthy", "cache": "unhealthy"}


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope(client: AsyncClient) -> None:
    response = await client.get("/definitely/not/here")

    assert response.status_code == 404
    assert response.json() == error_body(404, "Not Found", "The requested resource does not exist")


@pytest.mark.asyncio
async def test_method_not_allowed_uses_error_envelope(client: AsyncClient) -> None:
    response = await client.delete("/api/auth/me")

    assert response.status_code == 405
    assert response.json()["errors"][0]["title"] == "Method Not Allowed"


@pytest.mark.asyncio
async def test_unexpected_error_is_generic_500(client: AsyncClient) -> None:
    class ExplodingService:
        async def resolve(self, slug: str):
            raise RuntimeError("database password is hunter2")

    app.dependency_overrides[get_link_service] = lambda: ExplodingService()

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.get("/api/urls/redirect/abc123")

    assert response.status_code == 500
    error = response.json()["errors"][0]
    assert error["status"] == "500"
    assert "hunter2" not in error["detail"]


@pytest.mark.asyncio
async def test_metrics_endpoint(client: AsyncClient) -> None:
    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "shortlinks_creation_requests_total" in response.text


def test_qr_data_url_is_png() -> None:
    data_url = render_qr_data_url("https://sho.rt/abc123")

    prefix = "data:image/png;base64,"
    assert data_url.startswith(prefix)
    assert base64.b64decode(data_url[len(prefix):]).startswith(PNG_SIGNATURE)


@pytest.mark.asyncio
async def test_slug_exhaustion_is_generic_500(client: AsyncClient) -> None:
    await client.post("/api/urls", json={"originalUrl": "https://example.com", "customSlug": "always"})

    with patch("shortlinks.slugs.generate", return_value="always"):
        response = await client.post("/api/urls", json={"originalUrl": "https://example.org"})

    assert response.status_code == 500
    assert response.json() == error_body(500, "Server Error", GENERIC_SERVER_ERROR)


@pytest.mark.asyncio
async def test_service_manager_limits_through_redis_storage() -> None:
    manager = ServiceManager()
    await manager.cleanup()
    await manager.initialize()
    try:
        assert isinstance(manager.rate_limiter, FixedWindowRateLimiter)
        assert manager.rate_limiter.fail_open is manager.settings.RATE_LIMIT_FAIL_OPEN
        assert not hasattr(manager, "cache_writer")
    finally:
        await manager.cleanup()
