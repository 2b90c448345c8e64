"""API health tests without the test database."""

import pytest
from httpx import ASGITransport, AsyncClient

from availability_engine.main import create_app


@pytest.mark.asyncio
async def test_api_health_endpoints():
    """Health, readiness and info answer on a bare application."""
    app = create_app()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

        response = await client.get("/ready")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["checks"]["database"] == "ok"

        response = await client.get("/info")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "availability-engine"
        assert data["features"]["background_workers"] is False


@pytest.mark.asyncio
async def test_metrics_endpoint():
    """Prometheus exposition includes the engine's business counters."""
    app = create_app()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "slot_reservations_total" in response.text
        assert "waitlist_promotions_total" in response.text


@pytest.mark.asyncio
async def test_openapi_docs():
    """OpenAPI docs are served in development."""
    app = create_app()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/docs")
        assert response.status_code == 200
