# tests/test_basic_endpoints.py
import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.anyio

async def test_ping_health(client: AsyncClient):
    r = await client.get("/api/v1/ping/")
    assert r.status_code == 200
    assert r.json().get("message") == "pong"

    r = await client.get("/api/v1/health/")
    assert r.status_code == 200
    data = r.json()
    assert "status" in data and data["status"] in ("ok", "healthy", "OK")
    assert data["database"] is True
    assert data["llm_enabled"] is False

async def test_ops_endpoints(client: AsyncClient):
    r = await client.get("/healthz")
    assert r.status_code == 200 and r.json() == {"ok": True}

    r = await client.get("/readyz")
    assert r.status_code == 200
    assert r.json() == {"ready": True, "llm_enabled": False}

    r = await client.get("/")
    assert r.json()["app"] == "Gutsy Normalizer API"
    assert r.headers["X-Content-Type-Options"] == "nosniff"

async def test_metrics_exposed(client: AsyncClient):
    await client.get("/healthz")
    r = await client.get("/metrics")
    assert r.status_code == 200
    assert "http_request" in r.text

async def test_unknown_route_uses_unified_error(client: AsyncClient):
    r = await client.get("/api/v1/nope")
    assert r.status_code == 404
    assert "detail" in r.json()
