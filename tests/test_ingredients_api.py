# tests/test_ingredients_api.py
import pytest
from httpx import AsyncClient

from app.core.deps import get_normalization_service
from app.main import app
from app.schemas.normalization import MatchMethod, NormalizedMatch
from app.services.llm_normalization import LLMOutcome
from app.services.normalization import IngredientNormalizationService
from app.services.text_processing import TextProcessor

pytestmark = pytest.mark.anyio

NORMALIZE = "/api/v1/ingredients/normalize"
STATS = "/api/v1/ingredients/stats"


async def test_normalize_ok(client: AsyncClient):
    r = await client.post(NORMALIZE, json={"raw_text": "fresh organic tomatoes, red bell peppers and basil leaves"})
    assert r.status_code == 200, r.text
    assert r.headers["Cache-Control"] == "private, max-age=300"

    data = r.json()
    assert data["raw_text"] == "fresh organic tomatoes, red bell peppers and basil leaves"
    names = {m["name"]: m for m in data["matches"]}
    assert set(names) == {"tomatoes", "bell peppers", "basil"}
    assert names["tomatoes"]["confidence"] == 1.0
    assert names["tomatoes"]["method"] == "deterministic"
    assert names["bell peppers"]["method"] == "fuzzy"


async def test_normalize_options(client: AsyncClient):
    r = await client.post(NORMALIZE, json={"raw_text": "olive oil and garlic", "max_results": 1})
    assert r.status_code == 200, r.text
    assert len(r.json()["matches"]) == 1


async def test_normalize_insufficient_confidence_is_422(client: AsyncClient):
    r = await client.post(NORMALIZE, json={"raw_text": "xyznonexistentingredient123"})
    assert r.status_code == 422
    err = r.json()["error"]
    assert err["type"] == "business_logic_error"
    assert err["code"] == "INSUFFICIENT_CONFIDENCE"
    assert err["details"]


async def test_normalize_no_ingredients_is_400(client: AsyncClient):
    r = await client.post(NORMALIZE, json={"raw_text": "the and with some"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "NO_INGREDIENTS"


@pytest.mark.parametrize(
    "payload",
    [
        {"raw_text": "   "},
        {"raw_text": "12345"},
        {"raw_text": "x" * 101},
        {"raw_text": "tomatoes", "min_confidence": 1.5},
        {"raw_text": "tomatoes", "max_results": 0},
        {},
    ],
)
async def test_normalize_request_validation(client: AsyncClient, payload):
    r = await client.post(NORMALIZE, json=payload)
    assert r.status_code == 422
    assert r.json()["detail"] == "Validation error"


@pytest.mark.parametrize(
    "raw,message",
    [
        ("   ", "Raw text cannot be only whitespace"),
        ("12345", "Raw text must contain at least one letter"),
    ],
)
async def test_custom_validator_errors_are_serialized(client: AsyncClient, raw, message):
    r = await client.post(NORMALIZE, json={"raw_text": raw})
    assert r.status_code == 422, r.text
    errors = r.json()["errors"]
    assert any(message in e["msg"] for e in errors)
    assert all(e["loc"][-1] == "raw_text" for e in errors)


async def test_internal_error_hides_details(client: AsyncClient, fake_store):
    class Broken(TextProcessor):
        def candidates(self, text):
            raise RuntimeError("secret stack info")

    app.dependency_overrides[get_normalization_service] = lambda: IngredientNormalizationService(
        fake_store, text_processor=Broken()
    )
    try:
        r = await client.post(NORMALIZE, json={"raw_text": "tomatoes"})
    finally:
        app.dependency_overrides.pop(get_normalization_service, None)

    assert r.status_code == 500
    err = r.json()["error"]
    assert err["code"] == "INTERNAL_ERROR"
    assert err["details"] is None
    assert "secret" not in r.text


class _FakeLLM:
    enabled = True

    def __init__(self):
        self.calls = 0

    async def match(self, unmatched_tokens, canonical):
        self.calls += 1
        ing = next(c for c in canonical if c.name == "bell peppers")
        return LLMOutcome(matches=[NormalizedMatch(
            ingredient_id=ing.id, name=ing.name, confidence=0.8, method=MatchMethod.LLM,
        )])

    def cache_stats(self):
        return {"size": 0}

    def clear_cache(self):
        pass

    def cleanup_cache(self):
        return 0


async def test_normalize_with_llm_fallback(client: AsyncClient, monkeypatch):
    llm = _FakeLLM()
    monkeypatch.setattr(app.state, "llm_matcher", llm)

    r = await client.post(NORMALIZE, json={"raw_text": "capsicum"})
    assert r.status_code == 200, r.text
    assert [(m["name"], m["method"]) for m in r.json()["matches"]] == [("bell peppers", "llm")]
    assert llm.calls == 1

    r = await client.get(STATS)
    assert r.json()["llm"] == {"enabled": True, "cache": {"size": 0}}


async def test_repeat_request_served_from_cache(client: AsyncClient):
    for _ in range(2):
        r = await client.post(NORMALIZE, json={"raw_text": "Garlic"}, headers={"X-User-Id": "u-1"})
        assert r.status_code == 200

    data = (await client.get(STATS)).json()
    assert data["cache"]["hits"] >= 1
    assert data["performance"]["total_requests"] == 2
    assert data["performance"]["cache_hit_rate"] == pytest.approx(0.5)
    assert data["usage"]["unique_users"] == 1


async def test_stats_shape(client: AsyncClient):
    await client.post(NORMALIZE, json={"raw_text": "xyznonexistentingredient123"})
    r = await client.get(STATS)
    assert r.status_code == 200
    data = r.json()
    for key in ("timestamp", "cache", "llm", "performance", "usage", "health", "failure_patterns"):
        assert key in data
    assert data["llm"]["enabled"] is False
    assert data["health"]["status"] == "degraded"
    assert data["failure_patterns"][0]["count"] == 1
    assert data["failure_patterns"][0]["percentage"] == "100.00%"


async def test_stats_maintenance_actions(client: AsyncClient):
    await client.post(NORMALIZE, json={"raw_text": "basil"})

    r = await client.post(STATS, json={"action": "cleanup_cache"})
    assert r.status_code == 200
    assert r.json()["result"]["removed_entries"] == 0

    r = await client.post(STATS, json={"action": "get_detailed_analytics"})
    body = r.json()
    assert body["success"] is True
    assert len(body["result"]["events"]) == 1
    assert body["result"]["weekly_stats"]["total_requests"] == 1

    r = await client.post(STATS, json={"action": "clear_cache"})
    assert r.status_code == 200
    assert app.state.normalization_cache.get_stats().size == 0


async def test_stats_invalid_action(client: AsyncClient):
    r = await client.post(STATS, json={"action": "drop_database"})
    assert r.status_code == 400
    assert "Invalid action" in r.json()["detail"]


async def test_search_ingredients(client: AsyncClient):
    r = await client.get("/api/v1/ingredients/", params={"search": "o"})
    assert r.status_code == 200
    names = [i["name"] for i in r.json()]
    assert names[0] == "onions"
    assert set(names) == {"onions", "olive oil"}

    r = await client.get("/api/v1/ingredients/", params={"limit": 3})
    assert len(r.json()) == 3
    assert set(r.json()[0]) == {"id", "name"}
