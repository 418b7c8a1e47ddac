"""Tests for the HTTP API with stub drivers behind the orchestrator."""

import asyncio

import httpx
import pytest
import pytest_asyncio
from jsonschema import validate

from pricescout.core.exceptions import ChallengeUnresolved, SessionStartError
from pricescout.dependencies import get_db, get_suggestion_client
from pricescout.main import app
from pricescout.scrapers.base import ProductDetails, RawReview
from pricescout.scrapers.orchestrator import CrawlOrchestrator
from pricescout.scrapers.platform import Platform
from pricescout.services.suggestion_service import SuggestionClient
from tests.fakes import driver_factory_with, raising, raw, returning, stub_driver

SEARCH_RESPONSE_SCHEMA = {
    "type": "object",
    "required": ["success", "results", "stale", "cached"],
    "properties": {
        "success": {"type": "boolean"},
        "stale": {"type": "boolean"},
        "cached": {"type": "boolean"},
        "results": {
            "type": "array",
            "items": {
                "type": "object",
                "required": [
                    "source_platform",
                    "source_id",
                    "product_key",
                    "title",
                    "price",
                    "currency",
                    "product_url",
                    "extraction_confidence",
                ],
                "properties": {
                    "source_platform": {"enum": ["lazada", "zalora", "shopee"]},
                    "price": {"type": "string"},
                    "currency": {"const": "PHP"},
                    "extraction_confidence": {"enum": ["direct", "estimated", "fallback"]},
                },
            },
        },
        "errors": {
            "type": "array",
            "items": {"type": "object", "required": ["platform", "reason", "message"]},
        },
    },
}


async def lazada_details(source_id):
    if source_id == "missing":
        return None
    return ProductDetails(
        platform=Platform.LAZADA,
        source_id=source_id,
        title="Floral Summer Dress",
        price_text="₱450.00",
        original_price_text="₱899.00",
        product_url="https://www.lazada.com.ph/products/-i123-s456.html",
        images=["https://img.lazcdn.com/a.jpg"],
        in_stock=True,
    )


async def lazada_reviews(source_id, page):
    return [RawReview(Platform.LAZADA, source_id, "9001", "M***a", 5.0, "Ganda ng tela!")]


def build_orchestrator(memory_cache, zalora_search=None) -> CrawlOrchestrator:
    lazada = stub_driver(
        Platform.LAZADA,
        search=returning(
            raw(Platform.LAZADA, "1", "₱450.00", rating=4.6),
            raw(Platform.LAZADA, "2", "₱1,299.00", rating=4.9),
        ),
        details=lazada_details,
        reviews=lazada_reviews,
    )
    zalora = stub_driver(
        Platform.ZALORA,
        search=zalora_search or returning(raw(Platform.ZALORA, "mango-1", "PHP 899.00", brand="Mango")),
    )
    return CrawlOrchestrator(driver_factory_with(lazada, zalora), memory_cache)


@pytest.fixture
def orchestrator(memory_cache):
    return build_orchestrator(memory_cache)


@pytest_asyncio.fixture
async def client(orchestrator, session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_suggestion_client] = lambda: SuggestionClient("")
    app.state.orchestrator = orchestrator
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    app.state.orchestrator = None


class TestSearchEndpoint:
    """Test GET /api/v1/search."""

    async def test_merged_results(self, client):
        response = await client.get("/api/v1/search", params={"q": "dress", "platforms": "lazada,zalora"})

        assert response.status_code == 200
        body = response.json()
        validate(body, SEARCH_RESPONSE_SCHEMA)
        assert body["success"] is True
        assert "errors" not in body
        assert [r["price"] for r in body["results"]] == ["450.00", "899.00", "1299.00"]
        assert body["query"]["platforms"] == ["lazada", "zalora"]

    async def test_second_request_served_from_cache(self, client):
        await client.get("/api/v1/search", params={"q": "dress"})
        response = await client.get("/api/v1/search", params={"q": "DRESS"})
        assert response.json()["cached"] is True

    async def test_filters_and_sort(self, client):
        response = await client.get(
            "/api/v1/search",
            params={"q": "dress", "platforms": "lazada", "min_price": 400, "sort": "rating_desc"},
        )
        body = response.json()
        assert [r["source_id"] for r in body["results"]] == ["2", "1"]
        assert body["query"]["sort"] == "rating_desc"
        assert body["query"]["min_price"] == "400.00"

    async def test_natural_language_query(self, client):
        response = await client.get(
            "/api/v1/search",
            params={"q": "mango dress under 1000 on zalora", "natural": "true"},
        )
        body = response.json()
        assert response.status_code == 200
        assert body["query"]["query"] == "mango dress"
        assert body["query"]["platforms"] == ["zalora"]
        assert body["query"]["brand"] == "mango"
        assert [r["product_key"] for r in body["results"]] == ["zalora:mango-1"]

    async def test_platform_failure_reported(self, memory_cache, client):
        app.state.orchestrator = build_orchestrator(
            memory_cache, zalora_search=raising(ChallengeUnresolved("zalora", "https://www.zalora.com.ph/search"))
        )
        response = await client.get("/api/v1/search", params={"q": "dress"})

        body = response.json()
        assert response.status_code == 200
        validate(body, SEARCH_RESPONSE_SCHEMA)
        assert [(e["platform"], e["reason"]) for e in body["errors"]] == [("zalora", "challenge_unresolved")]
        assert len(body["results"]) == 2

        cached = (await client.get("/api/v1/search", params={"q": "dress"})).json()
        assert cached["cached"] is True
        assert cached["errors"] == body["errors"]

    @pytest.mark.parametrize(
        "params",
        [
            {"q": "   "},
            {"q": "dress", "platforms": "ebay"},
            {"q": "dress", "sort": "newest"},
        ],
    )
    async def test_bad_requests(self, client, params):
        response = await client.get("/api/v1/search", params=params)
        assert response.status_code == 400

    async def test_out_of_range_rating(self, client):
        response = await client.get("/api/v1/search", params={"q": "dress", "min_rating": 7})
        assert response.status_code == 422

    async def test_busy_returns_429(self, client, orchestrator):
        async with orchestrator.admission.acquire("other-search"):
            response = await client.get("/api/v1/search", params={"q": "dress"})
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "5"

    async def test_infrastructure_failure_returns_503(self, memory_cache, client):
        failing = raising(SessionStartError("lazada", "browser could not launch"))
        lazada = stub_driver(Platform.LAZADA, search=failing)
        app.state.orchestrator = CrawlOrchestrator(driver_factory_with(lazada), memory_cache)

        response = await client.get("/api/v1/search", params={"q": "dress"})
        assert response.status_code == 503

    async def test_crawler_not_running(self, client):
        app.state.orchestrator = None
        response = await client.get("/api/v1/search", params={"q": "dress"})
        assert response.status_code == 503

    async def test_suggestions_disabled(self, client):
        response = await client.get("/api/v1/search/suggestions", params={"q": "dress"})
        assert response.status_code == 200
        assert response.json() == {"query": "dress", "suggestions": [], "filters": {}}


class TestProductEndpoints:
    """Test product details, reviews and price history."""

    async def test_product_details(self, client):
        response = await client.get("/api/v1/products/lazada/123_456")

        assert response.status_code == 200
        body = response.json()
        assert body["title"] == "Floral Summer Dress"
        assert body["price"] == "450.00"
        assert body["original_price"] == "899.00"
        assert body["currency"] == "PHP"
        assert body["in_stock"] is True

    async def test_product_not_found(self, client):
        response = await client.get("/api/v1/products/lazada/missing")
        assert response.status_code == 404

    async def test_unknown_platform(self, client):
        response = await client.get("/api/v1/products/ebay/1")
        assert response.status_code == 400

    async def test_product_timeout(self, client, orchestrator):
        async def slow(source_id):
            await asyncio.sleep(5)

        orchestrator.driver_timeout = 0.05
        orchestrator.driver_factory.register_driver(stub_driver(Platform.LAZADA, details=slow))

        response = await client.get("/api/v1/products/lazada/1")
        assert response.status_code == 504

    async def test_reviews(self, client):
        response = await client.get("/api/v1/products/lazada/123_456/reviews", params={"page": 2})

        body = response.json()
        assert body["page"] == 2
        assert body["reviews"][0]["body"] == "Ganda ng tela!"
        assert body["reviews"][0]["rating"] == 5.0

    async def test_track_then_history(self, client):
        response = await client.post("/api/v1/products/lazada/123_456/track", params={"title": "Floral Dress"})
        assert response.status_code == 201
        assert response.json()["product_key"] == "lazada:123_456"

        response = await client.get("/api/v1/products/lazada/123_456/history")
        body = response.json()
        assert body == {"product_key": "lazada:123_456", "tracked": True, "history": []}

    async def test_history_for_untracked_product(self, client):
        response = await client.get("/api/v1/products/zalora/x-1/history")
        assert response.json()["tracked"] is False


class TestHealthEndpoint:
    """Test GET /api/v1/health."""

    async def test_health_ok(self, client):
        response = await client.get("/api/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["database"] == "ok"
        assert body["cache"] == "ok"
        assert body["platforms"] == ["lazada", "zalora"]

    async def test_health_degraded_without_crawler(self, client):
        app.state.orchestrator = None
        response = await client.get("/api/v1/health")
        assert response.json()["status"] == "degraded"
