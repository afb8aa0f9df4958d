"""
Unit tests for Catalog main service.
"""

import pytest
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_catalog.app.caching import CACHE_HEADER
from service_catalog.app.caching.fallback import LocalFallbackCache
from service_catalog.app.caching.service import CacheService
from service_catalog.app.catalog import CatalogRepository, Product
from service_catalog.app.main import CatalogService, create_app
from shared.test_helpers import InMemoryRemoteStore, ManualClock, ProductFactory


class TestCatalogService:
    """Test cases for CatalogService."""

    @pytest.fixture
    def clock(self):
        return ManualClock()

    @pytest.fixture
    def remote(self, clock):
        return InMemoryRemoteStore(clock=clock)

    @pytest.fixture
    def cache(self, remote, clock):
        return CacheService(remote, LocalFallbackCache(clock=clock), sweep_interval=0)

    @pytest.fixture
    def repository(self):
        return CatalogRepository(Product(**data) for data in ProductFactory.create_test_products())

    @pytest.fixture
    def catalog_service(self, cache, repository):
        return CatalogService(cache=cache, repository=repository)

    @pytest.fixture
    def client(self, catalog_service):
        with TestClient(catalog_service.app) as client:
            yield client

    @pytest.fixture
    def drain(self, client, cache):
        """Wait for background cache writes and invalidations."""
        return lambda: client.portal.call(cache.drain)

    def test_create_app(self, cache, repository):
        app = create_app(cache=cache, repository=repository)

        assert isinstance(app.state.catalog_service, CatalogService)
        assert app.state.catalog_service.cache is cache

    def test_product_list_is_served_from_cache(self, client, repository, remote):
        url = "/api/v1/products?category=electronics&min_price=0&max_price=100"

        first = client.get(url)
        queries = repository.query_count
        second = client.get(url)

        assert first.status_code == 200
        assert first.json()["cached"] is False
        assert second.json()["cached"] is True
        assert second.json()["products"] == first.json()["products"]
        assert repository.query_count == queries
        assert remote.raw("products:1:12:electronics:0:100:-createdAt:") is not None
        assert remote.ttl("products:1:12:electronics:0:100:-createdAt:") == 3600

    def test_product_list_expires(self, client, repository, clock):
        client.get("/api/v1/products")
        clock.advance(3601)

        response = client.get("/api/v1/products")

        assert response.json()["cached"] is False
        assert repository.query_count == 2

    def test_update_invalidates_cached_reads(self, client, drain):
        client.get("/api/v1/products/p-headphones")
        client.get("/api/v1/products?category=electronics")

        response = client.put("/api/v1/products/p-headphones", json={"price": 89.99})
        assert response.status_code == 200
        drain()

        detail = client.get("/api/v1/products/p-headphones").json()
        listing = client.get("/api/v1/products?category=electronics").json()

        assert detail["cached"] is False
        assert detail["price"] == 89.99
        assert listing["cached"] is False

    def test_create_product_invalidates_listing(self, client, drain):
        client.get("/api/v1/products?category=garden")

        response = client.post(
            "/api/v1/products",
            json={"name": "Garden Hose", "price": 25.0, "category": "garden", "stock": 3},
        )
        assert response.status_code == 201
        drain()

        listing = client.get("/api/v1/products?category=garden").json()
        assert listing["cached"] is False
        assert [product["name"] for product in listing["products"]] == ["Garden Hose"]

    def test_delete_product(self, client, drain):
        client.get("/api/v1/products/p-charger")

        assert client.delete("/api/v1/products/p-charger").status_code == 200
        drain()

        assert client.get("/api/v1/products/p-charger").status_code == 404

    def test_missing_product_is_not_cached(self, client, remote):
        response = client.get("/api/v1/products/does-not-exist")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"
        assert remote.raw("product:does-not-exist") is None

    def test_unhandled_error_is_a_service_error(self, catalog_service, repository):
        async def broken(product_id):
            raise RuntimeError("origin store down")

        repository.get_product = broken

        with TestClient(catalog_service.app, raise_server_exceptions=False) as client:
            response = client.get("/api/v1/products/p-laptop")

        assert response.status_code == 500
        assert response.json()["code"] == "SERVICE_ERROR"
        assert response.json()["message"] == "Internal server error"

    def test_unknown_sort_is_rejected(self, client):
        response = client.get("/api/v1/products?sort=color")

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_search_requires_two_characters(self, client):
        response = client.get("/api/v1/products/search?query=a")

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_search(self, client):
        first = client.get("/api/v1/products/search?query=audio").json()
        second = client.get("/api/v1/products/search?query=audio").json()

        assert {result["id"] for result in first["results"]} == {"p-headphones", "p-speaker"}
        assert second["cached"] is True

    def test_category_analytics_and_trending(self, client):
        analytics = client.get("/api/v1/products/analytics/categories").json()
        trending = client.get("/api/v1/products/trending?limit=2").json()

        assert analytics["categories"][0]["category"] == "electronics"
        assert analytics["categories"][0]["count"] == 4
        assert [product["id"] for product in trending["trending_products"]] == ["p-headphones", "p-speaker"]

    def test_advanced_search_and_stats(self, client):
        result = client.get("/api/v1/search/advanced?categories=books&sort_by=price-asc").json()
        stats = client.get("/api/v1/search/stats").json()

        assert [product["id"] for product in result["products"]] == ["p-novel", "p-cookbook"]
        assert result["filters"]["categories"] == ["books"]
        assert stats["total_products"] == 7
        assert stats["out_of_stock_count"] == 1

    def test_filter_options_use_response_cache(self, client, drain, repository):
        first = client.get("/api/v1/search/filters")
        drain()
        queries = repository.query_count
        second = client.get("/api/v1/search/filters")

        assert first.headers[CACHE_HEADER] == "MISS"
        assert second.headers[CACHE_HEADER] == "HIT"
        assert second.json()["categories"] == ["books", "electronics", "kitchen"]
        assert repository.query_count == queries

    def test_serves_reads_while_redis_is_down(self, client, remote):
        client.get("/api/v1/products/p-laptop")
        remote.go_down()

        response = client.get("/api/v1/products/p-laptop")
        health = client.get("/health").json()

        assert response.status_code == 200
        assert response.json()["cached"] is True
        assert health["dependencies"]["redis"] == "error"
        assert health["dependencies"]["fallback_cache"] == "ok"

    def test_similar_products(self, client):
        response = client.get("/api/v1/recommendations/similar/p-headphones")

        assert {product["id"] for product in response.json()["similar_products"]} == {"p-speaker"}
        assert client.get("/api/v1/recommendations/similar/unknown").status_code == 404

    def test_trending_in_category(self, client):
        response = client.get("/api/v1/recommendations/trending/books").json()

        assert [product["id"] for product in response["trending"]] == ["p-novel", "p-cookbook"]

    def test_frequently_bought_together(self, client, drain, remote):
        for user_id, product_ids in (("u1", ["p-novel", "p-cookbook"]),
                                     ("u2", ["p-novel", "p-cookbook", "p-headphones"])):
            for product_id in product_ids:
                assert client.post(f"/api/v1/wishlist/{user_id}/{product_id}").status_code == 201
        drain()

        first = client.get("/api/v1/recommendations/frequently-bought/p-novel").json()
        second = client.get("/api/v1/recommendations/frequently-bought/p-novel").json()

        assert [product["id"] for product in first["frequently_bought"]] == ["p-cookbook", "p-headphones"]
        assert first["cached"] is False
        assert second["cached"] is True
        assert remote.ttl("frequently-bought:p-novel:5") == 18000
        assert client.get("/api/v1/recommendations/frequently-bought/unknown").status_code == 404

    def test_frequently_bought_follows_wishlist_changes(self, client, drain):
        client.post("/api/v1/wishlist/u1/p-novel")
        drain()
        assert client.get("/api/v1/recommendations/frequently-bought/p-novel").json()["frequently_bought"] == []

        client.post("/api/v1/wishlist/u1/p-speaker")
        drain()

        refreshed = client.get("/api/v1/recommendations/frequently-bought/p-novel").json()
        assert refreshed["cached"] is False
        assert [product["id"] for product in refreshed["frequently_bought"]] == ["p-speaker"]

    def test_personalized_feed(self, client, drain, remote):
        client.post("/api/v1/wishlist/u1/p-novel")
        drain()

        first = client.get("/api/v1/recommendations/feed/u1").json()
        second = client.get("/api/v1/recommendations/feed/u1").json()

        # Wishlist categories first, then the most reviewed in-stock products
        assert [product["id"] for product in first["feed"]] == [
            "p-cookbook", "p-headphones", "p-speaker", "p-laptop", "p-charger",
        ]
        assert first["cached"] is False
        assert second["cached"] is True
        assert remote.ttl("feed:user:u1:20") == 10800
        assert [product["id"] for product in client.get("/api/v1/recommendations/feed/u1?limit=2").json()["feed"]] == [
            "p-cookbook", "p-headphones",
        ]

    def test_user_recommendations_follow_wishlist(self, client, drain, remote):
        cold = client.get("/api/v1/recommendations/user/u1").json()
        assert cold["cached"] is False
        # No wishlist yet: trending products, cached for a shorter time
        assert remote.ttl("recommendations:user:u1:10") == 3600

        assert client.post("/api/v1/wishlist/u1/p-novel").status_code == 201
        drain()

        warm = client.get("/api/v1/recommendations/user/u1").json()
        assert warm["cached"] is False
        assert [product["id"] for product in warm["recommendations"]] == ["p-cookbook"]
        assert remote.ttl("recommendations:user:u1:10") == 21600

    def test_wishlist(self, client, drain):
        client.get("/api/v1/wishlist/u1")
        client.post("/api/v1/wishlist/u1/p-mug")
        drain()

        wishlist = client.get("/api/v1/wishlist/u1").json()
        assert wishlist["cached"] is False
        assert [item["product_id"] for item in wishlist["items"]] == ["p-mug"]

        assert client.post("/api/v1/wishlist/u1/p-mug").status_code == 400
        assert client.delete("/api/v1/wishlist/u1/p-mug").status_code == 200
        assert client.delete("/api/v1/wishlist/u1/p-mug").status_code == 404

    def test_wishlist_reflects_product_update(self, client, drain):
        client.post("/api/v1/wishlist/u1/p-novel")
        drain()
        before = client.get("/api/v1/wishlist/u1").json()
        assert before["items"][0]["product"]["price"] == 12.99

        assert client.put("/api/v1/products/p-novel", json={"price": 9.99}).status_code == 200
        drain()

        after = client.get("/api/v1/wishlist/u1").json()
        assert after["cached"] is False
        assert after["items"][0]["product"]["price"] == 9.99

    def test_deleted_product_leaves_wishlist(self, client, drain):
        client.post("/api/v1/wishlist/u1/p-novel")
        client.post("/api/v1/wishlist/u1/p-cookbook")
        drain()
        assert len(client.get("/api/v1/wishlist/u1").json()["items"]) == 2

        assert client.delete("/api/v1/products/p-novel").status_code == 200
        drain()

        wishlist = client.get("/api/v1/wishlist/u1").json()
        assert wishlist["cached"] is False
        assert [item["product_id"] for item in wishlist["items"]] == ["p-cookbook"]

    def test_review_moderation_refreshes_product(self, client, drain):
        client.get("/api/v1/products/p-novel")
        reviews_page = client.get("/api/v1/products/p-novel/reviews")
        drain()
        assert reviews_page.json()["reviews"] == []

        created = client.post(
            "/api/v1/products/p-novel/reviews",
            json={"user_id": "u1", "rating": 5, "title": "Great", "comment": "Could not put it down"},
        )
        assert created.status_code == 201
        review_id = created.json()["review"]["id"]

        moderated = client.patch(f"/api/v1/reviews/{review_id}/moderation", json={"status": "approved"})
        assert moderated.status_code == 200
        drain()

        product = client.get("/api/v1/products/p-novel").json()
        reviews_page = client.get("/api/v1/products/p-novel/reviews")

        assert product["cached"] is False
        assert product["rating"] == 5.0
        assert [review["id"] for review in product["reviews"]] == [review_id]
        assert reviews_page.headers[CACHE_HEADER] == "MISS"
        assert reviews_page.json()["rating_breakdown"]["5"] == 1

    def test_review_moderation_refreshes_listing(self, client, drain):
        listing = client.get("/api/v1/products?category=books").json()
        assert {product["id"]: product["rating"] for product in listing["products"]}["p-novel"] == 4.3

        created = client.post(
            "/api/v1/products/p-novel/reviews",
            json={"user_id": "u1", "rating": 1, "title": "Dull", "comment": "Guessed the ending early"},
        )
        review_id = created.json()["review"]["id"]
        client.patch(f"/api/v1/reviews/{review_id}/moderation", json={"status": "approved"})
        drain()

        listing = client.get("/api/v1/products?category=books").json()
        assert listing["cached"] is False
        assert {product["id"]: product["rating"] for product in listing["products"]}["p-novel"] == 1.0

    def test_duplicate_review_is_rejected(self, client):
        payload = {"user_id": "u1", "rating": 4, "title": "Nice", "comment": "Works well"}

        assert client.post("/api/v1/products/p-speaker/reviews", json=payload).status_code == 201
        assert client.post("/api/v1/products/p-speaker/reviews", json=payload).status_code == 400

    def test_cache_admin_routes(self, client, remote):
        client.get("/api/v1/products/p-laptop")
        client.get("/api/v1/products/p-laptop")

        stats = client.get("/api/v1/cache/stats").json()
        assert stats["hits"] == 1
        assert stats["remote_state"] == "connected"

        cleared = client.post("/api/v1/cache/clear?pattern=product:*")
        assert cleared.json() == {"cleared": "product:*"}
        assert remote.raw("product:p-laptop") is None

    def test_health_endpoints(self, client):
        health = client.get("/health")
        liveness = client.get("/healthz")

        assert health.status_code == 200
        assert health.json()["service"] == "catalog"
        assert health.json()["dependencies"]["redis"] == "ok"
        assert "X-Request-ID" in health.headers
        assert liveness.json() == {"service": "catalog", "status": "alive"}

    def test_metrics_endpoint(self, client):
        client.get("/api/v1/products/p-laptop")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "cache_operations_total" in response.text
