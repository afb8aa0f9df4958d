"""
Catalog service for the Storefront backend.

Serves product catalog reads through the two-tier cache and invalidates
cached reads after successful mutations.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Query

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import NotFoundError, ValidationError
from shared.logging import set_user_context
from service_catalog.app.caching import (
    CacheInvalidator,
    CacheService,
    MutationEvent,
    cache_invalidator_middleware,
    cache_middleware,
)
from service_catalog.app.caching import keys
from service_catalog.app.catalog import (
    CatalogRepository,
    ProductCreate,
    ProductUpdate,
    ReviewCreate,
    ReviewModeration,
)


REVIEW_PAGE_TTL = 600


class CatalogService(BaseService):
    """Catalog service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        cache: Optional[CacheService] = None,
        repository: Optional[CatalogRepository] = None,
    ):
        super().__init__("catalog", 8020, config=config)
        self.cache = cache or CacheService.from_config(self.config, metrics=self.metrics)
        self.repository = repository or CatalogRepository()
        self.invalidator = CacheInvalidator(self.cache, metrics=self.metrics)
        self.app.state.catalog_service = self

        @self.app.on_event("startup")
        async def _startup():
            await self.cache.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.cache.stop()

        @self.app.get("/healthz")
        async def liveness():
            """Liveness check; does not touch Redis."""
            return {"service": self.service_name, "status": "alive"}

        self._setup_product_routes()
        self._setup_search_routes()
        self._setup_recommendation_routes()
        self._setup_review_routes()
        self._setup_wishlist_routes()
        self._setup_cache_routes()

    async def _check_dependencies(self) -> Dict[str, str]:
        return await self.cache.health_check()

    def _setup_product_routes(self):
        """Set up product catalog routes."""

        @self.app.get("/api/v1/products")
        async def list_products(
            page: int = Query(1, ge=1),
            limit: int = Query(12, ge=1, le=100),
            category: Optional[str] = None,
            min_price: Optional[float] = Query(None, ge=0),
            max_price: Optional[float] = Query(None, ge=0),
            sort: str = "-createdAt",
            search: Optional[str] = None,
        ):
            """Paginated, filtered product listing."""
            cache_key = keys.product_list_key(page, limit, category, min_price, max_price, sort, search)
            result, cached = await self.cache.get_or_load(
                cache_key,
                lambda: self.repository.list_products(
                    page=page,
                    limit=limit,
                    category=category,
                    min_price=min_price,
                    max_price=max_price,
                    sort=sort,
                    search=search,
                ),
                keys.PRODUCT_LIST_TTL,
            )
            return {**result, "cached": cached}

        @self.app.get("/api/v1/products/analytics/categories")
        async def category_analytics():
            """Per-category counts and price aggregates."""
            analytics, cached = await self.cache.get_or_load(
                keys.category_analytics_key(),
                self.repository.category_analytics,
                keys.CATEGORY_ANALYTICS_TTL,
            )
            return {"categories": analytics, "cached": cached}

        @self.app.get("/api/v1/products/search")
        async def search_products(query: str = "", limit: int = Query(20, ge=1, le=100)):
            """Full-text product search."""
            if len(query) < 2:
                raise ValidationError("Search query must be at least 2 characters", {"query": query})

            results, cached = await self.cache.get_or_load(
                keys.search_key(query, limit),
                lambda: self.repository.search(query, limit),
                keys.SEARCH_TTL,
            )
            return {"results": results, "cached": cached}

        @self.app.get("/api/v1/products/trending")
        async def trending_products(limit: int = Query(10, ge=1, le=50)):
            """In-stock products ordered by review activity."""
            trending, cached = await self.cache.get_or_load(
                keys.trending_products_key(limit),
                lambda: self.repository.trending(limit),
                keys.TRENDING_PRODUCTS_TTL,
            )
            return {"trending_products": trending, "cached": cached}

        @self.app.get("/api/v1/products/{product_id}")
        async def get_product(product_id: str):
            """Single product with its approved reviews."""
            product, cached = await self.cache.get_or_load(
                keys.product_key(product_id),
                lambda: self.repository.get_product(product_id),
                keys.PRODUCT_TTL,
            )
            if product is None:
                raise NotFoundError("Product", product_id)
            return {**product, "cached": cached}

        @self.app.post("/api/v1/products", status_code=201)
        async def create_product(payload: ProductCreate):
            product = await self.repository.create_product(payload)
            self.invalidator.trigger(MutationEvent.PRODUCT_CREATED)
            return product.model_dump(mode="json")

        @self.app.put("/api/v1/products/{product_id}")
        async def update_product(product_id: str, payload: ProductUpdate):
            product = await self.repository.update_product(product_id, payload)
            self.invalidator.trigger(MutationEvent.PRODUCT_UPDATED, product_id=product_id)
            return product.model_dump(mode="json")

        @self.app.delete("/api/v1/products/{product_id}")
        async def delete_product(product_id: str):
            await self.repository.delete_product(product_id)
            self.invalidator.trigger(MutationEvent.PRODUCT_DELETED, product_id=product_id)
            return {"message": "Product deleted", "id": product_id}

    def _setup_search_routes(self):
        """Set up search routes."""

        @self.app.get("/api/v1/search/advanced")
        async def advanced_search(
            query: Optional[str] = None,
            categories: Optional[str] = None,
            min_price: Optional[float] = Query(None, ge=0),
            max_price: Optional[float] = Query(None, ge=0),
            min_rating: Optional[float] = Query(None, ge=0, le=5),
            sort_by: str = "relevance",
            page: int = Query(1, ge=1),
            limit: int = Query(20, ge=1, le=100),
        ):
            """Multi-filter search with pagination."""
            category_list = [c.strip() for c in categories.split(",") if c.strip()] if categories else None
            cache_key = keys.advanced_search_key(
                query, category_list, min_price, max_price, min_rating, sort_by, page, limit
            )
            result, cached = await self.cache.get_or_load(
                cache_key,
                lambda: self.repository.advanced_search(
                    query=query,
                    categories=category_list,
                    min_price=min_price,
                    max_price=max_price,
                    min_rating=min_rating,
                    sort_by=sort_by,
                    page=page,
                    limit=limit,
                ),
                keys.SEARCH_TTL,
            )
            return {**result, "cached": cached}

        @self.app.get("/api/v1/search/stats")
        async def product_stats():
            stats, cached = await self.cache.get_or_load(
                keys.product_stats_key(),
                self.repository.product_stats,
                keys.PRODUCT_STATS_TTL,
            )
            return {**(stats or {}), "cached": cached}

        # Static-ish data: the whole response is cached per URL
        filters = APIRouter(
            prefix="/api/v1/search",
            route_class=cache_middleware(self.cache, ttl_seconds=keys.FILTER_OPTIONS_TTL),
        )

        @filters.get("/filters")
        async def filter_options():
            """Categories, price range and sort/rating options for filter UIs."""
            return await self.repository.filter_options()

        self.app.include_router(filters)

    def _setup_recommendation_routes(self):
        """Set up recommendation routes."""

        @self.app.get("/api/v1/recommendations/user/{user_id}")
        async def user_recommendations(user_id: str, limit: int = Query(10, ge=1, le=50)):
            set_user_context(user_id)
            cache_key = keys.user_recommendations_key(user_id, limit)
            cached_recs = await self.cache.get_from_cache(cache_key)
            if cached_recs is not None:
                return {"recommendations": cached_recs, "cached": True}

            recommendations = await self.repository.recommendations_for_user(user_id, limit)
            if recommendations is None:
                # No history yet: trending products, kept for a shorter time
                recommendations = await self.repository.trending(limit)
                await self.cache.set_in_cache(cache_key, recommendations, keys.RECOMMENDATIONS_FALLBACK_TTL)
            else:
                await self.cache.set_in_cache(cache_key, recommendations, keys.USER_RECOMMENDATIONS_TTL)
            return {"recommendations": recommendations, "cached": False}

        @self.app.get("/api/v1/recommendations/similar/{product_id}")
        async def similar_products(product_id: str, limit: int = Query(8, ge=1, le=50)):
            similar, cached = await self.cache.get_or_load(
                keys.similar_products_key(product_id, limit),
                lambda: self.repository.similar_products(product_id, limit),
                keys.SIMILAR_PRODUCTS_TTL,
            )
            if similar is None:
                raise NotFoundError("Product", product_id)
            return {"similar_products": similar, "cached": cached}

        @self.app.get("/api/v1/recommendations/frequently-bought/{product_id}")
        async def frequently_bought(product_id: str, limit: int = Query(5, ge=1, le=20)):
            products, cached = await self.cache.get_or_load(
                keys.frequently_bought_key(product_id, limit),
                lambda: self.repository.frequently_bought_together(product_id, limit),
                keys.FREQUENTLY_BOUGHT_TTL,
            )
            if products is None:
                raise NotFoundError("Product", product_id)
            return {"frequently_bought": products, "cached": cached}

        @self.app.get("/api/v1/recommendations/feed/{user_id}")
        async def personalized_feed(user_id: str, limit: int = Query(20, ge=1, le=50)):
            set_user_context(user_id)
            feed, cached = await self.cache.get_or_load(
                keys.user_feed_key(user_id, limit),
                lambda: self.repository.personalized_feed(user_id, limit),
                keys.USER_FEED_TTL,
            )
            return {"feed": feed, "cached": cached}

        @self.app.get("/api/v1/recommendations/trending/{category}")
        async def trending_in_category(category: str, limit: int = Query(10, ge=1, le=50)):
            trending, cached = await self.cache.get_or_load(
                keys.trending_category_key(category, limit),
                lambda: self.repository.trending(limit, category=category),
                keys.TRENDING_CATEGORY_TTL,
            )
            return {"trending": trending, "cached": cached}

    def _setup_review_routes(self):
        """Set up review routes."""

        pages = APIRouter(
            prefix="/api/v1",
            route_class=cache_middleware(self.cache, ttl_seconds=REVIEW_PAGE_TTL),
        )

        @pages.get("/products/{product_id}/reviews")
        async def list_reviews(
            product_id: str,
            page: int = Query(1, ge=1),
            limit: int = Query(10, ge=1, le=50),
            sort: str = "newest",
        ):
            return await self.repository.list_reviews(product_id, page=page, limit=limit, sort=sort)

        mutations = APIRouter(
            prefix="/api/v1",
            route_class=cache_invalidator_middleware(self.cache, "/reviews"),
        )

        @mutations.post("/products/{product_id}/reviews", status_code=201)
        async def create_review(product_id: str, payload: ReviewCreate):
            review = await self.repository.add_review(product_id, payload)
            self.invalidator.trigger(MutationEvent.REVIEW_CREATED, product_id=product_id)
            return {
                "message": "Review submitted successfully. It will be published after moderation.",
                "review": review.model_dump(mode="json"),
            }

        @mutations.patch("/reviews/{review_id}/moderation")
        async def moderate_review(review_id: str, payload: ReviewModeration):
            review = await self.repository.moderate_review(review_id, payload.status)
            self.invalidator.trigger(MutationEvent.REVIEW_MODERATED, product_id=review.product_id)
            return review.model_dump(mode="json")

        self.app.include_router(pages)
        self.app.include_router(mutations)

    def _setup_wishlist_routes(self):
        """Set up wishlist routes."""

        @self.app.get("/api/v1/wishlist/{user_id}")
        async def get_wishlist(user_id: str):
            set_user_context(user_id)
            wishlist, cached = await self.cache.get_or_load(
                keys.wishlist_key(user_id),
                lambda: self.repository.get_wishlist(user_id),
                keys.WISHLIST_TTL,
            )
            return {**wishlist, "cached": cached}

        @self.app.post("/api/v1/wishlist/{user_id}/{product_id}", status_code=201)
        async def add_to_wishlist(user_id: str, product_id: str):
            set_user_context(user_id)
            item = await self.repository.add_to_wishlist(user_id, product_id)
            self.invalidator.trigger(MutationEvent.WISHLIST_CHANGED, user_id=user_id)
            return item.model_dump(mode="json")

        @self.app.delete("/api/v1/wishlist/{user_id}/{product_id}")
        async def remove_from_wishlist(user_id: str, product_id: str):
            set_user_context(user_id)
            await self.repository.remove_from_wishlist(user_id, product_id)
            self.invalidator.trigger(MutationEvent.WISHLIST_CHANGED, user_id=user_id)
            return {"message": "Removed from wishlist", "product_id": product_id}

    def _setup_cache_routes(self):
        """Set up cache administration routes."""

        @self.app.get("/api/v1/cache/stats")
        async def cache_stats() -> Dict[str, Any]:
            return self.cache.get_stats()

        @self.app.post("/api/v1/cache/clear")
        async def clear_cache(pattern: str = "*"):
            await self.cache.clear_cache(pattern)
            self.logger.info("Cache cleared by admin request", pattern=pattern)
            return {"cleared": pattern}


def create_app(**kwargs):
    """Create FastAPI application."""
    service = CatalogService(**kwargs)
    return service.app


if __name__ == "__main__":
    service = CatalogService()
    service.run()
