"""
Whole-response caching for idempotent routes.

Both factories return an ``APIRoute`` subclass, so caching is opted into per
router::

    router = APIRouter(route_class=cache_middleware(cache, ttl_seconds=600))
"""

import json
from typing import Callable, Coroutine, Any, Type, TYPE_CHECKING

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from shared.logging import get_logger
from .invalidation import CacheInvalidator, response_patterns
from .keys import response_key

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .service import CacheService


CACHE_HEADER = "X-Cache"
BYPASS_PARAM = "noCache"

RouteHandler = Callable[[Request], Coroutine[Any, Any, Response]]

logger = get_logger("catalog.cache.middleware")


def original_url(request: Request) -> str:
    """Path plus query string as sent by the client."""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def _is_success(response: Response) -> bool:
    return 200 <= response.status_code < 300


def _json_body(response: Response) -> Any:
    media_type = response.media_type or response.headers.get("content-type", "")
    body = getattr(response, "body", None)
    if body is None or "json" not in media_type:
        return None
    return json.loads(body)


def cache_middleware(cache: "CacheService", ttl_seconds: int = 3600) -> Type[APIRoute]:
    """Route class that serves GET responses from the cache facade.

    Non-GET requests and requests with ``?noCache=true`` go straight to the
    handler. A hit skips the handler and answers with ``X-Cache: HIT``. On a
    miss, 2xx JSON bodies are written to the cache in the background and the
    response carries ``X-Cache: MISS``; other statuses pass through untagged
    and are never cached.
    """

    class CachedResponseRoute(APIRoute):
        def get_route_handler(self) -> RouteHandler:
            handler = super().get_route_handler()

            async def cached_handler(request: Request) -> Response:
                if request.method != "GET" or request.query_params.get(BYPASS_PARAM) == "true":
                    return await handler(request)

                key = response_key(request.method, original_url(request))
                try:
                    cached = await cache.get_from_cache(key)
                except Exception as exc:
                    logger.error("Response cache lookup failed", key=key, error=str(exc))
                    cached = None

                if cached is not None:
                    return JSONResponse(content=cached, headers={CACHE_HEADER: "HIT"})

                response = await handler(request)
                if not _is_success(response):
                    return response

                try:
                    payload = _json_body(response)
                except ValueError as exc:
                    logger.warning("Response body is not valid JSON, not caching", key=key, error=str(exc))
                    payload = None
                if payload is not None:
                    cache.schedule(
                        cache.set_in_cache(key, payload, ttl_seconds),
                        name=f"cache-response:{key}",
                    )
                response.headers[CACHE_HEADER] = "MISS"
                return response

            return cached_handler

    return CachedResponseRoute


def cache_invalidator_middleware(cache: "CacheService", pattern: str) -> Type[APIRoute]:
    """Route class that clears cached responses after a successful mutation."""
    invalidator = CacheInvalidator(cache)
    targets = response_patterns(pattern)

    class InvalidatingRoute(APIRoute):
        def get_route_handler(self) -> RouteHandler:
            handler = super().get_route_handler()

            async def invalidating_handler(request: Request) -> Response:
                response = await handler(request)
                if _is_success(response):
                    invalidator.trigger_patterns(targets, label=f"route:{pattern}")
                return response

            return invalidating_handler

    return InvalidatingRoute
