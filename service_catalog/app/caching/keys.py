"""
Cache key builders for catalog reads.

Every key is ``<namespace>:<param>:<param>...`` with parameters in a fixed
positional order. Missing parameters serialize to an empty segment so that
"filter absent" and "filter present" never share a key. Parameter values are
percent-encoded, which keeps ``:`` and glob characters inside a value from
creating collisions or matching a wildcard invalidation by accident.
"""

from typing import Any, Iterable, Optional
from urllib.parse import quote


# Namespaces
PRODUCTS = "products"
PRODUCT = "product"
ANALYTICS = "analytics"
SEARCH = "search"
TRENDING = "trending"
RECOMMENDATIONS = "recommendations"
SIMILAR = "similar"
FREQUENTLY_BOUGHT = "frequently-bought"
FEED = "feed"
WISHLIST = "wishlist"
FILTER = "filter"
STATS = "stats"

# Default TTLs (seconds) per read shape
PRODUCT_LIST_TTL = 3600
PRODUCT_TTL = 7200
CATEGORY_ANALYTICS_TTL = 14400
SEARCH_TTL = 1800
TRENDING_PRODUCTS_TTL = 10800
TRENDING_CATEGORY_TTL = 7200
USER_RECOMMENDATIONS_TTL = 21600
RECOMMENDATIONS_FALLBACK_TTL = 3600
SIMILAR_PRODUCTS_TTL = 14400
FREQUENTLY_BOUGHT_TTL = 18000
USER_FEED_TTL = 10800
WISHLIST_TTL = 3600
FILTER_OPTIONS_TTL = 86400
PRODUCT_STATS_TTL = 21600


def encode_segment(value: Any) -> str:
    """Serialize one key parameter; None becomes the empty placeholder."""
    if value is None:
        return ""
    if isinstance(value, bool):
        value = "true" if value else "false"
    elif isinstance(value, float) and value.is_integer():
        value = int(value)
    elif isinstance(value, (list, tuple)):
        value = ",".join(str(item) for item in value)
    return quote(str(value), safe="-_.~,")


def build_key(namespace: str, *params: Any) -> str:
    """Join a namespace and positional parameters into a cache key."""
    return ":".join([namespace] + [encode_segment(param) for param in params])


def product_list_key(
    page: int = 1,
    limit: int = 12,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: str = "-createdAt",
    search: Optional[str] = None,
) -> str:
    return build_key(PRODUCTS, page, limit, category, min_price, max_price, sort, search)


def product_key(product_id: str) -> str:
    return build_key(PRODUCT, product_id)


def category_analytics_key() -> str:
    return f"{ANALYTICS}:categories"


def search_key(query: str, limit: int = 20) -> str:
    return build_key(SEARCH, query, limit)


def advanced_search_key(
    query: Optional[str] = None,
    categories: Optional[Iterable[str]] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    min_rating: Optional[float] = None,
    sort_by: str = "relevance",
    page: int = 1,
    limit: int = 20,
) -> str:
    category_list = list(categories) if categories is not None else None
    return build_key(
        SEARCH, "advanced", query, category_list, min_price, max_price, min_rating, sort_by, page, limit
    )


def trending_products_key(limit: int = 10) -> str:
    return build_key(TRENDING, "products", limit)


def trending_category_key(category: str, limit: int = 10) -> str:
    return build_key(TRENDING, "category", category, limit)


def user_recommendations_key(user_id: str, limit: int = 10) -> str:
    return build_key(RECOMMENDATIONS, "user", user_id, limit)


def similar_products_key(product_id: str, limit: int = 6) -> str:
    return build_key(SIMILAR, "product", product_id, limit)


def frequently_bought_key(product_id: str, limit: int = 5) -> str:
    return build_key(FREQUENTLY_BOUGHT, product_id, limit)


def user_feed_key(user_id: str, limit: int = 20) -> str:
    return build_key(FEED, "user", user_id, limit)


def wishlist_key(user_id: str) -> str:
    return build_key(WISHLIST, user_id)


def filter_options_key() -> str:
    return f"{FILTER}:options"


def product_stats_key() -> str:
    return f"{STATS}:products"


def response_key(method: str, url: str) -> str:
    """Whole-response key: ``METHOD:<path?query>``, as seen by the client."""
    return f"{method.upper()}:{url}"
