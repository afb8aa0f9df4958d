"""
Cache invalidation triggered by successful catalog mutations.

Callers must trigger only after the origin store has committed the change.
Clearing first would let a concurrent reader repopulate the cache with the
pre-mutation document before the commit lands.
"""

import asyncio
from enum import Enum
from typing import Any, List, Optional, TYPE_CHECKING

from shared.logging import get_logger
from . import keys

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .service import CacheService
    from shared.metrics import MetricsCollector


class MutationEvent(str, Enum):
    """Mutations that make cached catalog reads stale."""
    PRODUCT_CREATED = "product_created"
    PRODUCT_UPDATED = "product_updated"
    PRODUCT_DELETED = "product_deleted"
    REVIEW_CREATED = "review_created"
    REVIEW_MODERATED = "review_moderated"
    WISHLIST_CHANGED = "wishlist_changed"


# Reads derived from the whole catalog
CATALOG_PATTERNS = (
    f"{keys.PRODUCTS}:*",
    f"{keys.SEARCH}:*",
    f"{keys.ANALYTICS}:*",
    f"{keys.TRENDING}:*",
    f"{keys.FILTER}:*",
    f"{keys.STATS}:*",
    "GET:*/products*",
    "GET:*/search*",
)

# Reads derived from relationships between products and users
RELATION_PATTERNS = (
    f"{keys.SIMILAR}:*",
    f"{keys.FREQUENTLY_BOUGHT}:*",
    f"{keys.RECOMMENDATIONS}:*",
    f"{keys.FEED}:*",
    "GET:*/recommendations*",
)

# Reads that embed product summaries inside per-user documents
WISHLIST_PATTERNS = (
    f"{keys.WISHLIST}:*",
    "GET:*/wishlist*",
)

# Whole-response namespaces cleared by any mutation through the invalidator route
RESPONSE_PATTERNS = (
    "GET:*/products*",
)

_GLOB_CHARS = set("*?[")


def is_pattern(target: str) -> bool:
    return any(char in _GLOB_CHARS for char in target)


def invalidation_targets(
    event: MutationEvent,
    *,
    product_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> List[str]:
    """Keys and glob patterns made stale by ``event``."""
    if event == MutationEvent.PRODUCT_CREATED:
        # A new product can enter any listing, search or recommendation
        return [*CATALOG_PATTERNS, *RELATION_PATTERNS]

    if event in (
        MutationEvent.PRODUCT_UPDATED,
        MutationEvent.PRODUCT_DELETED,
        MutationEvent.REVIEW_CREATED,
        MutationEvent.REVIEW_MODERATED,
    ):
        # Reviews rewrite the product's rating and review count
        _require("product_id", product_id, event)
        return [keys.product_key(product_id), *CATALOG_PATTERNS, *RELATION_PATTERNS, *WISHLIST_PATTERNS]

    if event == MutationEvent.WISHLIST_CHANGED:
        _require("user_id", user_id, event)
        return [
            keys.wishlist_key(user_id),
            f"{keys.build_key(keys.RECOMMENDATIONS, 'user', user_id)}:*",
            f"{keys.build_key(keys.FEED, 'user', user_id)}:*",
            # Co-wishlisted products drive every product's frequently-bought list
            f"{keys.FREQUENTLY_BOUGHT}:*",
            "GET:*/wishlist*",
        ]

    raise ValueError(f"Unknown mutation event: {event}")


def response_patterns(pattern: str) -> List[str]:
    """Whole-response patterns cleared after a mutation on ``pattern`` routes."""
    targets = [f"GET:*{pattern}*"]
    targets.extend(target for target in RESPONSE_PATTERNS if target not in targets)
    return targets


def _require(name: str, value: Any, event: MutationEvent) -> None:
    if not value:
        raise ValueError(f"{event.value} invalidation requires {name}")


class CacheInvalidator:
    """Runs invalidations as detached background tasks on the cache facade."""

    def __init__(self, cache: "CacheService", metrics: Optional["MetricsCollector"] = None):
        self.cache = cache
        self.metrics = metrics
        self.logger = get_logger("catalog.cache.invalidation")

    def trigger(
        self,
        event: MutationEvent,
        *,
        product_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> asyncio.Task:
        """Schedule invalidation for ``event`` and return without waiting."""
        targets = invalidation_targets(event, product_id=product_id, user_id=user_id)
        return self.cache.schedule(
            self.invalidate(targets, event=event.value),
            name=f"invalidate:{event.value}",
        )

    def trigger_patterns(self, targets: List[str], label: str = "manual") -> asyncio.Task:
        return self.cache.schedule(self.invalidate(targets, event=label), name=f"invalidate:{label}")

    async def invalidate(self, targets: List[str], event: str = "manual") -> None:
        """Delete every literal key and clear every pattern in ``targets``."""
        for target in targets:
            if is_pattern(target):
                await self.cache.clear_cache(target)
            else:
                await self.cache.delete_from_cache(target)

        self.logger.info("Cache invalidated", mutation=event, targets=len(targets))
        if self.metrics is not None:
            self.metrics.increment_counter("cache_invalidations_total", event=event, result="ok")
