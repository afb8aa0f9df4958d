"""
Catalog caching package.

Two tiers behind one facade: Redis is authoritative when reachable, an
in-process fallback keeps hot reads working while it is not. Mutations
invalidate by key and by namespace pattern; whole JSON responses can be
cached per router.
"""

from .fallback import LocalFallbackCache
from .invalidation import CacheInvalidator, MutationEvent, invalidation_targets
from .middleware import CACHE_HEADER, cache_invalidator_middleware, cache_middleware
from .remote_store import RemoteStoreClient, RemoteStoreState
from .service import CacheService

__all__ = [
    "CACHE_HEADER",
    "CacheInvalidator",
    "CacheService",
    "LocalFallbackCache",
    "MutationEvent",
    "RemoteStoreClient",
    "RemoteStoreState",
    "cache_invalidator_middleware",
    "cache_middleware",
    "invalidation_targets",
]
