"""
Catalog Service package for the Storefront backend.

The catalog service answers product, search, recommendation and wishlist
reads from a two-tier cache and keeps it consistent after mutations:
- Caching: Redis as the shared tier, an in-process fallback while Redis is down
- Invalidation: key and namespace-pattern clears after committed mutations
- Response caching: opt-in per router for whole JSON responses

Structure:
- app.main: FastAPI app, routes, and cache wiring.
- app.caching: Cache facade, Redis client, fallback, keys and invalidation.
- app.catalog: Document models and the origin repository.
"""
