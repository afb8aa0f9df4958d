"""
Test helper functions and factory methods for the Storefront backend.
"""

import uuid
from datetime import datetime, timedelta, timezone
from fnmatch import fnmatchcase
from typing import Any, Dict, List, Optional, Sequence, Tuple

from shared.errors import CacheConnectionError
from service_catalog.app.caching.remote_store import RemoteStoreState


class ProductFactory:
    """Factory for catalog product documents."""

    BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)

    @staticmethod
    def create_product(**overrides) -> Dict[str, Any]:
        """Create one product document; any field can be overridden."""
        product = {
            "id": uuid.uuid4().hex,
            "name": "Test Product",
            "description": "A product used in tests",
            "price": 49.99,
            "category": "electronics",
            "images": [],
            "tags": [],
            "rating": 4.0,
            "reviews_count": 10,
            "in_stock": True,
            "stock": 25,
            "created_at": ProductFactory.BASE_TIME,
            "updated_at": ProductFactory.BASE_TIME,
        }
        product.update(overrides)
        return product

    @staticmethod
    def create_test_products() -> List[Dict[str, Any]]:
        """A small catalog spread over three categories."""
        base = ProductFactory.BASE_TIME
        return [
            ProductFactory.create_product(
                id="p-headphones", name="Wireless Headphones", price=79.99, category="electronics",
                tags=["audio", "wireless"], rating=4.5, reviews_count=120, created_at=base,
            ),
            ProductFactory.create_product(
                id="p-speaker", name="Bluetooth Speaker", price=59.0, category="electronics",
                tags=["audio"], rating=4.1, reviews_count=80, created_at=base + timedelta(days=1),
            ),
            ProductFactory.create_product(
                id="p-charger", name="USB Charger", price=19.5, category="electronics",
                tags=["power"], rating=3.9, reviews_count=15, created_at=base + timedelta(days=2),
            ),
            ProductFactory.create_product(
                id="p-laptop", name="Ultrabook Laptop", price=1299.0, category="electronics",
                tags=["computer"], rating=4.7, reviews_count=60, created_at=base + timedelta(days=3),
            ),
            ProductFactory.create_product(
                id="p-novel", name="Mystery Novel", price=12.99, category="books",
                tags=["fiction"], rating=4.3, reviews_count=40, created_at=base + timedelta(days=4),
            ),
            ProductFactory.create_product(
                id="p-cookbook", name="Pasta Cookbook", price=24.0, category="books",
                tags=["cooking"], rating=4.6, reviews_count=22, created_at=base + timedelta(days=5),
            ),
            ProductFactory.create_product(
                id="p-mug", name="Ceramic Mug", price=9.5, category="kitchen",
                tags=["coffee"], rating=3.5, reviews_count=5, in_stock=False, stock=0,
                created_at=base + timedelta(days=6),
            ),
        ]


class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryRemoteStore:
    """Stand-in for ``RemoteStoreClient`` backed by a dict.

    Expiry follows the given clock. Setting ``fail`` makes every operation
    raise ``CacheConnectionError`` as a lost Redis connection would.
    """

    def __init__(self, clock: Optional[ManualClock] = None, connected: bool = True):
        self.clock = clock or ManualClock()
        self.fail = False
        self.calls: List[Tuple[str, Any]] = []
        self.connect_calls = 0
        self.closed = False
        self._data: Dict[str, Tuple[str, float]] = {}
        self._state = RemoteStoreState.CONNECTED if connected else RemoteStoreState.UNAVAILABLE

    @property
    def state(self) -> RemoteStoreState:
        return self._state

    @property
    def is_available(self) -> bool:
        return self._state == RemoteStoreState.CONNECTED

    def go_down(self) -> None:
        self.fail = True

    def come_back(self) -> None:
        self.fail = False
        self._state = RemoteStoreState.CONNECTED

    def raw(self, key: str) -> Optional[str]:
        """Stored value without expiry checks or call recording."""
        entry = self._data.get(key)
        return entry[0] if entry else None

    def ttl(self, key: str) -> Optional[float]:
        entry = self._data.get(key)
        return entry[1] - self.clock() if entry else None

    async def connect(self) -> bool:
        self.connect_calls += 1
        return self._state == RemoteStoreState.CONNECTED

    async def get(self, key: str) -> Optional[str]:
        self._check("get", key)
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self.clock():
            del self._data[key]
            return None
        return value

    async def set_with_expiry(self, key: str, ttl_seconds: int, value: str) -> None:
        self._check("set", key)
        self._data[key] = (value, self.clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._check("delete", key)
        self._data.pop(key, None)

    async def keys_matching(self, pattern: str) -> List[str]:
        self._check("scan", pattern)
        return [key for key in self._data if fnmatchcase(key, pattern)]

    async def delete_many(self, keys: Sequence[str]) -> int:
        self._check("delete_many", list(keys))
        return sum(1 for key in keys if self._data.pop(key, None) is not None)

    async def ping(self) -> bool:
        return not self.fail and self._state == RemoteStoreState.CONNECTED

    async def close(self) -> None:
        self.closed = True

    def _check(self, operation: str, argument: Any) -> None:
        self.calls.append((operation, argument))
        if self.fail or self._state != RemoteStoreState.CONNECTED:
            raise CacheConnectionError("Remote cache store not connected", {"operation": operation})


# Global instances for easy access
product_factory = ProductFactory()
