"""
In-process fallback cache used while the remote store is unreachable.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any, Callable, Dict, Optional, Set

from shared.logging import get_logger


_GLOB_CHARS = set("*?[\\")


@dataclass
class FallbackEntry:
    value: Any
    expires_at: float


def key_namespace(key: str) -> str:
    """Leading key segment, e.g. ``products`` for ``products:1:12``."""
    return key.split(":", 1)[0]


def pattern_namespace(pattern: str) -> Optional[str]:
    """Literal namespace a glob pattern is confined to, or None if it spans namespaces."""
    head = pattern.split(":", 1)[0]
    if any(char in _GLOB_CHARS for char in head):
        return None
    return head


class LocalFallbackCache:
    """Bounded TTL map with lazy expiry and LRU eviction.

    Each entry stores its absolute expiry time; expired entries are dropped when
    touched, and ``sweep_expired`` clears the rest. When ``max_entries`` is hit
    the least recently used entry is evicted. Keys are also indexed by namespace
    so that ``delete_pattern("products:*")`` only scans the ``products`` group.
    """

    def __init__(self, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.logger = get_logger("catalog.cache.fallback")
        self._clock = clock
        self._entries: "OrderedDict[str, FallbackEntry]" = OrderedDict()
        self._namespaces: Dict[str, Set[str]] = {}
        self.evictions = 0
        self.expirations = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.expires_at <= self._clock():
            self._remove(key)
            self.expirations += 1
            return None

        self._entries.move_to_end(key)
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            self._remove(key)
            return

        self._entries[key] = FallbackEntry(value=value, expires_at=self._clock() + ttl_seconds)
        self._entries.move_to_end(key)
        self._namespaces.setdefault(key_namespace(key), set()).add(key)

        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._unindex(evicted)
            self.evictions += 1
            self.logger.debug("Evicted least recently used fallback entry", key=evicted)

    def delete(self, key: str) -> bool:
        return self._remove(key)

    def delete_pattern(self, pattern: str) -> int:
        """Remove every key matching a Redis-style glob pattern."""
        if pattern == "*":
            count = len(self._entries)
            self.clear()
            return count

        namespace = pattern_namespace(pattern)
        if namespace is not None:
            candidates = list(self._namespaces.get(namespace, ()))
        else:
            candidates = list(self._entries.keys())

        removed = 0
        for key in candidates:
            if fnmatchcase(key, pattern) and self._remove(key):
                removed += 1
        return removed

    def clear(self) -> None:
        self._entries.clear()
        self._namespaces.clear()

    def sweep_expired(self) -> int:
        """Drop all expired entries; returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            self._remove(key)
        self.expirations += len(expired)
        if expired:
            self.logger.debug("Swept expired fallback entries", count=len(expired))
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "namespaces": {name: len(keys) for name, keys in self._namespaces.items()},
            "evictions": self.evictions,
            "expirations": self.expirations,
        }

    def _remove(self, key: str) -> bool:
        if self._entries.pop(key, None) is None:
            return False
        self._unindex(key)
        return True

    def _unindex(self, key: str) -> None:
        namespace = key_namespace(key)
        keys = self._namespaces.get(namespace)
        if keys is None:
            return
        keys.discard(key)
        if not keys:
            del self._namespaces[namespace]
