"""
Two-tier cache facade: Redis first, in-process fallback when Redis is down.
"""

import asyncio
import json
import math
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple, TYPE_CHECKING

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticSerializationError, to_json

from shared.config import BaseConfig
from shared.errors import CacheConnectionError, CacheError, CacheSerializationError
from shared.logging import get_logger
from shared.retry import BackoffPolicy
from .fallback import LocalFallbackCache
from .remote_store import RemoteStoreClient, RemoteStoreState

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_TTL = 3600


class CacheService:
    """Single entry point for cached reads and writes.

    Read policy: a value found in Redis wins; a Redis *miss* is a miss even if
    the fallback still holds the key, because other processes write through
    Redis. Only a Redis *failure* consults the fallback. Writes go to both
    tiers. No method raises: failures are logged and degrade to a miss or a
    no-op, the origin store remains the source of truth.
    """

    def __init__(
        self,
        remote: RemoteStoreClient,
        fallback: Optional[LocalFallbackCache] = None,
        *,
        default_ttl: int = DEFAULT_TTL,
        operation_timeout: Optional[float] = 1.0,
        bulk_timeout: Optional[float] = 10.0,
        sweep_interval: float = 60.0,
        metrics: Optional["MetricsCollector"] = None,
        on_task_done: Optional[Callable[[asyncio.Task], None]] = None,
    ):
        self.remote = remote
        self.fallback = fallback if fallback is not None else LocalFallbackCache()
        self.default_ttl = default_ttl
        self.operation_timeout = operation_timeout
        self.bulk_timeout = bulk_timeout
        self.sweep_interval = sweep_interval
        self.metrics = metrics
        self.on_task_done = on_task_done
        self.logger = get_logger("catalog.cache")

        self._tasks: Set[asyncio.Task] = set()
        self._sweep_task: Optional[asyncio.Task] = None
        self._adapters: Dict[Any, TypeAdapter] = {}
        self._stats: Dict[str, int] = {
            "hits": 0,
            "misses": 0,
            "fallback_hits": 0,
            "remote_errors": 0,
            "serialization_errors": 0,
            "writes": 0,
            "deletes": 0,
            "clears": 0,
            "background_failures": 0,
        }

    @classmethod
    def from_config(cls, config: BaseConfig, metrics: Optional["MetricsCollector"] = None) -> "CacheService":
        """Build the facade and both tiers from service configuration."""
        remote = RemoteStoreClient(
            config.redis_connection_url(),
            BackoffPolicy.from_millis(
                config.redis_max_retries,
                config.redis_backoff_step_ms,
                config.redis_backoff_cap_ms,
            ),
            socket_timeout=config.redis_socket_timeout,
        )
        fallback = LocalFallbackCache(max_entries=config.fallback_max_entries)
        return cls(
            remote,
            fallback,
            default_ttl=config.cache_default_ttl,
            operation_timeout=config.cache_operation_timeout,
            sweep_interval=config.fallback_sweep_interval,
            metrics=metrics,
        )

    async def start(self) -> None:
        """Connect the remote tier and start the fallback sweeper."""
        connected = await self.remote.connect()
        if not connected:
            self.logger.warning("Remote cache store unavailable, serving from fallback cache only")

        if self.sweep_interval > 0 and self._sweep_task is None:
            self._sweep_task = asyncio.get_running_loop().create_task(
                self._sweep_loop(), name="fallback-cache-sweep"
            )

    async def stop(self) -> None:
        """Stop the sweeper, finish background work and close the remote tier."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        await self.drain()
        await self.remote.close()

    # Core operations

    async def get_from_cache(self, key: str, model: Any = None) -> Optional[Any]:
        """Return the cached value for ``key`` or None on a miss.

        With ``model`` (a pydantic model or any type pydantic can validate) the
        decoded value is validated and returned as that type; a value that no
        longer matches counts as a miss.
        """
        source = "remote"
        try:
            raw = await self._remote_call(self.remote.get(key))
        except Exception as exc:
            self._remote_failed("get", exc, key=key)
            raw = self.fallback.get(key)
            source = "fallback"

        if raw is None:
            self._record("get", "miss")
            return None

        try:
            value = self._decode(raw, model)
        except CacheSerializationError as exc:
            self._stats["serialization_errors"] += 1
            self.logger.warning("Discarding undecodable cache entry", key=key, source=source, error=exc.message)
            self._record("get", "serialization_error")
            return None

        if source == "fallback":
            self._record("get", "fallback_hit")
            self.logger.debug("Cache hit from fallback tier", key=key)
        else:
            self._record("get", "hit")
        return value

    async def set_in_cache(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """Write ``value`` to both tiers with the same TTL, rounded up to whole seconds."""
        ttl = self.default_ttl if ttl_seconds is None else math.ceil(ttl_seconds)
        if ttl <= 0:
            self.logger.warning("Refusing to cache with non-positive TTL", key=key, ttl=ttl)
            return

        try:
            payload = self._encode(value)
        except CacheSerializationError as exc:
            self._stats["serialization_errors"] += 1
            self.logger.warning("Value is not JSON serializable, not caching", key=key, error=exc.message)
            self._record("set", "serialization_error")
            return

        try:
            await self._remote_call(self.remote.set_with_expiry(key, ttl, payload))
        except Exception as exc:
            self._remote_failed("set", exc, key=key)

        self.fallback.set(key, payload, ttl)
        self._stats["writes"] += 1
        self._record("set", "ok")
        self._update_fallback_gauge()

    async def delete_from_cache(self, key: str) -> None:
        """Remove ``key`` from Redis (best effort) and from the fallback (always)."""
        try:
            await self._remote_call(self.remote.delete(key))
        except Exception as exc:
            self._remote_failed("delete", exc, key=key)

        self.fallback.delete(key)
        self._stats["deletes"] += 1
        self._record("delete", "ok")
        self._update_fallback_gauge()

    async def clear_cache(self, pattern: str = "*") -> None:
        """Remove every key matching a glob ``pattern`` from both tiers."""
        try:
            keys = await self._remote_call(self.remote.keys_matching(pattern), bulk=True)
            deleted = await self._remote_call(self.remote.delete_many(keys), bulk=True) if keys else 0
            self.logger.info("Cleared remote cache pattern", pattern=pattern, matched=len(keys), deleted=deleted)
        except Exception as exc:
            self._remote_failed("clear", exc, pattern=pattern)

        removed = self.fallback.delete_pattern(pattern)
        self.logger.debug("Cleared fallback cache pattern", pattern=pattern, removed=removed)
        self._stats["clears"] += 1
        self._record("clear", "ok")
        self._update_fallback_gauge()

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl_seconds: Optional[int] = None,
        model: Any = None,
    ) -> Tuple[Any, bool]:
        """Read-through helper. Returns ``(value, cached)``.

        ``loader`` queries the origin store; its errors propagate. A None
        result (nothing found) is returned but not cached.
        """
        cached = await self.get_from_cache(key, model=model)
        if cached is not None:
            return cached, True

        value = await loader()
        if value is not None:
            await self.set_in_cache(key, value, ttl_seconds)
        return value, False

    # Background work

    def schedule(self, coro: Awaitable[Any], name: Optional[str] = None) -> asyncio.Task:
        """Run ``coro`` detached from the caller; failures are logged, not raised."""
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._task_finished)
        return task

    def _task_finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            self.logger.debug("Background cache task cancelled", task=task.get_name())
        elif task.exception() is not None:
            self._stats["background_failures"] += 1
            self.logger.error(
                "Background cache task failed",
                task=task.get_name(),
                error=str(task.exception()),
            )
            self._record("background", "error")

        if self.on_task_done is not None:
            try:
                self.on_task_done(task)
            except Exception as exc:
                self.logger.error("Cache task completion hook failed", error=str(exc))

    @property
    def pending_tasks(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    async def drain(self) -> None:
        """Wait until every scheduled background task has finished."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.fallback.sweep_expired()
            self._update_fallback_gauge()

    # Introspection

    async def health_check(self) -> Dict[str, str]:
        remote_ok = await self.remote.ping()
        if remote_ok:
            remote_status = "ok"
        elif self.remote.state == RemoteStoreState.UNAVAILABLE:
            remote_status = "unavailable"
        else:
            remote_status = "error"
        return {"redis": remote_status, "fallback_cache": "ok"}

    def get_stats(self) -> Dict[str, Any]:
        lookups = self._stats["hits"] + self._stats["fallback_hits"] + self._stats["misses"]
        hit_ratio = (self._stats["hits"] + self._stats["fallback_hits"]) / lookups if lookups else 0.0
        return {
            **self._stats,
            "hit_ratio": round(hit_ratio, 4),
            "remote_state": self.remote.state.value,
            "pending_tasks": self.pending_tasks,
            "fallback": self.fallback.stats(),
        }

    # Helpers

    async def _remote_call(self, coro: Awaitable[Any], bulk: bool = False) -> Any:
        timeout = self.bulk_timeout if bulk else self.operation_timeout
        try:
            return await asyncio.wait_for(coro, timeout)
        except asyncio.TimeoutError as exc:
            raise CacheConnectionError("Remote cache operation timed out", {"timeout": timeout}) from exc

    def _remote_failed(self, operation: str, exc: Exception, **context) -> None:
        self._stats["remote_errors"] += 1
        details = exc.details if isinstance(exc, CacheError) else {}
        self.logger.warning(
            "Remote cache operation failed",
            operation=operation,
            error=str(exc),
            error_type=type(exc).__name__,
            details=details,
            **context,
        )
        self._record(operation, "remote_error")

    def _encode(self, value: Any) -> str:
        try:
            return to_json(value).decode("utf-8")
        except (PydanticSerializationError, TypeError, ValueError) as exc:
            raise CacheSerializationError(str(exc)) from exc

    def _decode(self, raw: Any, model: Any) -> Any:
        try:
            if model is None:
                return json.loads(raw)
            return self._adapter(model).validate_json(raw)
        except (TypeError, ValueError, PydanticValidationError) as exc:
            raise CacheSerializationError(str(exc)) from exc

    def _adapter(self, model: Any) -> TypeAdapter:
        adapter = self._adapters.get(model)
        if adapter is None:
            adapter = TypeAdapter(model)
            self._adapters[model] = adapter
        return adapter

    def _record(self, operation: str, result: str) -> None:
        if operation == "get":
            if result == "hit":
                self._stats["hits"] += 1
            elif result == "fallback_hit":
                self._stats["fallback_hits"] += 1
            elif result in ("miss", "serialization_error"):
                self._stats["misses"] += 1
        if self.metrics is not None:
            try:
                self.metrics.record_cache_operation(operation, result)
            except Exception as exc:  # pragma: no cover - metrics must never break caching
                self.logger.debug("Failed to record cache metric", error=str(exc))

    def _update_fallback_gauge(self) -> None:
        if self.metrics is not None:
            self.metrics.set_gauge("cache_fallback_entries", len(self.fallback))
