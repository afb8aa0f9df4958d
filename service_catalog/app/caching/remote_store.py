"""
Redis client wrapper for the shared remote cache tier.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from shared.errors import CacheConnectionError, CacheError
from shared.logging import get_logger
from shared.retry import BackoffPolicy


_CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError, asyncio.TimeoutError)
_OPERATION_ERRORS = (RedisError,) + _CONNECTION_ERRORS

DELETE_BATCH_SIZE = 500


class RemoteStoreState(Enum):
    """Connection lifecycle of the remote store client."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    UNAVAILABLE = "unavailable"  # retry budget exhausted, calls fail fast


class RemoteStoreClient:
    """Connection to the shared Redis cache store.

    Retries happen at the connection level only: ``connect()`` and the
    background reconnect loop back off between attempts and give up once the
    policy's attempt budget is spent. Individual operations are never retried;
    any driver failure is raised as ``CacheConnectionError`` (or ``CacheError``
    for non-connectivity errors) for the cache facade to absorb.
    """

    def __init__(
        self,
        redis_url: str,
        backoff: Optional[BackoffPolicy] = None,
        *,
        socket_timeout: float = 5.0,
        scan_count: int = 500,
        auto_reconnect: bool = True,
        redis_factory: Optional[Callable[[], Any]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.redis_url = redis_url
        self.backoff = backoff or BackoffPolicy()
        self.socket_timeout = socket_timeout
        self.scan_count = scan_count
        self.auto_reconnect = auto_reconnect
        self.logger = get_logger("catalog.cache.remote")

        self._redis_factory = redis_factory or self._default_factory
        self._sleep = sleep
        self._redis: Optional[redis.Redis] = None
        self._state = RemoteStoreState.DISCONNECTED
        self._connect_lock = asyncio.Lock()
        self._reconnect_task: Optional[asyncio.Task] = None

    def _default_factory(self) -> redis.Redis:
        return redis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=self.socket_timeout,
            socket_timeout=self.socket_timeout,
            # Reconnects are handled here, not per command
            retry=Retry(NoBackoff(), 0),
        )

    @property
    def state(self) -> RemoteStoreState:
        return self._state

    @property
    def is_available(self) -> bool:
        return self._state == RemoteStoreState.CONNECTED

    async def connect(self) -> bool:
        """Connect with backoff. Returns False once the retry budget is spent."""
        if self._state == RemoteStoreState.UNAVAILABLE:
            return False
        if self._state == RemoteStoreState.CONNECTED:
            return True

        async with self._connect_lock:
            if self._state == RemoteStoreState.CONNECTED:
                return True
            return await self._connect_with_backoff()

    async def _connect_with_backoff(self) -> bool:
        self._state = RemoteStoreState.CONNECTING
        attempt = 0

        while True:
            attempt += 1
            try:
                if self._redis is None:
                    self._redis = self._redis_factory()
                await self._redis.ping()
            except _OPERATION_ERRORS as exc:
                if self.backoff.exhausted(attempt):
                    self._state = RemoteStoreState.UNAVAILABLE
                    self.logger.error(
                        "Remote cache store retry budget exhausted, giving up",
                        attempts=attempt,
                        backoff=self.backoff.to_dict(),
                        error=str(exc),
                    )
                    return False

                delay = self.backoff.delay(attempt)
                self.logger.warning(
                    "Remote cache store connection failed, retrying",
                    attempt=attempt,
                    max_attempts=self.backoff.max_attempts,
                    delay=delay,
                    error=str(exc),
                )
                await self._sleep(delay)
            else:
                self._state = RemoteStoreState.CONNECTED
                self.logger.info("Remote cache store connected", attempts=attempt)
                return True

    def _schedule_reconnect(self) -> None:
        if not self.auto_reconnect or self._state == RemoteStoreState.UNAVAILABLE:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return

        self._state = RemoteStoreState.DISCONNECTED
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:  # pragma: no cover - operations always run inside a loop
            return
        self._reconnect_task = loop.create_task(self._reconnect(), name="remote-cache-reconnect")

    async def _reconnect(self) -> None:
        async with self._connect_lock:
            if self._state in (RemoteStoreState.CONNECTED, RemoteStoreState.UNAVAILABLE):
                return
            self.logger.info("Reconnecting to remote cache store")
            await self._connect_with_backoff()

    def _require_client(self, operation: str) -> redis.Redis:
        if self._state == RemoteStoreState.UNAVAILABLE:
            raise CacheConnectionError(
                "Remote cache store gave up reconnecting",
                {"operation": operation, "state": self._state.value},
            )
        if self._state != RemoteStoreState.CONNECTED or self._redis is None:
            raise CacheConnectionError(
                "Remote cache store not connected",
                {"operation": operation, "state": self._state.value},
            )
        return self._redis

    def _translate(self, operation: str, exc: Exception, **details) -> CacheError:
        if isinstance(exc, _CONNECTION_ERRORS):
            self.logger.error("Remote cache store connection lost", operation=operation, error=str(exc))
            self._schedule_reconnect()
            return CacheConnectionError(str(exc) or "Remote cache store connection lost", {"operation": operation, **details})
        return CacheError(message=str(exc), details={"operation": operation, **details})

    async def get(self, key: str) -> Optional[str]:
        client = self._require_client("get")
        try:
            return await client.get(key)
        except _OPERATION_ERRORS as exc:
            raise self._translate("get", exc, key=key) from exc

    async def set_with_expiry(self, key: str, ttl_seconds: int, value: str) -> None:
        client = self._require_client("set")
        try:
            await client.setex(key, ttl_seconds, value)
        except _OPERATION_ERRORS as exc:
            raise self._translate("set", exc, key=key) from exc

    async def delete(self, key: str) -> None:
        client = self._require_client("delete")
        try:
            await client.delete(key)
        except _OPERATION_ERRORS as exc:
            raise self._translate("delete", exc, key=key) from exc

    async def keys_matching(self, pattern: str) -> List[str]:
        """Resolve a glob pattern with SCAN so the server is never blocked by KEYS."""
        client = self._require_client("scan")
        keys: List[str] = []
        try:
            async for key in client.scan_iter(match=pattern, count=self.scan_count):
                keys.append(key)
        except _OPERATION_ERRORS as exc:
            raise self._translate("scan", exc, pattern=pattern) from exc
        return keys

    async def delete_many(self, keys: Sequence[str]) -> int:
        """Delete keys in batches; returns how many existed and were removed."""
        if not keys:
            return 0

        client = self._require_client("delete_many")
        deleted = 0
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = list(keys[start:start + DELETE_BATCH_SIZE])
            try:
                deleted += int(await client.delete(*batch))
            except _OPERATION_ERRORS as exc:
                raise self._translate(
                    "delete_many", exc, deleted=deleted, requested=len(keys)
                ) from exc
        return deleted

    async def ping(self) -> bool:
        """Health check; never raises."""
        if self._state != RemoteStoreState.CONNECTED or self._redis is None:
            return False
        try:
            return bool(await self._redis.ping())
        except _OPERATION_ERRORS as exc:
            self._translate("ping", exc)
            return False

    async def close(self) -> None:
        """Stop reconnecting and release the connection pool."""
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        self._reconnect_task = None

        if self._redis is not None:
            try:
                await self._redis.aclose()
            except _OPERATION_ERRORS as exc:  # pragma: no cover - close is best effort
                self.logger.debug("Error closing remote cache store", error=str(exc))
            self._redis = None

        if self._state != RemoteStoreState.UNAVAILABLE:
            self._state = RemoteStoreState.DISCONNECTED
        self.logger.info("Remote cache store closed")
