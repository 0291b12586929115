"""Redis cache port (fail-open).

Any Redis error must NOT break a read or a write:
- every operation catches its own backend exception, logs it with the key,
  flips this instance to unhealthy and returns a miss/void;
- while disabled or unhealthy nothing reaches the backend;
- only ``is_healthy()`` (startup self-test and health probe) talks to the
  backend while unhealthy, and flips the state back on success.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from fastapi.encoders import jsonable_encoder

from lms_content.cache.keys import key_matches
from lms_content.core.app_exceptions import CacheUnavailableError
from lms_content.core.config import Settings, settings
from lms_content.core.logging import get_logger
from lms_content.core.redis_client import get_redis_client

logger = get_logger(__name__)

HEALTH_CHECK_KEY = "health-check"
HEALTH_CHECK_TTL = 10
DELETE_BATCH = 200


@dataclass
class CacheHealth:
    """Health state owned by one CacheService instance."""

    healthy: bool = True
    last_error: str | None = None
    last_exception: CacheUnavailableError | None = None
    last_failure_at: datetime | None = field(default=None)

    def mark_unhealthy(self, error: str, exception: CacheUnavailableError | None = None) -> None:
        self.healthy = False
        self.last_error = error
        self.last_exception = exception
        self.last_failure_at = datetime.now(timezone.utc)

    def mark_healthy(self) -> None:
        self.healthy = True
        self.last_error = None
        self.last_exception = None


class CacheService:
    """get/set/delete/delete_pattern/clear over a ``redis.asyncio`` client."""

    def __init__(
        self,
        client: Any | None,
        *,
        enabled: bool = True,
        default_ttl: int = 3600,
        scan_batch: int = 500,
        single_flight: bool = False,
        health: CacheHealth | None = None,
    ):
        self._client = client
        self._enabled = enabled
        self.default_ttl = default_ttl
        self._scan_batch = scan_batch
        self._single_flight = single_flight
        self._inflight: dict[str, asyncio.Task] = {}
        self.health = health or CacheHealth()

    @property
    def enabled(self) -> bool:
        return self._enabled and self._client is not None

    @property
    def available(self) -> bool:
        return self.enabled and self.health.healthy

    def _fail(self, operation: str, target: str, exc: Exception) -> None:
        error = CacheUnavailableError(operation, target, exc)
        error.__cause__ = exc
        self.health.mark_unhealthy(str(exc), error)
        logger.warning(
            f"redis_{operation}_failed",
            extra={"event": f"redis_{operation}_failed", "key": target, "operation": operation},
            exc_info=error,
        )

    async def get(self, key: str) -> Any | None:
        if not self.available:
            return None
        try:
            raw = await self._client.get(key)
        except Exception as e:
            self._fail("get", key, e)
            return None
        if raw is None:
            logger.debug("cache_miss", extra={"event": "cache_miss", "key": key})
            return None
        try:
            value = json.loads(raw)
        except ValueError as e:
            # Corrupt entry: drop it and fall through to the store
            logger.warning("cache_decode_failed", extra={"event": "cache_decode_failed", "key": key, "error": str(e)})
            await self.delete(key)
            return None
        logger.debug("cache_hit", extra={"event": "cache_hit", "key": key})
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        if not self.available:
            return False
        ttl = self.default_ttl if ttl_seconds is None else int(ttl_seconds)
        if ttl <= 0:
            # Already expired: make sure no older value survives
            await self.delete(key)
            return False
        try:
            payload = json.dumps(jsonable_encoder(value))
            await self._client.set(key, payload, ex=ttl)
        except Exception as e:
            self._fail("set", key, e)
            return False
        return True

    async def delete(self, key: str) -> None:
        if not self.available:
            return
        try:
            await self._client.delete(key)
        except Exception as e:
            self._fail("delete", key, e)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching ``pattern`` (see ``keys.key_matches``).

        The backend is not assumed to support glob deletion, so this walks the
        whole keyspace: O(total keys) per call, bounded by the catalog size.
        """
        if not self.available:
            return 0
        matched: list[str] = []
        try:
            async for key in self._client.scan_iter(count=self._scan_batch):
                if isinstance(key, bytes):
                    key = key.decode()
                if key_matches(key, pattern):
                    matched.append(key)
            for start in range(0, len(matched), DELETE_BATCH):
                await self._client.delete(*matched[start : start + DELETE_BATCH])
        except Exception as e:
            self._fail("delete_pattern", pattern, e)
            return 0
        logger.debug(
            "cache_delete_pattern",
            extra={"event": "cache_delete_pattern", "pattern": pattern, "deleted": len(matched)},
        )
        return len(matched)

    async def clear(self) -> None:
        if not self.available:
            return
        try:
            await self._client.flushdb()
        except Exception as e:
            self._fail("clear", "*", e)

    async def get_or_set(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl_seconds: int | None = None,
    ) -> Any:
        """Read-through helper. ``loader`` must return a JSON-compatible value."""
        cached = await self.get(key)
        if cached is not None:
            return cached
        if not self._single_flight:
            return await self._load_and_store(key, loader, ttl_seconds)

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load_and_store(key, loader, ttl_seconds))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def _load_and_store(
        self, key: str, loader: Callable[[], Awaitable[Any]], ttl_seconds: int | None
    ) -> Any:
        value = jsonable_encoder(await loader())
        await self.set(key, value, ttl_seconds)
        return value

    async def is_healthy(self) -> bool:
        """Round-trip a sentinel key; flips the health state either way."""
        if not self.enabled:
            return False
        try:
            await self._client.set(HEALTH_CHECK_KEY, "ok", ex=HEALTH_CHECK_TTL)
            result = await self._client.get(HEALTH_CHECK_KEY)
            await self._client.delete(HEALTH_CHECK_KEY)
        except Exception as e:
            self._fail("health_check", HEALTH_CHECK_KEY, e)
            return False
        if isinstance(result, bytes):
            result = result.decode()
        if result != "ok":
            self.health.mark_unhealthy(f"sentinel mismatch: {result!r}")
            return False
        if not self.health.healthy:
            logger.info("cache_recovered", extra={"event": "cache_recovered"})
        self.health.mark_healthy()
        return True


def build_cache_service(config: Settings = settings, client: Any | None = None) -> CacheService:
    """CacheService wired from settings. ``client`` defaults to the shared pool."""
    if client is None and config.CACHE_ENABLED:
        client = get_redis_client()
    return CacheService(
        client,
        enabled=config.CACHE_ENABLED,
        default_ttl=config.CACHE_DEFAULT_TTL,
        scan_batch=config.CACHE_SCAN_BATCH,
        single_flight=config.CACHE_SINGLE_FLIGHT,
    )
