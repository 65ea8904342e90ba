"""
Idempotency mechanisms for order ingestion.

Critical for avoiding duplicate invoices when a sync pass is retried or when two
passes poll the same marketplace account.

The fast cache only short-circuits work. Correctness comes from the durable
invoice lookup and the (tenant_id, external_order_id) unique constraint.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

import redis

from marketplace_sync.core.logging import get_logger
from marketplace_sync.core.time import utcnow

logger = get_logger(__name__)

PROCESSED_SENTINEL = "1"
DEFAULT_TTL = timedelta(hours=24)
# How often the in-memory cache sweeps expired keys on write
CLEANUP_INTERVAL = timedelta(minutes=15)


class IdempotencyCache(Protocol):
    """Expiring key store consulted before the database."""

    def exists(self, key: str) -> bool: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...


class ProcessedOrderLookup(Protocol):
    """Durable check: has an invoice already been created for this order?"""

    def exists_for_order(self, tenant_id: str, external_order_id: str) -> bool: ...


class InMemoryIdempotencyCache:
    """
    Process-local cache with TTL.

    Suitable for a single worker and for tests; use Redis when several
    workers poll the same accounts.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        cleanup_interval: timedelta = CLEANUP_INTERVAL,
    ) -> None:
        self._clock = clock
        self._cleanup_interval = cleanup_interval
        self._store: dict[str, tuple[datetime, str]] = {}
        self._next_cleanup = clock() + cleanup_interval

    def exists(self, key: str) -> bool:
        if key not in self._store:
            return False

        expires_at, _ = self._store[key]
        if self._clock() >= expires_at:
            del self._store[key]
            return False

        return True

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        current = self._clock()
        if current >= self._next_cleanup:
            self.cleanup_expired()
            self._next_cleanup = current + self._cleanup_interval
        self._store[key] = (current + timedelta(seconds=ttl_seconds), value)

    def cleanup_expired(self) -> int:
        """
        Remove expired keys from store.

        Returns:
            Number of keys removed
        """
        current = self._clock()
        expired_keys = [key for key, (expires_at, _) in self._store.items() if expires_at <= current]

        for key in expired_keys:
            del self._store[key]

        if expired_keys:
            logger.info(f"Cleaned up {len(expired_keys)} expired idempotency keys")

        return len(expired_keys)


class RedisIdempotencyCache:
    """Redis-backed cache shared by all workers."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisIdempotencyCache":
        return cls(
            redis.Redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        )

    def exists(self, key: str) -> bool:
        return bool(self._client.exists(key))

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._client.setex(key, ttl_seconds, value)


class IdempotencyGuard:
    """
    Decides whether an external order has already produced an invoice.

    Examples:
        >>> guard = IdempotencyGuard(cache, invoice_repository, provider="allegro")
        >>> if not guard.is_duplicate(tenant_id, order.external_id):
        ...     create_invoice(...)
        ...     guard.mark_processed(order.external_id)
    """

    def __init__(
        self,
        cache: IdempotencyCache,
        invoices: ProcessedOrderLookup,
        provider: str = "allegro",
        ttl: timedelta = DEFAULT_TTL,
    ) -> None:
        self._cache = cache
        self._invoices = invoices
        self._provider = provider
        self._ttl_seconds = int(ttl.total_seconds())

    def cache_key(self, external_order_id: str) -> str:
        return f"{self._provider}:order:{external_order_id}"

    def is_duplicate(self, tenant_id: str, external_order_id: str) -> bool:
        key = self.cache_key(external_order_id)

        if self._cache_hit(key):
            logger.debug(f"Idempotency cache hit for key: {key}")
            return True

        if self._invoices.exists_for_order(tenant_id, external_order_id):
            logger.debug(
                f"Invoice already exists for order {external_order_id}",
                extra={"tenant_id": tenant_id},
            )
            return True

        return False

    def mark_processed(self, external_order_id: str) -> None:
        key = self.cache_key(external_order_id)
        try:
            self._cache.set(key, PROCESSED_SENTINEL, self._ttl_seconds)
        except redis.RedisError as e:
            logger.warning(f"Idempotency cache write failed for {key}: {e}")

    def _cache_hit(self, key: str) -> bool:
        try:
            return self._cache.exists(key)
        except redis.RedisError as e:
            # Falls through to the durable check
            logger.warning(f"Idempotency cache read failed for {key}: {e}")
            return False


def build_cache(
    backend: str, redis_url: Optional[str] = None
) -> IdempotencyCache:
    """Create the configured cache backend."""
    if backend == "redis":
        if not redis_url:
            raise ValueError("REDIS_URL is required for the redis idempotency backend")
        return RedisIdempotencyCache.from_url(redis_url)
    return InMemoryIdempotencyCache()
