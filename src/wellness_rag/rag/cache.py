"""Response cache for document searches."""

import hashlib
import logging
import time
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import ValidationError

from wellness_rag.exceptions import CacheUnavailableError

from .base import BaseCacheBackend
from .document import CacheEntry, RAGResponse, SearchFilters, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600
DEFAULT_KEY_PREFIX = "rag:search:"


def normalize_query(query: str) -> str:
    """Trim, lower-case and collapse whitespace."""
    return " ".join(query.strip().lower().split())


def generate_cache_key(
    query: str,
    filters: Optional[SearchFilters] = None,
    user_id: Optional[str] = None,
    limit: Optional[int] = None,
    prefix: str = DEFAULT_KEY_PREFIX,
) -> str:
    """Derive the cache key of a search.

    Queries that differ only in case or whitespace share a key; any change in
    filters, user or limit produces a different one.
    """
    filter_string = filters.cache_fragment() if filters and not filters.is_empty() else ""
    user_string = f":user:{user_id}" if user_id else ""
    limit_string = f":limit:{limit}" if limit is not None else ""

    material = normalize_query(query) + filter_string + user_string + limit_string
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return f"{prefix}{digest[:32]}"


class MemoryCacheBackend(BaseCacheBackend):
    """In-process cache backend for testing and single-process use.

    When ``max_size`` entries are stored, the oldest one is evicted.
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set_with_ttl(self, key: str, value: str, ttl: int) -> None:
        self._data.pop(key, None)
        if self.max_size is not None and self._data and len(self._data) >= self.max_size:
            oldest = next(iter(self._data))
            del self._data[oldest]
        self._data[key] = (value, self._clock() + ttl)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def flush(self) -> None:
        self._data.clear()

    async def ping(self) -> bool:
        return True

    async def size(self) -> int:
        now = self._clock()
        return sum(1 for _, expires_at in self._data.values() if expires_at > now)


class RedisCacheBackend(BaseCacheBackend):
    """Redis cache backend.

    Every Redis error is re-raised as ``CacheUnavailableError``.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", client: Any = None):
        """Initialize Redis backend.

        Args:
            redis_url: Redis connection URL
            client: Existing redis.asyncio client to reuse (optional)
        """
        self.redis_url = redis_url
        self._client = client

    def _get_client(self):
        """Get or create Redis client."""
        if self._client is None:
            try:
                import redis.asyncio as redis
                self._client = redis.from_url(self.redis_url, decode_responses=True)
            except ImportError:
                raise ImportError(
                    "Redis backend requires 'redis'. "
                    "Install it with: pip install redis"
                )
        return self._client

    async def get(self, key: str) -> Optional[str]:
        client = self._get_client()
        try:
            return await client.get(key)
        except Exception as e:
            raise CacheUnavailableError(f"GET {key} failed: {e}") from e

    async def set_with_ttl(self, key: str, value: str, ttl: int) -> None:
        client = self._get_client()
        try:
            await client.setex(key, ttl, value)
        except Exception as e:
            raise CacheUnavailableError(f"SETEX {key} failed: {e}") from e

    async def delete(self, key: str) -> None:
        client = self._get_client()
        try:
            await client.delete(key)
        except Exception as e:
            raise CacheUnavailableError(f"DEL {key} failed: {e}") from e

    async def flush(self) -> None:
        client = self._get_client()
        try:
            await client.flushdb()
        except Exception as e:
            raise CacheUnavailableError(f"FLUSHDB failed: {e}") from e

    async def ping(self) -> bool:
        client = self._get_client()
        try:
            return bool(await client.ping())
        except Exception as e:
            raise CacheUnavailableError(f"PING failed: {e}") from e

    async def size(self) -> int:
        client = self._get_client()
        try:
            return int(await client.dbsize())
        except Exception as e:
            raise CacheUnavailableError(f"DBSIZE failed: {e}") from e


class ResponseCache:
    """TTL cache of search responses on top of a key-value backend.

    The cache never raises on backend trouble: reads degrade to a miss and
    writes to a no-op, both logged. Expired or unreadable entries are
    removed when they are read.
    """

    def __init__(
        self,
        backend: BaseCacheBackend,
        default_ttl: int = DEFAULT_TTL,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the response cache.

        Args:
            backend: Key-value backend
            default_ttl: TTL in seconds used when ``set`` gets none
            key_prefix: Prefix of generated keys
            clock: Source of the current time (for entry validity)
        """
        self.backend = backend
        self.default_ttl = default_ttl
        self.key_prefix = key_prefix
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def generate_key(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> str:
        return generate_cache_key(query, filters, user_id, limit, prefix=self.key_prefix)

    async def _discard(self, key: str) -> None:
        try:
            await self.backend.delete(key)
        except CacheUnavailableError as e:
            logger.error(f"Error deleting from cache: {e}")

    async def get(self, key: str) -> Optional[RAGResponse]:
        """Return the cached response, None on miss, expiry or error."""
        try:
            raw = await self.backend.get(key)
        except CacheUnavailableError as e:
            logger.error(f"Error getting from cache: {e}")
            self.misses += 1
            return None

        if raw is None:
            logger.debug(f"Cache miss for key: {key}")
            self.misses += 1
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Invalid cache entry format for key: {key}")
            await self._discard(key)
            self.misses += 1
            return None

        if not entry.is_valid(self._clock()):
            logger.debug(f"Cache entry expired for key: {key}")
            await self._discard(key)
            self.misses += 1
            return None

        logger.debug(f"Cache hit for key: {key}")
        self.hits += 1
        return entry.value

    async def set(self, key: str, value: RAGResponse, ttl: Optional[int] = None) -> None:
        """Store a response for ``ttl`` seconds."""
        ttl = self.default_ttl if ttl is None else ttl
        entry = CacheEntry(key=key, value=value, timestamp=self._clock(), ttl=ttl)

        try:
            await self.backend.set_with_ttl(key, entry.model_dump_json(), ttl)
            logger.debug(f"Cached response for key: {key}")
        except CacheUnavailableError as e:
            logger.error(f"Error setting cache: {e}")

    async def delete(self, key: str) -> None:
        try:
            await self.backend.delete(key)
            logger.debug(f"Deleted cache entry for key: {key}")
        except CacheUnavailableError as e:
            logger.error(f"Error deleting from cache: {e}")

    async def clear(self) -> None:
        try:
            await self.backend.flush()
            logger.info("Cache cleared")
        except CacheUnavailableError as e:
            logger.error(f"Error clearing cache: {e}")

    async def health_check(self) -> bool:
        try:
            return await self.backend.ping()
        except CacheUnavailableError as e:
            logger.error(f"Cache health check failed: {e}")
            return False

    async def get_stats(self) -> dict[str, Any]:
        """Key count and hit statistics of this cache instance."""
        try:
            total_keys = await self.backend.size()
        except CacheUnavailableError as e:
            logger.error(f"Error getting cache stats: {e}")
            total_keys = 0

        lookups = self.hits + self.misses
        return {
            "total_keys": total_keys,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }
