"""Content-hash keyed cache for embeddings, backed by Redis with an in-process fallback."""

import asyncio
import hashlib
import json
import logging
import re
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import redis.asyncio as redis

from article_lens.config import get_settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "ai:embedding:"

# Longest text that contributes to the key (embedding model input limit)
MAX_KEY_TEXT_LENGTH = 8191

MEMORY_CAPACITY = 1000
MEMORY_TTL_SECONDS = 15 * 60
REDIS_TTL_SECONDS = 24 * 60 * 60

_WHITESPACE = re.compile(r"\s+")


def content_hash(text: str) -> str:
    """Key for a text: SHA-256 of its whitespace-normalized, length-capped form."""
    normalized = _WHITESPACE.sub(" ", text.strip())[:MAX_KEY_TEXT_LENGTH]
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:32]


class CacheTier(Protocol):
    """One storage level of the embedding cache."""

    name: str

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> None: ...


class MemoryCacheTier:
    """Bounded in-process map with TTL; evicts oldest insertions past capacity."""

    name = "memory"

    def __init__(self, capacity: int = MEMORY_CAPACITY, ttl: float = MEMORY_TTL_SECONDS):
        self.capacity = capacity
        self.ttl = ttl
        self._entries: dict[str, tuple[Any, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= time.monotonic():
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any) -> None:
        self.put(key, value)

    def put(self, key: str, value: Any) -> None:
        """Synchronous write, usable where awaiting is not wanted."""
        self._entries.pop(key, None)
        self._entries[key] = (value, time.monotonic() + self.ttl)
        if len(self._entries) > self.capacity:
            self._evict()

    def _evict(self) -> None:
        now = time.monotonic()
        for key in [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]:
            del self._entries[key]
        while len(self._entries) > self.capacity:
            del self._entries[next(iter(self._entries))]

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()


class RedisCacheTier:
    """Shared cache tier; values are stored as JSON under ``ai:embedding:<hash>``."""

    name = "redis"

    def __init__(self, client: redis.Redis, ttl: int = REDIS_TTL_SECONDS, prefix: str = KEY_PREFIX):
        self._client = client
        self.ttl = ttl
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheTier":
        return cls(redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Any | None:
        raw = await self._client.get(self.prefix + key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        await self._client.set(self.prefix + key, json.dumps(value), ex=self.ttl)

    async def delete(self, key: str) -> None:
        await self._client.delete(self.prefix + key)

    async def clear(self) -> None:
        keys = [k async for k in self._client.scan_iter(match=self.prefix + "*")]
        if keys:
            await self._client.delete(*keys)

    async def close(self) -> None:
        await self._client.aclose()


class TieredCache:
    """Tries each tier in order. A failing tier is logged and skipped."""

    def __init__(self, tiers: list[CacheTier]):
        self.tiers = tiers

    async def get(self, key: str) -> Any | None:
        for tier in self.tiers:
            try:
                value = await tier.get(key)
            except Exception as e:
                logger.warning("Embedding cache %s get failed, trying next tier: %s", tier.name, e)
                continue
            if value is not None:
                return value
        return None

    async def set(self, key: str, value: Any) -> None:
        for tier in self.tiers:
            try:
                await tier.set(key, value)
            except Exception as e:
                logger.warning("Embedding cache %s set failed: %s", tier.name, e)

    async def delete(self, key: str) -> None:
        for tier in self.tiers:
            try:
                await tier.delete(key)
            except Exception as e:
                logger.warning("Embedding cache %s delete failed: %s", tier.name, e)

    async def clear(self) -> None:
        for tier in self.tiers:
            try:
                await tier.clear()
            except Exception as e:
                logger.warning("Embedding cache %s clear failed: %s", tier.name, e)


class EmbeddingCache:
    """Embedding lookups keyed by content hash.

    ``get_or_compute`` records the value in process memory before returning
    and writes the remaining tiers from a background task.
    """

    def __init__(self, tiers: list[CacheTier] | None = None):
        if tiers is None:
            tiers = [MemoryCacheTier()]
        self._cache = TieredCache(tiers)
        self._memory = next((t for t in tiers if isinstance(t, MemoryCacheTier)), None)
        self._pending: set[asyncio.Task] = set()
        self._inflight: dict[str, asyncio.Future] = {}
        self.hits = 0
        self.misses = 0

    async def get(self, text: str) -> Any | None:
        value = await self._cache.get(content_hash(text))
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    async def set(self, text: str, value: Any) -> None:
        await self._cache.set(content_hash(text), value)

    async def get_or_compute(self, text: str, compute_fn: Callable[[], Awaitable[Any]]) -> Any:
        """Cached value for text, computing it at most once per key."""
        key = content_hash(text)
        cached = await self.get(text)
        if cached is not None:
            return cached

        # Concurrent misses for the same key share one computation
        inflight = self._inflight.get(key)
        if inflight is not None:
            return await asyncio.shield(inflight)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await compute_fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited failure does not warn
            future.exception()
            raise
        else:
            future.set_result(value)
        finally:
            self._inflight.pop(key, None)

        if self._memory is not None:
            self._memory.put(key, value)
        task = asyncio.create_task(self._background_set(key, value))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return value

    async def _background_set(self, key: str, value: Any) -> None:
        try:
            await self._cache.set(key, value)
        except Exception:
            logger.exception("Background embedding cache write failed")

    async def drain(self) -> None:
        """Wait for background writes to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def delete(self, text: str) -> None:
        await self._cache.delete(content_hash(text))

    async def clear_all(self) -> None:
        await self._cache.clear()

    def stats(self) -> dict:
        return {
            "tiers": [t.name for t in self._cache.tiers],
            "memory_size": len(self._memory) if self._memory is not None else 0,
            "memory_capacity": self._memory.capacity if self._memory is not None else 0,
            "hits": self.hits,
            "misses": self.misses,
            "pending_writes": len(self._pending),
        }


# Singleton instance
_cache: EmbeddingCache | None = None


def get_embedding_cache() -> EmbeddingCache:
    """Get or create the embedding cache; Redis is used when REDIS_URL is set."""
    global _cache
    if _cache is None:
        settings = get_settings()
        tiers: list[CacheTier] = []
        if settings.redis_url:
            tiers.append(RedisCacheTier.from_url(settings.redis_url))
        tiers.append(MemoryCacheTier())
        _cache = EmbeddingCache(tiers)
    return _cache
