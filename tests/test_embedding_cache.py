"""Tests for the embedding cache and the cached text embedder."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
import pytest

from article_lens.services.embedder import TextEmbedder
from article_lens.services.embedding_cache import (
    KEY_PREFIX,
    REDIS_TTL_SECONDS,
    EmbeddingCache,
    MemoryCacheTier,
    RedisCacheTier,
    content_hash,
)


class FailingTier:
    """A tier whose backend is unreachable."""

    name = "redis"

    async def get(self, key):
        raise ConnectionError("connection refused")

    async def set(self, key, value):
        raise ConnectionError("connection refused")

    async def delete(self, key):
        raise ConnectionError("connection refused")

    async def clear(self):
        raise ConnectionError("connection refused")


def _counting(value):
    calls = {"n": 0}

    async def compute():
        calls["n"] += 1
        await asyncio.sleep(0.01)
        return value

    return compute, calls


# ---------------------------------------------------------------------------
# 1. Keys
# ---------------------------------------------------------------------------


class TestContentHash:
    def test_whitespace_normalized(self):
        assert content_hash("hello   world\n") == content_hash("  hello world")

    def test_distinct_texts(self):
        assert content_hash("a") != content_hash("b")

    def test_length(self):
        assert len(content_hash("anything")) == 32

    def test_long_texts_share_capped_prefix(self):
        base = "x" * 8191
        assert content_hash(base + "tail one") == content_hash(base + "tail two")


# ---------------------------------------------------------------------------
# 2. Memory tier
# ---------------------------------------------------------------------------


class TestMemoryTier:
    async def test_round_trip(self):
        tier = MemoryCacheTier()
        await tier.set("k", [1.0])
        assert await tier.get("k") == [1.0]

    async def test_expired_entries_miss(self):
        tier = MemoryCacheTier(ttl=0)
        tier.put("k", [1.0])
        assert await tier.get("k") is None
        assert len(tier) == 0

    async def test_evicts_oldest_past_capacity(self):
        tier = MemoryCacheTier(capacity=2)
        for key in ("a", "b", "c"):
            tier.put(key, key)
        assert await tier.get("a") is None
        assert await tier.get("c") == "c"
        assert len(tier) == 2


# ---------------------------------------------------------------------------
# 3. Redis tier
# ---------------------------------------------------------------------------


class TestRedisTier:
    async def test_set_uses_prefix_and_ttl(self):
        client = AsyncMock()
        await RedisCacheTier(client).set("abc", [0.5, 0.25])
        client.set.assert_awaited_once_with(KEY_PREFIX + "abc", json.dumps([0.5, 0.25]), ex=REDIS_TTL_SECONDS)

    async def test_get_decodes_json(self):
        client = AsyncMock()
        client.get.return_value = "[1.0, 2.0]"
        assert await RedisCacheTier(client).get("abc") == [1.0, 2.0]

    async def test_get_miss(self):
        client = AsyncMock()
        client.get.return_value = None
        assert await RedisCacheTier(client).get("abc") is None

    async def test_clear_deletes_prefixed_keys(self):
        async def scan(match):
            for key in (KEY_PREFIX + "a", KEY_PREFIX + "b"):
                yield key

        client = AsyncMock()
        client.scan_iter = MagicMock(side_effect=scan)
        await RedisCacheTier(client).clear()

        client.scan_iter.assert_called_once_with(match=KEY_PREFIX + "*")
        client.delete.assert_awaited_once_with(KEY_PREFIX + "a", KEY_PREFIX + "b")


# ---------------------------------------------------------------------------
# 4. EmbeddingCache
# ---------------------------------------------------------------------------


class TestEmbeddingCache:
    async def test_compute_called_once(self):
        cache = EmbeddingCache()
        compute, calls = _counting([0.1, 0.2])

        first = await cache.get_or_compute("some text", compute)
        second = await cache.get_or_compute("some text", compute)

        assert first == second == [0.1, 0.2]
        assert calls["n"] == 1

    async def test_concurrent_misses_share_computation(self):
        cache = EmbeddingCache()
        compute, calls = _counting([0.3])

        results = await asyncio.gather(*(cache.get_or_compute("same text", compute) for _ in range(5)))

        assert results == [[0.3]] * 5
        assert calls["n"] == 1

    async def test_failing_tier_degrades_to_memory(self):
        cache = EmbeddingCache([FailingTier(), MemoryCacheTier()])
        compute, calls = _counting([0.7])

        assert await cache.get_or_compute("text", compute) == [0.7]
        await cache.drain()
        assert await cache.get_or_compute("text", compute) == [0.7]
        assert calls["n"] == 1

    async def test_compute_error_propagates_and_is_not_cached(self):
        cache = EmbeddingCache()

        async def broken():
            raise ValueError("model exploded")

        with pytest.raises(ValueError):
            await cache.get_or_compute("text", broken)

        compute, calls = _counting([1.0])
        assert await cache.get_or_compute("text", compute) == [1.0]
        assert calls["n"] == 1

    async def test_background_write_reaches_other_tiers(self):
        shared = MemoryCacheTier()
        cache = EmbeddingCache([shared])
        compute, _ = _counting([0.9])
        await cache.get_or_compute("text", compute)
        await cache.drain()

        other_process = EmbeddingCache([shared])
        assert await other_process.get("text") == [0.9]

    async def test_delete_and_clear(self):
        cache = EmbeddingCache()
        await cache.set("a", [1])
        await cache.set("b", [2])

        await cache.delete("a")
        assert await cache.get("a") is None
        await cache.clear_all()
        assert await cache.get("b") is None

    async def test_stats(self):
        cache = EmbeddingCache()
        compute, _ = _counting([1.0])
        await cache.get_or_compute("text", compute)
        await cache.get("text")

        stats = cache.stats()
        assert stats["tiers"] == ["memory"]
        assert stats["memory_size"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1


# ---------------------------------------------------------------------------
# 5. TextEmbedder
# ---------------------------------------------------------------------------


class TestTextEmbedder:
    async def test_embeds_through_cache(self):
        with patch("article_lens.services.embedder.SentenceTransformer") as mock_cls:
            mock_cls.return_value.encode.return_value = np.array([[0.1, 0.2, 0.3]])
            embedder = TextEmbedder(cache=EmbeddingCache())

            first = await embedder.embed("Tokio uses work stealing")
            second = await embedder.embed("Tokio uses work stealing")

        assert first == second
        assert first == pytest.approx([0.1, 0.2, 0.3])
        mock_cls.return_value.encode.assert_called_once()
        prefixed = mock_cls.return_value.encode.call_args.args[0]
        assert prefixed == ["clustering: Tokio uses work stealing"]

    async def test_embed_many_returns_matrix(self):
        with patch("article_lens.services.embedder.SentenceTransformer") as mock_cls:
            mock_cls.return_value.encode.return_value = np.array([[1.0, 0.0]])
            matrix = await TextEmbedder(cache=EmbeddingCache()).embed_many(["a", "b", "c"])

        assert matrix.shape == (3, 2)
