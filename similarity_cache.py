"""
Result cache for semantic similarity comparisons.

Two backends share the ResultCache contract:
- MemoryResultCache: per-process cachetools cache with per-entry TTL and LRU eviction
- RedisResultCache: shared cache through redis.asyncio for multi-worker deployments

Cache problems never surface to callers. A broken backend behaves like an
empty cache, so the analyzer simply recomputes.

Usage:
    cache = build_result_cache()
    await cache.set(fingerprint, score.to_dict(), ttl=3600)
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import cachetools
from redis.asyncio import Redis

import config
from collaborators import ResultCache


def _entry_expiry(_key: str, entry: Dict[str, Any], now: float) -> float:
    return now + entry["ttl"]


class MemoryResultCache(ResultCache):
    """
    In-process TTL cache backed by cachetools.TLRUCache.

    Each entry keeps its own TTL (the ttl passed to set(), or default_ttl).
    Once max_entries is reached the least recently used entry is evicted.
    Hit counts are kept alongside the value for get_stats().
    """

    def __init__(
        self,
        default_ttl: int = config.SIMILARITY_CACHE_TTL_SECONDS,
        max_entries: int = config.CACHE_MAX_ENTRIES,
        timer: Callable[[], float] = time.monotonic
    ):
        self.logger = logging.getLogger("change_analyzer.similarity_cache")
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._entries = cachetools.TLRUCache(
            maxsize=max_entries,
            ttu=_entry_expiry,
            timer=timer,
        )
        self._lock = asyncio.Lock()

    async def get(self, fingerprint: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                self.logger.debug(f"Cache MISS: {fingerprint}")
                return None

            entry["hits"] += 1
            self.logger.debug(f"Cache HIT: {fingerprint}")
            return entry["value"]

    async def set(self, fingerprint: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl_seconds = ttl or self.default_ttl

        async with self._lock:
            self._entries[fingerprint] = {"value": value, "ttl": ttl_seconds, "hits": 0}

        self.logger.debug(f"Cache SET: {fingerprint} (ttl: {ttl_seconds}s)")

    async def delete(self, fingerprint: str) -> None:
        async with self._lock:
            self._entries.pop(fingerprint, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    async def get_stats(self) -> Dict[str, Any]:
        """Live entry count and the ten most-hit keys."""
        async with self._lock:
            self._entries.expire()
            top_keys = sorted(
                ({"key": key, "hits": entry["hits"]} for key, entry in list(self._entries.items())),
                key=lambda item: item["hits"],
                reverse=True
            )
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "backend": "memory",
                "top_keys": top_keys[:10],
            }


class RedisResultCache(ResultCache):
    """
    Redis-backed cache storing JSON values with SETEX.

    Every Redis error is logged and treated as a miss (get) or a no-op (set).
    """

    def __init__(
        self,
        redis_url: str,
        default_ttl: int = config.SIMILARITY_CACHE_TTL_SECONDS,
        client: Optional[Redis] = None
    ):
        self.logger = logging.getLogger("change_analyzer.similarity_cache")
        self.default_ttl = default_ttl
        self._client = client or Redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        self.logger.info("Similarity cache using Redis backend")

    async def get(self, fingerprint: str) -> Optional[Any]:
        try:
            cached_json = await self._client.get(fingerprint)
        except Exception as e:
            self.logger.warning(f"Cache get failed for {fingerprint}: {e}")
            return None

        if not cached_json:
            self.logger.debug(f"Cache MISS: {fingerprint}")
            return None

        try:
            value = json.loads(cached_json)
        except ValueError as e:
            self.logger.warning(f"Discarding unreadable cache entry {fingerprint}: {e}")
            return None

        self.logger.debug(f"Cache HIT: {fingerprint}")
        return value

    async def set(self, fingerprint: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl_seconds = ttl or self.default_ttl
        try:
            await self._client.setex(fingerprint, ttl_seconds, json.dumps(value))
            self.logger.debug(f"Cache SET: {fingerprint} (ttl: {ttl_seconds}s)")
        except Exception as e:
            self.logger.warning(f"Cache set failed for {fingerprint}: {e}")

    async def delete(self, fingerprint: str) -> None:
        try:
            await self._client.delete(fingerprint)
        except Exception as e:
            self.logger.warning(f"Cache delete failed for {fingerprint}: {e}")

    async def clear(self) -> None:
        try:
            keys: List[str] = [key async for key in self._client.scan_iter(f"{config.CACHE_PREFIX}:*")]
            if keys:
                await self._client.delete(*keys)
        except Exception as e:
            self.logger.warning(f"Cache clear failed: {e}")

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            self.logger.warning(f"Error closing Redis connection: {e}")


def build_result_cache(redis_url: Optional[str] = None) -> ResultCache:
    """
    Pick the cache backend from configuration.

    Args:
        redis_url: Redis URL; defaults to config.REDIS_URL

    Returns:
        RedisResultCache when a URL is configured, MemoryResultCache otherwise
    """
    redis_url = redis_url or config.REDIS_URL
    if redis_url:
        return RedisResultCache(redis_url)
    return MemoryResultCache()
