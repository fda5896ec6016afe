"""Cache manager for hybrid search results and query embeddings."""

import hashlib
import json
import time
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
import structlog

logger = structlog.get_logger("search_service.cache")


class SearchCacheManager:
    """Manages caching for search operations.

    Every Redis failure is logged and reported as a miss; the cache must
    never be the reason a search fails.
    """

    def __init__(
        self,
        redis_url: str,
        embedding_cache_ttl: int = 3600,  # 1 hour
        result_cache_ttl: int = 600,      # 10 minutes
        redis_client: Optional[Any] = None
    ):
        self.redis_client = redis_client if redis_client is not None else redis.from_url(redis_url)
        self.embedding_cache_ttl = embedding_cache_ttl
        self.result_cache_ttl = result_cache_ttl

        # Cache key prefixes
        self.embedding_prefix = "search:embedding:"
        self.result_prefix = "search:result:"

    def _generate_cache_key(self, prefix: str, data: Any) -> str:
        """Generate cache key from data."""
        if isinstance(data, dict):
            # Sort keys for consistent hashing
            serialized = json.dumps(data, sort_keys=True)
        else:
            serialized = str(data)

        hash_obj = hashlib.md5(serialized.encode())
        return f"{prefix}{hash_obj.hexdigest()}"

    async def get_cached_query_embedding(self, query: str, model: str) -> Optional[List[float]]:
        """Get cached query embedding."""
        try:
            cache_key = self._generate_cache_key(self.embedding_prefix, {"query": query, "model": model})
            cached_data = await self.redis_client.get(cache_key)

            if cached_data:
                logger.debug("Query embedding cache hit", query=query)
                return json.loads(cached_data)["embedding"]

            logger.debug("Query embedding cache miss", query=query)
            return None

        except Exception as e:
            logger.warning("Failed to get cached query embedding", error=str(e))
            return None

    async def cache_query_embedding(self, query: str, model: str, embedding: List[float]) -> None:
        """Cache query embedding."""
        try:
            cache_key = self._generate_cache_key(self.embedding_prefix, {"query": query, "model": model})
            cache_data = {
                "query": query,
                "model": model,
                "embedding": embedding,
                "cached_at": time.time()
            }

            await self.redis_client.setex(
                cache_key,
                self.embedding_cache_ttl,
                json.dumps(cache_data)
            )

        except Exception as e:
            logger.warning("Failed to cache query embedding", error=str(e))

    async def get_cached_search_results(self, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Get a cached search payload for the given request parameters."""
        try:
            cache_key = self._generate_cache_key(self.result_prefix, params)
            cached_data = await self.redis_client.get(cache_key)

            if cached_data:
                logger.debug("Search results cache hit", query=params.get("query"))
                return json.loads(cached_data)["payload"]

            return None

        except Exception as e:
            logger.warning("Failed to get cached search results", error=str(e))
            return None

    async def cache_search_results(self, params: Dict[str, Any], payload: Dict[str, Any]) -> None:
        """Cache a search payload keyed by the request parameters."""
        try:
            cache_key = self._generate_cache_key(self.result_prefix, params)
            await self.redis_client.setex(
                cache_key,
                self.result_cache_ttl,
                json.dumps({"payload": payload, "cached_at": time.time()}, default=str)
            )

        except Exception as e:
            logger.warning("Failed to cache search results", error=str(e))

    async def invalidate_results(self) -> int:
        """Drop every cached search payload (e.g. after reindexing)."""
        try:
            keys = [key async for key in self.redis_client.scan_iter(match=f"{self.result_prefix}*")]
            deleted = await self.redis_client.delete(*keys) if keys else 0
            logger.info("Search result cache invalidated", keys_deleted=deleted)
            return deleted

        except Exception as e:
            logger.warning("Cache invalidation failed", error=str(e))
            return 0

    async def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        try:
            embedding_keys = [key async for key in self.redis_client.scan_iter(match=f"{self.embedding_prefix}*")]
            result_keys = [key async for key in self.redis_client.scan_iter(match=f"{self.result_prefix}*")]

            return {
                "cache_counts": {
                    "query_embeddings": len(embedding_keys),
                    "search_results": len(result_keys),
                },
                "ttl_settings": {
                    "embedding_cache_ttl": self.embedding_cache_ttl,
                    "result_cache_ttl": self.result_cache_ttl
                }
            }

        except Exception as e:
            logger.error("Failed to get cache stats", error=str(e))
            return {}

    async def close(self) -> None:
        """Close Redis connection."""
        try:
            await self.redis_client.aclose()
            logger.info("Search cache manager closed")
        except Exception as e:
            logger.warning("Failed to close cache manager", error=str(e))


def create_search_cache_manager(
    redis_url: str,
    embedding_cache_ttl: int = 3600,
    result_cache_ttl: int = 600
) -> SearchCacheManager:
    """Create search cache manager."""
    return SearchCacheManager(
        redis_url=redis_url,
        embedding_cache_ttl=embedding_cache_ttl,
        result_cache_ttl=result_cache_ttl
    )
