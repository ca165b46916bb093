# geo_pipeline/data/durable.py
"""
Durable cache tier interface and Redis backend
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
import structlog

from ..exceptions import CacheError

logger = structlog.get_logger()


class DurableStore(ABC):
    """Keyed persistent store behind the fast cache tier.

    Backends raise ``CacheError`` on failure; the tiered cache decides what
    to do with it.
    """

    name = "durable"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int,
                  metadata: Optional[Dict[str, Any]] = None) -> None:
        ...

    @abstractmethod
    async def invalidate(self, key: str) -> bool:
        ...

    @abstractmethod
    async def prune(self) -> int:
        """Remove expired entries; returns how many were removed."""

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def clear(self) -> int:
        """Drop every entry; returns how many were removed."""

    async def close(self) -> None:
        return None


class RedisDurableStore(DurableStore):
    """Redis backend. Entries expire through Redis TTLs (SETEX)."""

    name = "redis"

    def __init__(self, redis_url: Optional[str] = None,
                 client: Optional[aioredis.Redis] = None,
                 namespace: str = "geo:generation:"):
        self.namespace = namespace
        self.redis_client = client
        if self.redis_client is None:
            if not redis_url:
                raise CacheError("Redis URL not configured")
            self.redis_client = aioredis.from_url(
                redis_url,
                decode_responses=True,
                max_connections=50,
                retry_on_timeout=True,
                health_check_interval=30
            )
            logger.info("Redis durable cache initialized", redis_url=redis_url)

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self.redis_client.get(self._key(key))
        except Exception as e:
            raise CacheError(f"Redis get failed: {e}", key=key) from e
        if not value:
            return None
        try:
            return json.loads(value)
        except ValueError as e:
            raise CacheError(f"Corrupt cache entry: {e}", key=key) from e

    async def set(self, key: str, value: Any, ttl: int,
                  metadata: Optional[Dict[str, Any]] = None) -> None:
        try:
            serialized_value = json.dumps(value, default=str, ensure_ascii=False)
            await self.redis_client.setex(self._key(key), max(1, int(ttl)), serialized_value)
        except Exception as e:
            raise CacheError(f"Redis set failed: {e}", key=key) from e

    async def invalidate(self, key: str) -> bool:
        try:
            result = await self.redis_client.delete(self._key(key))
        except Exception as e:
            raise CacheError(f"Redis delete failed: {e}", key=key) from e
        return result > 0

    async def prune(self) -> int:
        # Redis expires keys itself
        return 0

    async def stats(self) -> Dict[str, Any]:
        try:
            entries = 0
            async for _ in self.redis_client.scan_iter(match=f"{self.namespace}*"):
                entries += 1
        except Exception as e:
            raise CacheError(f"Redis stats failed: {e}") from e
        return {"backend": self.name, "entries": entries}

    async def clear(self) -> int:
        try:
            keys = []
            async for key in self.redis_client.scan_iter(match=f"{self.namespace}*"):
                keys.append(key)
            if keys:
                return await self.redis_client.delete(*keys)
            return 0
        except Exception as e:
            raise CacheError(f"Redis clear failed: {e}") from e

    async def close(self) -> None:
        if self.redis_client:
            await self.redis_client.close()
            logger.info("Redis connection closed")
