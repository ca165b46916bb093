# geo_pipeline/data/cache.py
"""
Two-tier generation cache

Fast tier: in-process LRU with TTL. Durable tier: any ``DurableStore``.
Reads fall through fast -> durable and promote durable hits; writes land in
the fast tier synchronously and in the durable tier as a detached task.
"""

import asyncio
import copy
import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple

import structlog

from .durable import DurableStore

logger = structlog.get_logger()

FAST_TIER = "fast"
DURABLE_TIER = "durable"


def generation_fingerprint(product_name: str, keywords: Iterable[str], content: str = "",
                           language: str = "ko",
                           stage_parameters: Optional[Dict[str, Any]] = None,
                           existing_description: Optional[str] = None,
                           product_category: Optional[str] = None) -> str:
    """
    Stable cache key for a generation request.

    Product name is trimmed and lower-cased, keywords are lower-cased and
    sorted, and only the first 1000 characters of the source content count.
    The existing description and category only count when given.
    """
    normalized = {
        "product": (product_name or "").strip().lower(),
        "content": (content or "")[:1000].strip(),
        "keywords": sorted(k.strip().lower() for k in keywords if k and k.strip()),
        "language": language or "ko",
        "params": stage_parameters or {},
    }
    if existing_description and existing_description.strip():
        normalized["existing_description"] = existing_description.strip()
    if product_category and product_category.strip():
        normalized["category"] = product_category.strip().lower()
    blob = json.dumps(normalized, sort_keys=True, ensure_ascii=False, default=str)
    return "gen_" + hashlib.sha256(blob.encode("utf-8")).hexdigest()[:16]


@dataclass
class CacheLookup:
    value: Optional[Any]
    hit: bool
    tier: Optional[str] = None


class CacheStatsCollector:
    """Per-tier hit/miss counters. Only ``reset()`` clears them."""

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.fast_hits = 0
            self.fast_misses = 0
            self.durable_hits = 0
            self.durable_misses = 0

    def record(self, tier: str, hit: bool) -> None:
        with self._lock:
            if tier == FAST_TIER:
                if hit:
                    self.fast_hits += 1
                else:
                    self.fast_misses += 1
            else:
                if hit:
                    self.durable_hits += 1
                else:
                    self.durable_misses += 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            # every lookup touches the fast tier exactly once
            total = self.fast_hits + self.fast_misses
            total_hits = self.fast_hits + self.durable_hits
            return {
                "fast": {"hits": self.fast_hits, "misses": self.fast_misses},
                "durable": {"hits": self.durable_hits, "misses": self.durable_misses},
                "overall": {
                    "total_requests": total,
                    "total_hits": total_hits,
                    "fast_hit_rate": round(self.fast_hits / total * 100, 1) if total else 0.0,
                    "durable_hit_rate": round(self.durable_hits / total * 100, 1) if total else 0.0,
                },
            }


class FastCache:
    """Bounded LRU with per-entry TTL. One lock guards recency and expiry.

    Values are copied in and out, so callers never share the cached object.
    """

    def __init__(self, max_entries: int = 50, ttl_seconds: float = 1800,
                 clock: Callable[[], float] = time.monotonic):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires, value = entry
            if expires <= self._clock():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl is None else ttl
        with self._lock:
            self._entries[key] = (self._clock() + ttl, copy.deepcopy(value))
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("fast cache evicted", key=evicted)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def prune(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, (expires, _) in self._entries.items() if expires <= now]
            for k in expired:
                del self._entries[k]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class TieredCache:
    """
    Fast tier in front of an optional durable tier.

    ``invalidate`` removes the durable entry only. A fast-tier copy may be
    served until its own (short) TTL expires.
    """

    def __init__(self, fast: Optional[FastCache] = None,
                 durable: Optional[DurableStore] = None,
                 stats: Optional[CacheStatsCollector] = None,
                 default_ttl: int = 1800,
                 prune_interval: float = 300):
        self.fast = fast if fast is not None else FastCache(ttl_seconds=default_ttl)
        self.durable = durable
        self.stats_collector = stats or CacheStatsCollector()
        self.default_ttl = default_ttl
        self.prune_interval = prune_interval
        self._pending: Set[asyncio.Task] = set()
        self._prune_task: Optional[asyncio.Task] = None

    async def get(self, key: str) -> CacheLookup:
        value = self.fast.get(key)
        if value is not None:
            self.stats_collector.record(FAST_TIER, hit=True)
            return CacheLookup(value=value, hit=True, tier=FAST_TIER)
        self.stats_collector.record(FAST_TIER, hit=False)

        if self.durable is None:
            return CacheLookup(value=None, hit=False)

        try:
            value = await self.durable.get(key)
        except Exception as e:
            logger.warning("durable cache read failed", key=key, error=str(e))
            value = None

        if value is None:
            self.stats_collector.record(DURABLE_TIER, hit=False)
            return CacheLookup(value=None, hit=False)

        self.stats_collector.record(DURABLE_TIER, hit=True)
        self.fast.set(key, value)
        logger.debug("promoted durable hit", key=key)
        return CacheLookup(value=value, hit=True, tier=DURABLE_TIER)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None,
                  metadata: Optional[Dict[str, Any]] = None) -> None:
        if ttl is None:
            ttl = self.default_ttl
        self.fast.set(key, value, ttl)

        if self.durable is None:
            return

        task = asyncio.create_task(self.durable.set(key, value, ttl, metadata))
        self._pending.add(task)
        task.add_done_callback(lambda t: self._durable_write_done(key, t))

    def _durable_write_done(self, key: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("durable cache write cancelled", key=key)
            return
        error = task.exception()
        if error is not None:
            logger.warning("durable cache write failed", key=key, error=str(error))

    async def drain(self) -> None:
        """Wait for outstanding durable writes (tests, shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def invalidate(self, key: str) -> bool:
        if self.durable is None:
            return False
        try:
            return await self.durable.invalidate(key)
        except Exception as e:
            logger.warning("durable cache invalidate failed", key=key, error=str(e))
            return False

    async def prune(self) -> Dict[str, int]:
        fast_pruned = self.fast.prune()
        durable_pruned = 0
        if self.durable is not None:
            try:
                durable_pruned = await self.durable.prune()
            except Exception as e:
                logger.warning("durable cache prune failed", error=str(e))
        if fast_pruned or durable_pruned:
            logger.info("cache pruned", fast_pruned=fast_pruned, durable_pruned=durable_pruned)
        return {"fast_pruned": fast_pruned, "durable_pruned": durable_pruned}

    async def stats(self) -> Dict[str, Any]:
        snapshot = self.stats_collector.snapshot()
        snapshot["fast"].update(size=len(self.fast), max_size=self.fast.max_entries)
        durable_stats: Optional[Dict[str, Any]] = None
        if self.durable is not None:
            try:
                durable_stats = await self.durable.stats()
            except Exception as e:
                logger.warning("durable cache stats failed", error=str(e))
        snapshot["durable"]["store"] = durable_stats
        return snapshot

    async def clear(self) -> None:
        self.fast.clear()
        if self.durable is not None:
            try:
                await self.durable.clear()
            except Exception as e:
                logger.warning("durable cache clear failed", error=str(e))
        self.stats_collector.reset()

    # -- scheduled sweep -----------------------------------------------------

    def start_pruning(self) -> asyncio.Task:
        if self._prune_task is None or self._prune_task.done():
            self._prune_task = asyncio.create_task(self._prune_loop())
        return self._prune_task

    async def _prune_loop(self) -> None:
        while True:
            await asyncio.sleep(self.prune_interval)
            await self.prune()

    async def close(self) -> None:
        if self._prune_task is not None:
            self._prune_task.cancel()
            try:
                await self._prune_task
            except asyncio.CancelledError:
                pass
            self._prune_task = None
        await self.drain()
        if self.durable is not None:
            await self.durable.close()


def build_tiered_cache(settings) -> TieredCache:
    """Wire the cache tiers from settings."""
    durable: Optional[DurableStore] = None
    backend = settings.DURABLE_CACHE_BACKEND
    if backend == "redis":
        from .durable import RedisDurableStore
        durable = RedisDurableStore(settings.REDIS_URL)
    elif backend == "sql":
        from .database import SqlDurableStore
        durable = SqlDurableStore(settings.DATABASE_URL)

    return TieredCache(
        fast=FastCache(max_entries=settings.FAST_CACHE_MAX_ENTRIES, ttl_seconds=settings.CACHE_TTL_SECONDS),
        durable=durable,
        default_ttl=settings.CACHE_TTL_SECONDS,
        prune_interval=settings.CACHE_PRUNE_INTERVAL_SECONDS,
    )
