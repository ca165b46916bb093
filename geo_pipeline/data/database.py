# geo_pipeline/data/database.py
"""
SQL durable cache tier
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, create_engine, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from ..exceptions import CacheError
from .durable import DurableStore

logger = structlog.get_logger()

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GenerationCacheEntry(Base):
    """Cached pipeline result"""
    __tablename__ = "generation_cache"

    fingerprint = Column(String(64), primary_key=True)
    product_name = Column(String(500), nullable=False, index=True)
    keywords = Column(JSON, default=list)
    result = Column(Text, nullable=False)
    ttl_seconds = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)
    hit_count = Column(Integer, default=0)
    last_accessed = Column(DateTime, default=_utcnow)


class SqlDurableStore(DurableStore):
    """SQLAlchemy backend. Blocking calls run in a worker thread."""

    name = "sql"

    def __init__(self, database_url: str, echo: bool = False,
                 clock: Callable[[], datetime] = _utcnow):
        if not database_url:
            raise CacheError("Database URL not configured")
        self.clock = clock

        if database_url.startswith("sqlite"):
            # worker threads share the connection
            options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}, "echo": echo}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                options["poolclass"] = StaticPool
            self.engine = create_engine(database_url, **options)
        else:
            self.engine = create_engine(
                database_url,
                poolclass=QueuePool,
                pool_size=5,
                max_overflow=0,
                pool_pre_ping=True,
                pool_recycle=3600,
                echo=echo,
            )

        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)
        Base.metadata.create_all(bind=self.engine)
        logger.info("SQL durable cache initialized", backend=self.engine.dialect.name)

    # -- sync implementations ------------------------------------------------

    def _get(self, key: str) -> Optional[Any]:
        with self.SessionLocal() as session:
            entry = session.get(GenerationCacheEntry, key)
            if entry is None:
                return None
            if entry.expires_at <= self.clock():
                return None
            entry.hit_count = (entry.hit_count or 0) + 1
            entry.last_accessed = self.clock()
            payload = entry.result
            session.commit()
        return json.loads(payload)

    def _set(self, key: str, value: Any, ttl: int, metadata: Dict[str, Any]) -> None:
        try:
            self._upsert(key, value, ttl, metadata)
        except IntegrityError:
            # another writer inserted the row first; ours lands as an update
            logger.debug("concurrent cache insert, retrying as update", key=key)
            self._upsert(key, value, ttl, metadata)

    def _upsert(self, key: str, value: Any, ttl: int, metadata: Dict[str, Any]) -> None:
        now = self.clock()
        with self.SessionLocal() as session:
            entry = session.get(GenerationCacheEntry, key)
            if entry is None:
                entry = GenerationCacheEntry(fingerprint=key, hit_count=0, created_at=now)
                session.add(entry)
            # last write wins
            entry.product_name = str(metadata.get("product_name", ""))[:500]
            entry.keywords = list(metadata.get("keywords", []))
            entry.result = json.dumps(value, default=str, ensure_ascii=False)
            entry.ttl_seconds = int(ttl)
            entry.expires_at = now + timedelta(seconds=ttl)
            entry.last_accessed = now
            session.commit()

    def _invalidate(self, key: str) -> bool:
        with self.SessionLocal() as session:
            removed = session.query(GenerationCacheEntry).filter(
                GenerationCacheEntry.fingerprint == key
            ).delete()
            session.commit()
        return removed > 0

    def _prune(self) -> int:
        with self.SessionLocal() as session:
            removed = session.query(GenerationCacheEntry).filter(
                GenerationCacheEntry.expires_at <= self.clock()
            ).delete()
            session.commit()
        return removed

    def _clear(self) -> int:
        with self.SessionLocal() as session:
            removed = session.query(GenerationCacheEntry).delete()
            session.commit()
        return removed

    def _stats(self) -> Dict[str, Any]:
        now = self.clock()
        with self.SessionLocal() as session:
            total, hits = session.query(
                func.count(GenerationCacheEntry.fingerprint),
                func.coalesce(func.sum(GenerationCacheEntry.hit_count), 0),
            ).one()
            expired = session.query(func.count(GenerationCacheEntry.fingerprint)).filter(
                GenerationCacheEntry.expires_at <= now
            ).scalar()
        return {
            "backend": self.name,
            "entries": int(total),
            "expired_entries": int(expired or 0),
            "total_hits": int(hits),
        }

    # -- async surface -------------------------------------------------------

    async def _run(self, fn, *args, key: Optional[str] = None):
        try:
            return await asyncio.to_thread(fn, *args)
        except (SQLAlchemyError, ValueError) as e:
            raise CacheError(f"SQL cache {fn.__name__.lstrip('_')} failed: {e}", key=key) from e

    async def get(self, key: str) -> Optional[Any]:
        return await self._run(self._get, key, key=key)

    async def set(self, key: str, value: Any, ttl: int,
                  metadata: Optional[Dict[str, Any]] = None) -> None:
        await self._run(self._set, key, value, ttl, metadata or {}, key=key)

    async def invalidate(self, key: str) -> bool:
        return await self._run(self._invalidate, key, key=key)

    async def prune(self) -> int:
        removed = await self._run(self._prune)
        if removed:
            logger.info("Pruned expired cache rows", removed=removed)
        return removed

    async def stats(self) -> Dict[str, Any]:
        return await self._run(self._stats)

    async def clear(self) -> int:
        return await self._run(self._clear)

    async def close(self) -> None:
        self.engine.dispose()
        logger.info("Database connections closed")
