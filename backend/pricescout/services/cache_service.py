"""Search result cache with TTL freshness, stale fallback and single-flight.

SearchCache holds the policy (freshness, retention, in-flight
de-duplication); a CacheBackend only stores and loads entries. Backend
failures surface as CacheUnavailable so the orchestrator can keep serving
direct crawls while the cache is down.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional, Sequence, Tuple, TypeVar

import structlog
from redis.asyncio import Redis, from_url
from redis.exceptions import RedisError
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricescout.core.exceptions import CacheUnavailable
from pricescout.models.search_cache import SearchCacheRow
from pricescout.scrapers.merger import ProductRecord
from pricescout.scrapers.query import SearchQueryKey

logger = structlog.get_logger(__name__)

T = TypeVar("T")
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _dump_results(results: Sequence[ProductRecord]) -> str:
    return json.dumps([r.to_dict() for r in results], ensure_ascii=False)


def _load_results(payload: str) -> Tuple[ProductRecord, ...]:
    return tuple(ProductRecord.from_dict(item) for item in json.loads(payload))


def _load_errors(items) -> Tuple[Dict[str, str], ...]:
    return tuple(
        {"platform": str(item["platform"]), "reason": str(item["reason"]), "message": str(item["message"])}
        for item in items or ()
    )


# Anything a damaged payload can raise while being decoded
CORRUPT_ENTRY_ERRORS = (KeyError, TypeError, ValueError, ArithmeticError)


@dataclass(frozen=True)
class CacheEntry:
    """Merged results for one key, valid until ``expires_at``.

    ``errors`` lists the platforms that failed when the entry was produced,
    as ``{"platform", "reason", "message"}`` dicts; it is empty for a
    complete result.
    """

    key: SearchQueryKey
    results: Tuple[ProductRecord, ...]
    created_at: datetime
    expires_at: datetime
    errors: Tuple[Dict[str, str], ...] = ()

    def __post_init__(self):
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


class CacheBackend(ABC):
    """Storage for cache entries. Implementations raise CacheUnavailable on I/O failure."""

    name: str = ""

    @abstractmethod
    async def read(self, key: SearchQueryKey) -> Optional[CacheEntry]:
        """Load the entry for ``key`` regardless of freshness."""

    @abstractmethod
    async def write(self, entry: CacheEntry, retain_until: datetime) -> None:
        """Store ``entry``, replacing any previous entry for its key."""

    @abstractmethod
    async def delete(self, key: SearchQueryKey) -> bool:
        """Remove the entry for ``key``."""

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryCacheBackend(CacheBackend):
    """Process-local backend for development and tests."""

    name = "memory"

    def __init__(self, clock: Clock = utcnow):
        self._entries: Dict[SearchQueryKey, Tuple[CacheEntry, datetime]] = {}
        self._clock = clock

    async def read(self, key: SearchQueryKey) -> Optional[CacheEntry]:
        stored = self._entries.get(key)
        if stored is None:
            return None
        entry, retain_until = stored
        if self._clock() >= retain_until:
            del self._entries[key]
            return None
        return entry

    async def write(self, entry: CacheEntry, retain_until: datetime) -> None:
        self._entries[entry.key] = (entry, retain_until)

    async def delete(self, key: SearchQueryKey) -> bool:
        return self._entries.pop(key, None) is not None


class RedisCacheBackend(CacheBackend):
    """Redis backend storing one JSON document per key.

    The Redis key expires at the end of the stale-retention window, not at
    the entry's freshness deadline, so expired results stay available as a
    fallback.
    """

    name = "redis"

    def __init__(self, redis_url: str, clock: Clock = utcnow):
        self.redis_url = redis_url
        self._redis: Optional[Redis] = None
        self._clock = clock
        self.logger = logger.bind(service="search_cache", backend=self.name)

    async def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
            self.logger.info("redis_connection_created")
        return self._redis

    async def read(self, key: SearchQueryKey) -> Optional[CacheEntry]:
        try:
            redis = await self._get_redis()
            raw = await redis.get(key.cache_key)
        except RedisError as e:
            self.logger.error("cache_get_failed", key=key.cache_key, error=str(e))
            raise CacheUnavailable(self.name, str(e)) from e
        if not raw:
            return None
        try:
            document = json.loads(raw)
            return CacheEntry(
                key=key,
                results=tuple(ProductRecord.from_dict(r) for r in document["results"]),
                created_at=datetime.fromisoformat(document["created_at"]),
                expires_at=datetime.fromisoformat(document["expires_at"]),
                errors=_load_errors(document.get("errors")),
            )
        except CORRUPT_ENTRY_ERRORS as e:
            # Unreadable documents are treated as absent and overwritten on the next put
            self.logger.warning("cache_entry_corrupt", key=key.cache_key, error=str(e))
            return None

    async def write(self, entry: CacheEntry, retain_until: datetime) -> None:
        document = json.dumps(
            {
                "query": entry.key.query,
                "platforms": entry.key.platform_set,
                "filters": entry.key.filters.to_dict(),
                "results": [r.to_dict() for r in entry.results],
                "errors": list(entry.errors),
                "created_at": entry.created_at.isoformat(),
                "expires_at": entry.expires_at.isoformat(),
            },
            ensure_ascii=False,
        )
        ttl = max(1, int((retain_until - self._clock()).total_seconds()))
        try:
            redis = await self._get_redis()
            await redis.set(entry.key.cache_key, document, ex=ttl)
        except RedisError as e:
            self.logger.error("cache_set_failed", key=entry.key.cache_key, error=str(e))
            raise CacheUnavailable(self.name, str(e)) from e
        self.logger.debug("cache_set", key=entry.key.cache_key, ttl=ttl, value_length=len(document))

    async def delete(self, key: SearchQueryKey) -> bool:
        try:
            redis = await self._get_redis()
            return bool(await redis.delete(key.cache_key))
        except RedisError as e:
            raise CacheUnavailable(self.name, str(e)) from e

    async def health_check(self) -> bool:
        try:
            redis = await self._get_redis()
            await redis.ping()
            return True
        except RedisError as e:
            self.logger.error("redis_health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("redis_connection_closed")


class SqlCacheBackend(CacheBackend):
    """Relational backend over the ``search_cache`` table."""

    name = "sql"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.logger = logger.bind(service="search_cache", backend=self.name)

    @staticmethod
    def _select(key: SearchQueryKey):
        return select(SearchCacheRow).where(
            SearchCacheRow.query_key == key.query,
            SearchCacheRow.platform_set == key.platform_set,
            SearchCacheRow.filters_hash == key.filters_hash,
        )

    async def read(self, key: SearchQueryKey) -> Optional[CacheEntry]:
        try:
            async with self.session_factory() as session:
                row = (await session.execute(self._select(key))).scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error("cache_get_failed", query=key.query, error=str(e))
            raise CacheUnavailable(self.name, str(e)) from e
        if row is None:
            return None
        try:
            return CacheEntry(
                key=key,
                results=_load_results(row.results_json),
                created_at=_aware(row.created_at),
                expires_at=_aware(row.expires_at),
                errors=_load_errors(json.loads(row.errors_json or "[]")),
            )
        except CORRUPT_ENTRY_ERRORS as e:
            # Treated as absent; the next put replaces the row
            self.logger.warning("cache_entry_corrupt", query=key.query, error=str(e))
            return None

    async def write(self, entry: CacheEntry, retain_until: datetime) -> None:
        payload = _dump_results(entry.results)
        errors = json.dumps(list(entry.errors), ensure_ascii=False)
        try:
            async with self.session_factory() as session:
                try:
                    await self._upsert(session, entry, payload, errors)
                    await session.commit()
                except IntegrityError:
                    # A concurrent writer inserted the same key first
                    await session.rollback()
                    await self._upsert(session, entry, payload, errors)
                    await session.commit()
        except SQLAlchemyError as e:
            self.logger.error("cache_set_failed", query=entry.key.query, error=str(e))
            raise CacheUnavailable(self.name, str(e)) from e

    async def _upsert(self, session: AsyncSession, entry: CacheEntry, payload: str, errors: str) -> None:
        row = (await session.execute(self._select(entry.key))).scalar_one_or_none()
        if row is None:
            session.add(
                SearchCacheRow(
                    query_key=entry.key.query,
                    platform_set=entry.key.platform_set,
                    filters_hash=entry.key.filters_hash,
                    results_json=payload,
                    errors_json=errors,
                    created_at=entry.created_at,
                    expires_at=entry.expires_at,
                )
            )
        else:
            row.results_json = payload
            row.errors_json = errors
            row.created_at = entry.created_at
            row.expires_at = entry.expires_at
        await session.flush()

    async def delete(self, key: SearchQueryKey) -> bool:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(SearchCacheRow).where(
                        SearchCacheRow.query_key == key.query,
                        SearchCacheRow.platform_set == key.platform_set,
                        SearchCacheRow.filters_hash == key.filters_hash,
                    )
                )
                await session.commit()
                return bool(result.rowcount)
        except SQLAlchemyError as e:
            raise CacheUnavailable(self.name, str(e)) from e

    async def purge_expired(self, older_than: datetime) -> int:
        """Delete rows whose freshness ended before ``older_than``."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(SearchCacheRow).where(SearchCacheRow.expires_at < older_than)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise CacheUnavailable(self.name, str(e)) from e
        self.logger.info("cache_rows_purged", count=result.rowcount)
        return result.rowcount


class SearchCache:
    """Freshness policy and single-flight coordination over a backend."""

    def __init__(
        self,
        backend: CacheBackend,
        default_ttl: timedelta = timedelta(hours=6),
        stale_retention: timedelta = timedelta(hours=24),
        clock: Clock = utcnow,
    ):
        self.backend = backend
        self.default_ttl = default_ttl
        self.stale_retention = stale_retention
        self._clock = clock
        self._in_flight: Dict[SearchQueryKey, asyncio.Future] = {}
        self.logger = logger.bind(service="search_cache", backend=backend.name)

    async def get(self, key: SearchQueryKey) -> Optional[CacheEntry]:
        """Return the entry only if it is still fresh.

        Raises:
            CacheUnavailable: if the backend cannot be reached
        """
        entry = await self.backend.read(key)
        if entry is None:
            self.logger.debug("cache_miss", key=key.cache_key)
            return None
        if not entry.is_fresh(self._clock()):
            self.logger.debug("cache_expired", key=key.cache_key, expired_at=entry.expires_at.isoformat())
            return None
        self.logger.debug("cache_hit", key=key.cache_key)
        return entry

    async def get_stale(self, key: SearchQueryKey) -> Optional[CacheEntry]:
        """Return whatever entry exists for ``key``, fresh or expired."""
        return await self.backend.read(key)

    async def put(
        self,
        key: SearchQueryKey,
        results: Sequence[ProductRecord],
        ttl: Optional[timedelta] = None,
        errors: Sequence[Dict[str, str]] = (),
    ) -> CacheEntry:
        """Store a new entry for ``key``, superseding any earlier one.

        ``errors`` records the platforms that failed for a partial result.
        """
        if ttl is None:
            ttl = self.default_ttl
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        now = self._clock()
        entry = CacheEntry(
            key=key,
            results=tuple(results),
            created_at=now,
            expires_at=now + ttl,
            errors=tuple(dict(e) for e in errors),
        )
        await self.backend.write(entry, retain_until=entry.expires_at + self.stale_retention)
        self.logger.info("cache_put", key=key.cache_key, results=len(entry.results), ttl_seconds=int(ttl.total_seconds()))
        return entry

    async def invalidate(self, key: SearchQueryKey) -> bool:
        return await self.backend.delete(key)

    async def single_flight(self, key: SearchQueryKey, producer: Callable[[], Awaitable[T]]) -> T:
        """Run ``producer`` once per key at a time.

        Callers that arrive while a producer for the same key is running wait
        for it and receive its result (or its exception) instead of starting
        their own.
        """
        pending = self._in_flight.get(key)
        if pending is not None:
            self.logger.info("single_flight_joined", key=key.cache_key)
            return await asyncio.shield(pending)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        # Mark the exception retrieved even if nobody joined
        future.add_done_callback(lambda f: f.cancelled() or f.exception())
        self._in_flight[key] = future
        try:
            result = await producer()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._in_flight.pop(key, None)

    def in_flight(self, key: SearchQueryKey) -> bool:
        return key in self._in_flight

    async def health_check(self) -> bool:
        return await self.backend.health_check()

    async def close(self) -> None:
        await self.backend.close()


def build_search_cache(
    backend_name: str,
    redis_url: str = "",
    session_factory: Optional[async_sessionmaker] = None,
    ttl_seconds: int = 6 * 60 * 60,
    stale_retention_seconds: int = 24 * 60 * 60,
) -> SearchCache:
    """Construct a SearchCache for the configured backend name."""
    if backend_name == "redis":
        backend: CacheBackend = RedisCacheBackend(redis_url)
    elif backend_name == "sql":
        if session_factory is None:
            raise ValueError("SQL cache backend needs a session factory")
        backend = SqlCacheBackend(session_factory)
    elif backend_name == "memory":
        backend = InMemoryCacheBackend()
    else:
        raise ValueError(f"Unknown cache backend: {backend_name}")
    logger.info("search_cache_initialized", backend=backend.name, ttl_seconds=ttl_seconds)
    return SearchCache(
        backend,
        default_ttl=timedelta(seconds=ttl_seconds),
        stale_retention=timedelta(seconds=stale_retention_seconds),
    )
