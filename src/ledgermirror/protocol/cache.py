"""
ledgermirror/protocol/cache.py

Read-model cache over slow, rate-limited ledger reads.

Responsibilities:
- Freshness: entries younger than their TTL are served with no I/O
- Coalescing: concurrent callers for one key share a single upstream fetch
- Fallback: a failed refresh serves the last good value instead of failing
- Persistence: every good value is written through the storage backend so a
  restarted process starts from last-known-good data

TTL is resolved per key namespace (the part of the key before the first ":")
from a TTLPolicy, unless the caller passes one explicitly.

Usage:
    from ledgermirror.protocol.cache import ReadModelCache

    cache = ReadModelCache(FileBackend(path), owner=address)

    balance, from_cache = await cache.get(
        f"node_balance:{address}",
        lambda: reader.read_value("GenesisNode", "balanceOf", [address]),
    )

    # Force the next read to go upstream
    cache.invalidate(f"node_balance:{address}")
"""

import asyncio
import json
import time
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..config import DEFAULT_OWNER, TTLPolicy
from .errors import FetchFailed, StoreCorrupt
from .storage import MemoryBackend, NamespacedStore, StorageBackend

logger = logging.getLogger("ledgermirror.protocol.cache")

CACHE_DOMAIN = "cache"

Fetcher = Callable[[], Awaitable[Any]]


class CacheState(Enum):
    """Freshness state of a cache entry."""
    FRESH = "fresh"           # Within TTL
    STALE = "stale"           # Past TTL or invalidated, still served as fallback
    FETCHING = "fetching"     # Refresh in flight
    ERROR = "error"           # Last refresh failed, value is last-known-good


@dataclass
class CacheEntry:
    """A cached value and its freshness metadata."""
    key: str
    value: Any
    fetched_at: float
    ttl: float
    state: CacheState = CacheState.FRESH
    last_error: Optional[str] = None

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def is_fresh(self, now: float, ttl: Optional[float] = None) -> bool:
        window = self.ttl if ttl is None else ttl
        return self.state == CacheState.FRESH and self.age(now) < window

    def state_at(self, now: float) -> CacheState:
        """State as observed at `now`; an expired FRESH entry reads as STALE."""
        if self.state == CacheState.FRESH and self.age(now) >= self.ttl:
            return CacheState.STALE
        return self.state

    def to_record(self) -> dict:
        return {
            "key": self.key,
            "value": self.value,
            "fetched_at": self.fetched_at,
            "ttl": self.ttl,
        }

    @classmethod
    def from_record(cls, data: dict) -> "CacheEntry":
        return cls(
            key=data["key"],
            value=data["value"],
            fetched_at=float(data["fetched_at"]),
            ttl=float(data["ttl"]),
        )


def _encode_value(obj: Any) -> Any:
    """JSON fallback for values exposing to_dict()."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class ReadModelCache:
    """
    Keyed cache over ChainReader results.

    Values must be JSON-serializable (or expose to_dict) to be persisted;
    anything else is still cached in memory and a persistence error is logged.
    """

    def __init__(
        self,
        backend: Optional[StorageBackend] = None,
        owner: str = DEFAULT_OWNER,
        policy: Optional[TTLPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize ReadModelCache.

        Args:
            backend: Durable storage for last-known-good values
            owner: Owner context used to namespace persisted keys
            policy: Per-namespace TTLs
            clock: Time source returning unix seconds
        """
        self._store = NamespacedStore(backend if backend is not None else MemoryBackend(), CACHE_DOMAIN, owner)
        self.policy = policy or TTLPolicy.from_mode()
        self._clock = clock

        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, "asyncio.Task"] = {}
        self._fetchers: Dict[str, Tuple[Fetcher, float]] = {}
        self._loaded: set = set()

        # Counters
        self._hits = 0
        self._misses = 0
        self._fetches = 0
        self._coalesced = 0
        self._fallbacks = 0
        self._errors = 0

    @property
    def owner(self) -> str:
        return self._store.owner

    # ========================================================================
    # READS
    # ========================================================================

    async def get(
        self,
        key: str,
        fetcher: Fetcher,
        ttl: Optional[float] = None,
    ) -> Tuple[Any, bool]:
        """
        Get a value, fetching it upstream only when needed.

        Args:
            key: Cache key ("{namespace}:{id}")
            fetcher: Zero-argument coroutine function producing the value
            ttl: Freshness window in seconds (defaults to the namespace policy)

        Returns:
            (value, from_cache). from_cache is False only when the value was
            produced by a fetch that completed for this call.

        Raises:
            FetchFailed: The fetch failed and no previous value exists
        """
        window = self.policy.ttl_for_key(key) if ttl is None else ttl
        self._fetchers[key] = (fetcher, window)

        if key not in self._entries and key not in self._loaded:
            await self._load_persisted(key)

        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self._clock(), window):
            self._hits += 1
            logger.debug(f"Cache hit: {key}")
            return entry.value, True

        self._misses += 1
        return await self._join_fetch(key, fetcher, window)

    def get_or_none(self, key: str) -> Any:
        """Non-blocking peek at the last known value, fresh or not."""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Get the entry for a key without triggering any I/O."""
        return self._entries.get(key)

    def freshness(self, key: str) -> Optional[CacheState]:
        entry = self._entries.get(key)
        if entry is None:
            return CacheState.FETCHING if key in self._inflight else None
        return entry.state_at(self._clock())

    def is_fetching(self, key: str) -> bool:
        return key in self._inflight

    def keys(self) -> List[str]:
        return list(self._entries)

    # ========================================================================
    # INVALIDATION
    # ========================================================================

    def invalidate(self, key: str) -> bool:
        """
        Mark an entry stale so the next get refetches it.

        The value is kept and still served as a fallback.

        Returns:
            True if an entry existed
        """
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.state != CacheState.FETCHING:
            entry.state = CacheState.STALE
        logger.debug(f"Invalidated {key}")
        return True

    def invalidate_namespace(self, namespace: str) -> int:
        """Invalidate every entry whose key is in a namespace."""
        count = 0
        for key in list(self._entries):
            if TTLPolicy.namespace_of(key) == namespace and self.invalidate(key):
                count += 1
        return count

    async def purge(self, key: str) -> bool:
        """Remove an entry from memory and from durable storage."""
        existed = self._entries.pop(key, None) is not None
        self._fetchers.pop(key, None)
        self._loaded.discard(key)
        deleted = await self._store.delete(key)
        if existed or deleted:
            logger.info(f"Purged cache entry {key}")
        return existed or deleted

    # ========================================================================
    # WARM START / BACKGROUND REFRESH
    # ========================================================================

    async def warm(self) -> int:
        """
        Load every persisted entry for this owner into memory.

        Returns:
            Number of entries loaded
        """
        loaded = 0
        for key in await self._store.list_keys():
            if key in self._entries:
                continue
            if await self._load_persisted(key):
                loaded += 1
        if loaded:
            logger.info(f"Warmed {loaded} cache entries for {self.owner}")
        return loaded

    async def refresh_stale(self) -> int:
        """
        Refetch every known key whose entry is past its TTL.

        Only keys previously requested through get() are refreshed, using the
        fetcher and TTL of their last request.

        Returns:
            Number of keys refreshed from upstream
        """
        refreshed = 0
        now = self._clock()
        for key, (fetcher, window) in list(self._fetchers.items()):
            entry = self._entries.get(key)
            if entry is not None and entry.is_fresh(now, window):
                continue
            if key in self._inflight:
                continue
            try:
                _, from_cache = await self._join_fetch(key, fetcher, window)
            except FetchFailed as e:
                logger.warning(f"Background refresh failed: {e}")
                continue
            if not from_cache:
                refreshed += 1
        if refreshed:
            logger.debug(f"Refreshed {refreshed} stale keys")
        return refreshed

    async def run_refresh_loop(
        self,
        interval: float,
        stop_event: asyncio.Event,
    ) -> None:
        """Call refresh_stale() every `interval` seconds until stopped."""
        logger.info("Cache refresh loop started")
        while not stop_event.is_set():
            await self.refresh_stale()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Cache refresh loop stopped")

    # ========================================================================
    # STATS
    # ========================================================================

    def get_stats(self) -> dict:
        """Get cache statistics."""
        now = self._clock()
        states = {state.value: 0 for state in CacheState}
        for entry in self._entries.values():
            states[entry.state_at(now).value] += 1
        return {
            "owner": self.owner,
            "entries": len(self._entries),
            "inflight": len(self._inflight),
            "hits": self._hits,
            "misses": self._misses,
            "fetches": self._fetches,
            "coalesced": self._coalesced,
            "fallbacks": self._fallbacks,
            "errors": self._errors,
            "states": states,
        }

    # ========================================================================
    # INTERNAL METHODS
    # ========================================================================

    async def _join_fetch(self, key: str, fetcher: Fetcher, ttl: float) -> Tuple[Any, bool]:
        """Attach to the in-flight fetch for a key, starting one if needed."""
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(key, fetcher, ttl))
            task.add_done_callback(self._consume_result)
            self._inflight[key] = task
        else:
            self._coalesced += 1
            logger.debug(f"Joining in-flight fetch: {key}")

        # Waiters giving up must not cancel the shared fetch
        return await asyncio.shield(task)

    async def _fetch(self, key: str, fetcher: Fetcher, ttl: float) -> Tuple[Any, bool]:
        """Run one upstream fetch and apply its outcome to the entry."""
        entry = self._entries.get(key)
        if entry is not None:
            entry.state = CacheState.FETCHING
        self._fetches += 1

        try:
            try:
                value = await fetcher()
            except asyncio.CancelledError:
                if entry is not None:
                    entry.state = CacheState.STALE
                raise
            except Exception as e:
                return self._fallback(key, e)

            entry = CacheEntry(
                key=key,
                value=value,
                fetched_at=self._clock(),
                ttl=ttl,
            )
            self._entries[key] = entry
            self._loaded.add(key)
            await self._persist(entry)
            return value, False
        finally:
            self._inflight.pop(key, None)

    def _fallback(self, key: str, error: Exception) -> Tuple[Any, bool]:
        """Serve the previous value after a failed fetch, or raise FetchFailed."""
        self._errors += 1
        entry = self._entries.get(key)
        if entry is None:
            logger.warning(f"Fetch failed for {key} with no cached value: {error}")
            raise FetchFailed(key, error) from error

        entry.state = CacheState.ERROR
        entry.last_error = str(error)
        self._fallbacks += 1
        logger.warning(f"Fetch failed for {key}, serving cached value: {error}")
        return entry.value, True

    @staticmethod
    def _consume_result(task: "asyncio.Task") -> None:
        """Retrieve the outcome of a fetch nobody awaited, so it is not reported."""
        if not task.cancelled():
            task.exception()

    async def _persist(self, entry: CacheEntry) -> None:
        try:
            data = json.dumps(entry.to_record(), default=_encode_value).encode()
        except (TypeError, ValueError) as e:
            logger.error(f"Cannot persist {entry.key}: {e}")
            return
        await self._store.set(entry.key, data)

    async def _load_persisted(self, key: str) -> bool:
        """Load a persisted entry into memory. Corrupt records are ignored."""
        self._loaded.add(key)
        try:
            raw = await self._store.get(key)
            if raw is None:
                return False
            try:
                entry = CacheEntry.from_record(json.loads(raw.decode()))
            except (ValueError, KeyError, TypeError) as e:
                raise StoreCorrupt(key, e) from e
        except StoreCorrupt as e:
            logger.warning(f"Ignoring persisted cache entry: {e}")
            return False

        # A fetch may have completed while the backend was being read
        if key in self._entries:
            return False
        entry.key = key
        self._entries[key] = entry
        logger.debug(f"Loaded persisted entry {key} (age {entry.age(self._clock()):.0f}s)")
        return True
