"""
In-process response cache with TTL expiry and grouped invalidation.
"""

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set

from shared.logging import get_logger


DEFAULT_TTL = 300.0
DEFAULT_CLEANUP_INTERVAL = 60.0
DEFAULT_NAMESPACE = "default"

# Absent marker for callers that need to cache None.
MISSING = object()


@dataclass
class CacheEntry:
    """A single cached value and its bookkeeping."""

    key: str
    value: Any
    ttl: float
    expires_at: float
    namespace: str = DEFAULT_NAMESPACE
    tags: FrozenSet[str] = field(default_factory=frozenset)
    inserted_at: float = field(default_factory=time.time)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheStore:
    """In-memory key/value store with per-entry TTL, namespaces and tags.

    Every operation is synchronous and never awaits, so on a single asyncio
    loop each one runs to completion before any other coroutine touches the
    store. Expiry is driven by a ``loop.call_later`` timer per entry when a
    loop is running; lookups also compare deadlines so an entry is never
    served past its TTL even if no timer exists. ``start()`` runs a periodic
    sweep for expired entries nobody reads again.

    Not thread-safe: construct one instance per process and share it.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        *,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self.cleanup_interval = cleanup_interval
        self.logger = get_logger("marketplace.cache")

        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._namespaces: Dict[str, Set[str]] = {}
        self._tags: Dict[str, Set[str]] = {}
        self._cleanup_task: Optional[asyncio.Task] = None
        self._started_at = time.time()
        self._stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "expirations": 0,
        }

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def set(
        self,
        key: str,
        value: Any,
        *,
        ttl: Optional[float] = None,
        namespace: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> bool:
        """Store ``value`` under ``key``, replacing any previous entry.

        The previous entry's expiry timer is cancelled before the new one is
        scheduled, so a stale timer can never remove the newer value.
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        if key in self._entries:
            self._unlink(key)

        entry = CacheEntry(
            key=key,
            value=value,
            ttl=ttl,
            expires_at=self._clock() + ttl,
            namespace=namespace or DEFAULT_NAMESPACE,
            tags=frozenset(tags or ()),
        )
        self._entries[key] = entry
        self._namespaces.setdefault(entry.namespace, set()).add(key)
        for tag in entry.tags:
            self._tags.setdefault(tag, set()).add(key)

        self._schedule_expiry(entry)
        self._stats["sets"] += 1

        self.logger.debug(
            "Cached value",
            key=key,
            namespace=entry.namespace,
            tags=sorted(entry.tags),
            ttl=ttl,
        )
        return True

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for ``key`` or ``default``."""
        entry = self._entries.get(key)
        if entry is None:
            self._stats["misses"] += 1
            return default

        if entry.is_expired(self._clock()):
            self._expire(key, entry)
            self._stats["misses"] += 1
            return default

        self._stats["hits"] += 1
        return entry.value

    def has(self, key: str) -> bool:
        """Whether ``key`` holds a live entry. Does not touch hit/miss counters."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            self._expire(key, entry)
            return False
        return True

    def delete(self, key: str) -> bool:
        """Remove ``key`` and cancel its timer. Missing keys are a no-op."""
        if key not in self._entries:
            return False

        self._unlink(key)
        self._stats["deletes"] += 1
        self.logger.debug("Deleted cache entry", key=key)
        return True

    def delete_namespace(self, namespace: str) -> int:
        """Remove every entry in ``namespace``."""
        keys = list(self._namespaces.get(namespace, ()))
        deleted = sum(1 for key in keys if self.delete(key))
        self._namespaces.pop(namespace, None)

        self.logger.info("Cleared cache namespace", namespace=namespace, keys_count=deleted)
        return deleted

    def delete_by_tag(self, tag: str) -> int:
        """Remove every entry carrying ``tag``, whatever its namespace."""
        keys = list(self._tags.get(tag, ()))
        deleted = sum(1 for key in keys if self.delete(key))
        self._tags.pop(tag, None)

        self.logger.info("Cleared cache tag", tag=tag, keys_count=deleted)
        return deleted

    def delete_pattern(self, pattern: str) -> int:
        """Remove every entry whose key contains ``pattern``.

        ``*`` matches any run of characters; everything else is literal.
        """
        regex = re.compile(".*".join(re.escape(part) for part in pattern.split("*")))
        keys = [key for key in self._entries if regex.search(key)]
        deleted = sum(1 for key in keys if self.delete(key))

        self.logger.info("Cleared cache pattern", pattern=pattern, keys_count=deleted)
        return deleted

    def clear(self) -> int:
        """Remove all entries and cancel all pending timers."""
        for handle in self._timers.values():
            handle.cancel()

        size = len(self._entries)
        self._entries.clear()
        self._timers.clear()
        self._namespaces.clear()
        self._tags.clear()

        self.logger.info("Cleared cache", keys_count=size)
        return size

    # ------------------------------------------------------------------
    # Batch and cache-aside helpers
    # ------------------------------------------------------------------

    def mget(self, keys: Iterable[str]) -> Dict[str, Any]:
        return {key: self.get(key) for key in keys}

    def mset(self, items: Mapping[str, Any], **options: Any) -> Dict[str, bool]:
        return {key: self.set(key, value, **options) for key, value in items.items()}

    def mdelete(self, keys: Iterable[str]) -> int:
        return sum(1 for key in list(keys) if self.delete(key))

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        *,
        ttl: Optional[float] = None,
        namespace: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Any:
        """Return the cached value or await ``factory`` and cache its result.

        Concurrent misses for the same key each run ``factory``.
        """
        cached = self.get(key, MISSING)
        if cached is not MISSING:
            return cached

        value = await factory()
        self.set(key, value, ttl=ttl, namespace=namespace, tags=tags)
        return value

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def keys(self) -> List[str]:
        now = self._clock()
        return [key for key, entry in self._entries.items() if not entry.is_expired(now)]

    def get_namespace_keys(self, namespace: str) -> List[str]:
        """Live keys currently stored under ``namespace``."""
        now = self._clock()
        return [
            key
            for key in self._namespaces.get(namespace, ())
            if not self._entries[key].is_expired(now)
        ]

    def get_keys_by_tag(self, tag: str) -> List[str]:
        now = self._clock()
        return [key for key in self._tags.get(tag, ()) if not self._entries[key].is_expired(now)]

    def get_metadata(self, key: str) -> Optional[Dict[str, Any]]:
        """Entry metadata without the value, or None for unknown keys."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        now = self._clock()
        return {
            "namespace": entry.namespace,
            "tags": sorted(entry.tags),
            "ttl": entry.ttl,
            "inserted_at": entry.inserted_at,
            "remaining_ttl": max(0.0, entry.expires_at - now),
            "is_expired": entry.is_expired(now),
            "has_timer": key in self._timers,
        }

    def get_stats(self) -> Dict[str, Any]:
        """Usage statistics. Read-only: expired entries are skipped, not evicted."""
        now = self._clock()
        namespaces: Dict[str, int] = {}
        for entry in self._entries.values():
            if not entry.is_expired(now):
                namespaces[entry.namespace] = namespaces.get(entry.namespace, 0) + 1

        lookups = self._stats["hits"] + self._stats["misses"]
        hit_rate = round(self._stats["hits"] / lookups * 100, 2) if lookups else 0.0

        return {
            **self._stats,
            "size": sum(namespaces.values()),
            "namespaces": namespaces,
            "namespace_count": len(namespaces),
            "tag_count": len(self._tags),
            "hit_rate": hit_rate,
            "default_ttl": self.default_ttl,
            "uptime_seconds": round(time.time() - self._started_at, 3),
        }

    def reset_stats(self) -> Dict[str, int]:
        """Zero the counters and return their previous values."""
        previous = dict(self._stats)
        self._stats = self._empty_stats()
        return previous

    def __len__(self) -> int:
        return len(self.keys())

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def cleanup(self) -> int:
        """Remove every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [(key, entry) for key, entry in self._entries.items() if entry.is_expired(now)]
        for key, entry in expired:
            self._expire(key, entry)

        if expired:
            self.logger.debug("Swept expired cache entries", keys_count=len(expired))
        return len(expired)

    async def start(self) -> None:
        """Start the periodic expiry sweep on the running loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            self.logger.info(
                "Cache sweep started",
                cleanup_interval=self.cleanup_interval,
                default_ttl=self.default_ttl,
            )

    async def stop(self) -> None:
        """Stop the sweep and drop everything, including pending timers."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        self.clear()
        self.logger.info("Cache sweep stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.cleanup()

    def _schedule_expiry(self, entry: CacheEntry) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: lookups and cleanup() enforce the deadline.
            return
        self._timers[entry.key] = loop.call_later(entry.ttl, self._expire, entry.key, entry)

    def _expire(self, key: str, entry: CacheEntry) -> None:
        # A timer may belong to an entry that was already replaced.
        if self._entries.get(key) is not entry:
            return
        self._unlink(key)
        self._stats["expirations"] += 1
        self.logger.debug("Cache entry expired", key=key, namespace=entry.namespace)

    def _unlink(self, key: str) -> None:
        """Drop ``key`` from storage, indexes and timers."""
        entry = self._entries.pop(key)

        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()

        namespace_keys = self._namespaces.get(entry.namespace)
        if namespace_keys is not None:
            namespace_keys.discard(key)
            if not namespace_keys:
                del self._namespaces[entry.namespace]

        for tag in entry.tags:
            tag_keys = self._tags.get(tag)
            if tag_keys is not None:
                tag_keys.discard(key)
                if not tag_keys:
                    del self._tags[tag]
