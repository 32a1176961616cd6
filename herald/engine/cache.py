"""
herald.engine.cache — In-Memory Content Cache with Category Policies
=====================================================================

Caches derived query results (published listings, featured/popular
rankings, single announcements).  Each key falls into a category decided
by its text; the category fixes the default TTL and how many entries of
that category may live at once.

    ===============  ========  =====
    key               TTL (s)   cap
    ===============  ========  =====
    announcement:*    300       500
    *published*       180       1
    *featured*        600       1
    *popular*         900       10
    *trending*        1800      10
    *categories*      3600      1
    *tags*            3600      1
    *statistics*      300       1
    *types*           86400     1
    anything else     300       1000
    ===============  ========  =====

Herald itself fills ``announcement:<id>``, ``published:<n>``,
``featured:<n>`` and ``popular:<n>`` (see
:mod:`herald.services.announcement_service`).  The trending, categories,
tags, statistics and types rows are for listings that callers outside the
package cache here; they are still cleared on every announcement change.

First match wins, top to bottom.  When a category is full, ``set`` evicts
that category's oldest *inserted* entry (FIFO, reads do not refresh
position).  Nothing here survives a restart.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


# ---------------------------------------------------------------------------
# Category policies
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CachePolicy:
    category: str
    ttl: float
    max_items: int


ANNOUNCEMENT_PREFIX = "announcement:"

ANNOUNCEMENT_POLICY = CachePolicy("announcement", 300, 500)
DEFAULT_POLICY = CachePolicy("default", 300, 1000)

# Matched by substring, in order
SUBSTRING_POLICIES: tuple[CachePolicy, ...] = (
    CachePolicy("published", 180, 1),
    CachePolicy("featured", 600, 1),
    CachePolicy("popular", 900, 10),
    CachePolicy("trending", 1800, 10),
    CachePolicy("categories", 3600, 1),
    CachePolicy("tags", 3600, 1),
    CachePolicy("statistics", 300, 1),
    CachePolicy("types", 86400, 1),
)

# Patterns cleared whenever any announcement changes
LIST_INVALIDATION_PATTERNS: tuple[str, ...] = (
    "published",
    "featured",
    "popular",
    "trending",
    "categories",
    "tags",
    "statistics",
    "type:.*",
    "category:.*",
)


def policy_for(key: str) -> CachePolicy:
    """Resolve the category policy for *key*."""
    if key.startswith(ANNOUNCEMENT_PREFIX):
        return ANNOUNCEMENT_POLICY
    for policy in SUBSTRING_POLICIES:
        if policy.category in key:
            return policy
    return DEFAULT_POLICY


@dataclass(slots=True)
class CacheEntry:
    value: Any
    created_at: float
    ttl: float
    category: str

    def expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


class _Flight:
    """Per-key lock shared by callers racing on the same cache miss."""

    __slots__ = ("lock", "waiters")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.waiters = 0


# ---------------------------------------------------------------------------
# ContentCache
# ---------------------------------------------------------------------------
class ContentCache:
    """Thread-safe TTL cache keyed by string.

    Usage::

        cache = ContentCache()
        cache.set("popular:10", rows, ttl=900)
        rows = cache.get("popular:10")

        listing = cache.get_or_set("published:list", lambda: load(engine))
        cache.invalidate_announcement_cache(announcement_id)

    *clock* must be monotonic seconds; tests pass a fake.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._inflight: dict[str, _Flight] = {}
        self._hits = 0
        self._misses = 0

    # -------------------------------------------------------------------
    # Basic operations
    # -------------------------------------------------------------------
    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or *default* if absent or expired."""
        value = self._lookup(key)
        return default if value is _MISSING else value

    def _lookup(self, key: str) -> Any:
        try:
            with self._lock:
                entry = self._entries.get(key)
                if entry is None:
                    self._misses += 1
                    logger.debug("Cache miss: %s", key)
                    return _MISSING
                if entry.expired(self._clock()):
                    del self._entries[key]
                    self._misses += 1
                    logger.debug("Cache expired: %s", key)
                    return _MISSING
                self._hits += 1
                logger.debug("Cache hit: %s", key)
                return entry.value
        except Exception:
            logger.exception("Cache get failed for %s", key)
            return _MISSING

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store *value* under *key*.

        Sweeps expired entries, then evicts the oldest entry of the key's
        category if that category is at its cap.  Re-setting an existing
        key counts as a fresh insert.
        """
        policy = policy_for(key)
        effective_ttl = policy.ttl if ttl is None else ttl
        try:
            with self._lock:
                now = self._clock()
                self._sweep(now)
                self._entries.pop(key, None)

                in_category = [
                    k for k, e in self._entries.items() if e.category == policy.category
                ]
                if len(in_category) >= policy.max_items:
                    evicted = in_category[0]
                    del self._entries[evicted]
                    logger.debug(
                        "Cache evicted %s (category %s full)", evicted, policy.category
                    )

                self._entries[key] = CacheEntry(
                    value=value,
                    created_at=now,
                    ttl=effective_ttl,
                    category=policy.category,
                )
            logger.debug("Cache set: %s (ttl %ss)", key, effective_ttl)
        except Exception:
            logger.exception("Cache set failed for %s", key)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
        logger.info("Cache cleared")

    def _sweep(self, now: float) -> None:
        """Drop expired entries.  Caller holds ``_lock``."""
        stale = [k for k, e in self._entries.items() if e.expired(now)]
        for key in stale:
            del self._entries[key]

    # -------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------
    def clear_by_pattern(self, pattern: str | re.Pattern[str]) -> int:
        """Delete every key where *pattern* matches anywhere in the key."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        with self._lock:
            doomed = [k for k in self._entries if regex.search(k)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Cleared %d cache entries matching %s", len(doomed), regex.pattern)
        return len(doomed)

    def invalidate_announcement_cache(self, announcement_id: str | None = None) -> int:
        """Clear all list-shaped entries, plus ``announcement:<id>`` if given."""
        try:
            cleared = sum(self.clear_by_pattern(p) for p in LIST_INVALIDATION_PATTERNS)
            if announcement_id is not None:
                cleared += int(self.delete(f"{ANNOUNCEMENT_PREFIX}{announcement_id}"))
            logger.debug(
                "Invalidated %d cache entries for announcement %s",
                cleared, announcement_id or "*",
            )
            return cleared
        except Exception:
            logger.exception("Cache invalidation failed for %s", announcement_id)
            return 0

    # -------------------------------------------------------------------
    # Cache-aside
    # -------------------------------------------------------------------
    def get_or_set(
        self, key: str, fetch: Callable[[], T], ttl: float | None = None
    ) -> T:
        """Return the cached value for *key*, calling *fetch* on a miss.

        Concurrent misses for the same key wait on one another, so *fetch*
        runs once per expiry.  Errors from *fetch* propagate and nothing
        is cached.
        """
        value = self._lookup(key)
        if value is not _MISSING:
            return value

        with self._lock:
            flight = self._inflight.setdefault(key, _Flight())
            flight.waiters += 1
        try:
            with flight.lock:
                value = self._lookup(key)
                if value is not _MISSING:
                    return value
                value = fetch()
                self.set(key, value, ttl)
                return value
        finally:
            with self._lock:
                flight.waiters -= 1
                if flight.waiters == 0:
                    self._inflight.pop(key, None)

    @staticmethod
    def generate_key(prefix: str, *params: Any) -> str:
        """``generate_key("type", "event", 2)`` → ``"type:event:2"``."""
        return ":".join([prefix, *(str(p) for p in params)])

    # -------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------
    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            categories: dict[str, int] = {}
            for entry in self._entries.values():
                categories[entry.category] = categories.get(entry.category, 0) + 1
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "keys": list(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": (self._hits / total) if total else 0.0,
                "categories": categories,
            }
