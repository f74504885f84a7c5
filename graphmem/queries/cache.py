"""TTL cache for the read side.

Entries are keyed by (operation, user, parameters). Each entry may be
tagged with the node ids it depends on: ``invalidate_node`` drops the
entries tagged with that node plus every untagged (user-wide) entry of the
user, and ``invalidate_user`` drops all of the user's entries.

Invalidation also bumps the user's generation. ``get_or_load`` remembers
the generation before calling the loader and drops the result if it moved,
so a read that overlapped a write never repopulates the cache with
pre-write data.

The cache is an optimization only; the store stays the system of record.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Iterable, TypeVar

from graphmem.log_config import get_logger

log = get_logger("queries.cache")

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300
DEFAULT_MAX_ENTRIES = 1024

CacheKey = tuple[str, str, tuple]


def _freeze(value: Any) -> Hashable:
    if isinstance(value, dict):
        return tuple(sorted((k, _freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_freeze(v) for v in value]
        return tuple(sorted(items, key=repr) if isinstance(value, (set, frozenset)) else items)
    return value


def make_key(operation: str, user_id: Any, params: dict[str, Any] | None = None) -> CacheKey:
    return (operation, str(user_id), _freeze(params or {}))


@dataclass
class _Entry:
    value: Any
    expires_at: float
    tags: frozenset[str] = field(default_factory=frozenset)


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "invalidations": self.invalidations,
            "hit_rate": round(self.hit_rate, 4),
        }


class QueryCache:
    """Thread-safe TTL cache with size-bounded LRU eviction."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[CacheKey, _Entry] = OrderedDict()
        self._generations: dict[str, int] = {}
        self._clears = 0
        self.stats = CacheStats()

    def get(self, key: CacheKey) -> tuple[Any, bool]:
        """Return (value, found); expired entries count as misses."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expires_at <= now:
                if entry is not None:
                    del self._entries[key]
                self.stats.misses += 1
                return None, False
            self._entries.move_to_end(key)
            self.stats.hits += 1
            return entry.value, True

    def generation(self, user_id: Any) -> tuple[int, int]:
        """Opaque token that changes whenever the user's entries are invalidated."""
        with self._lock:
            return self._generation(str(user_id))

    def _generation(self, user: str) -> tuple[int, int]:
        return self._clears, self._generations.get(user, 0)

    def _bump(self, user: str) -> None:
        self._generations[user] = self._generations.get(user, 0) + 1

    def set(
        self,
        key: CacheKey,
        value: Any,
        tags: Iterable[str] = (),
        generation: tuple[int, int] | None = None,
    ) -> bool:
        """Store ``value``; refused when ``generation`` is no longer current.

        Returns:
            True if the value was stored
        """
        with self._lock:
            if generation is not None and self._generation(key[1]) != generation:
                return False
            self._entries[key] = _Entry(value, self._clock() + self.ttl_seconds, frozenset(str(t) for t in tags))
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self.stats.evictions += 1
            return True

    def get_or_load(
        self,
        operation: str,
        user_id: Any,
        params: dict[str, Any] | None,
        loader: Callable[[], T],
        tags: Iterable[str] = (),
    ) -> T:
        """Serve from cache or call ``loader`` and remember its result.

        Loader errors propagate and nothing is cached. A result is not cached
        when the user was invalidated while the loader ran.
        """
        key = make_key(operation, user_id, params)
        value, found = self.get(key)
        if found:
            log.trace(f"Cache hit: {operation} user={user_id}")
            return value
        generation = self.generation(user_id)
        value = loader()
        if not self.set(key, value, tags, generation=generation):
            log.debug(f"Discarded stale {operation} result for user {user_id}: invalidated during load")
        return value

    def invalidate_user(self, user_id: Any) -> int:
        user = str(user_id)
        with self._lock:
            doomed = [k for k in self._entries if k[1] == user]
            for k in doomed:
                del self._entries[k]
            self._bump(user)
            self.stats.invalidations += len(doomed)
        if doomed:
            log.debug(f"Invalidated {len(doomed)} cache entries for user {user}")
        return len(doomed)

    def invalidate_node(self, user_id: Any, node_id: Any) -> int:
        user, node = str(user_id), str(node_id)
        with self._lock:
            doomed = [
                k for k, entry in self._entries.items()
                if k[1] == user and (not entry.tags or node in entry.tags)
            ]
            for k in doomed:
                del self._entries[k]
            self._bump(user)
            self.stats.invalidations += len(doomed)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._clears += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
