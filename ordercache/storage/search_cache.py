# ordercache/storage/search_cache.py

"""In-memory TTL cache of merged search results."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from ordercache.config.settings import Settings
from ordercache.models.search import SearchResult

logger = logging.getLogger("ordercache.cache")


@dataclass
class CacheEntry:
    """A merged result for one query signature."""

    key: str
    result: SearchResult
    timestamp: float


class SearchCache:
    """Keyed result cache with a TTL and a most-recent-N bound.

    Entries are never invalidated by collection mutation; a result may
    lag behind pushed orders by at most the TTL.
    """

    def __init__(
        self,
        ttl: float | None = None,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._ttl: float = (
            Settings.SEARCH_CACHE_TTL if ttl is None else ttl
        )
        self._max_entries: int = (
            max_entries or Settings.SEARCH_CACHE_MAX_ENTRIES
        )
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def ttl(self) -> float:
        """Seconds an entry stays fresh."""
        return self._ttl

    def now(self) -> float:
        """Current reading of the cache clock."""
        return self._clock()

    def get(self, key: str) -> SearchResult | None:
        """Return the cached result for *key* if younger than the TTL."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        age = self._clock() - entry.timestamp
        if age >= self._ttl:
            logger.debug(
                "Cache entry expired after %.1fs", age,
            )
            del self._entries[key]
            return None
        logger.debug("Cache hit (age %.1fs)", age)
        return entry.result

    def store(
        self,
        key: str,
        result: SearchResult,
        timestamp: float | None = None,
    ) -> None:
        """Store *result*; overflow keeps the most recently computed."""
        stamp = self._clock() if timestamp is None else timestamp
        self._entries[key] = CacheEntry(key, result, stamp)
        if len(self._entries) > self._max_entries:
            self._prune()

    def clear(self) -> int:
        """Purge all cached entries.

        Returns the number of entries that were removed.
        """
        count = len(self._entries)
        self._entries.clear()
        logger.info("Search cache purged (%d entries removed)", count)
        return count

    def _prune(self) -> None:
        newest = sorted(
            self._entries.values(),
            key=lambda e: e.timestamp,
            reverse=True,
        )[: self._max_entries]
        evicted = len(self._entries) - len(newest)
        self._entries = {e.key: e for e in newest}
        logger.debug(
            "Pruned %d search cache entries", evicted,
        )
