"""
Tracks which cache entries are in use so that a later sweep can remove the rest.
"""

import logging
import threading

from filevendor.exceptions import CacheIOError

from .cache import CacheKey, FileCacheStore

log = logging.getLogger(__name__)


class ValidCacheEntries:
    """
    A thread-safe record of the cache keys used since the last sweep.

    Resolvers call `mark_valid` for every key they touch, hit or miss. The
    sweep deletes every entry that was not marked and then starts a new
    marking period.
    """

    def __init__(self) -> None:
        self._valid: set[CacheKey] = set()
        self._lock = threading.Lock()

    def mark_valid(self, key: CacheKey) -> None:
        with self._lock:
            self._valid.add(key)

    def is_valid(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._valid

    def valid_keys(self) -> frozenset[CacheKey]:
        with self._lock:
            return frozenset(self._valid)

    def reset(self) -> None:
        with self._lock:
            self._valid.clear()

    async def sweep(
        self, store: FileCacheStore, collection_name: str | None = None
    ) -> list[CacheKey]:
        """
        Removes every entry of the store (or of one collection) that was not
        marked valid, then starts a new marking period for that scope.

        Marks that arrive while the sweep runs belong to the new period: the
        entry is kept and the mark survives the sweep.

        Args:
            store: The cache store to clean.
            collection_name: Restricts the sweep to a single collection.

        Returns:
            The keys that were removed.
        """
        with self._lock:
            previous = {
                key
                for key in self._valid
                if collection_name is None or key.collection_name == collection_name
            }
            self._valid -= previous

        removed = []
        for key in await store.keys(collection_name):
            if key in previous or self.is_valid(key):
                continue
            try:
                if await store.remove(key):
                    removed.append(key)
                    log.debug(f"Removed unused cache entry '{key}'")
            except CacheIOError as e:
                log.warning(f"[yellow]Could not remove '{key}':[/] {e}")

        scope = f"collection '{collection_name}'" if collection_name else "cache"
        log.info(f"Cache sweep of {scope}: removed {len(removed)} unused entries.")
        return removed
