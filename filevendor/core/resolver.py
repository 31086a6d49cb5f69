"""
Resolves logical file paths of a manifest to checksum-validated local files.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from filevendor.exceptions import (
    CacheIOError,
    CacheNotFoundError,
    FetchFailedError,
    MalformedIdentityError,
    UnknownFileError,
)
from filevendor.media.integrity import ChecksumComparator
from filevendor.models.manifest import SEGMENT_PATTERN, Manifest, ManifestRecord
from filevendor.storage.cache import CacheKey
from filevendor.utils.formatting import short_checksum
from filevendor.utils.locks import KeyedLocks
from filevendor.utils.structured_logger import ResolveLogger

from .interfaces import CacheStorePort, ChecksumPort, FetcherPort, ValidityTrackerPort

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one logical path."""

    logical_path: str
    cache_key: CacheKey
    path: Path
    fetched: bool
    size: int = 0


class Resolver:
    """
    Serves the files of one manifest from the local cache, fetching a fresh
    copy whenever the cached content does not match the manifest checksum.

    The manifest, store, fetcher and validity tracker are injected and owned
    by the caller. The resolver keeps no state of its own apart from the
    per-key locks that keep concurrent callers from downloading the same
    entry twice.
    """

    def __init__(
        self,
        manifest: Manifest,
        store: CacheStorePort,
        fetcher: FetcherPort,
        tracker: ValidityTrackerPort,
        checksum: ChecksumPort | None = None,
        events: ResolveLogger | None = None,
        locks: KeyedLocks | None = None,
    ):
        self.manifest = manifest
        self.store = store
        self.fetcher = fetcher
        self.tracker = tracker
        self.checksum = checksum or ChecksumComparator()
        self.events = events
        self._locks = locks or KeyedLocks()

    @property
    def collection_name(self) -> str:
        return self.manifest.collection_name

    @staticmethod
    def segment_of(logical_path: str) -> str:
        """
        Returns the leading segment of a logical path (e.g. "recipes").

        The segment is only used in diagnostics; lookups use the full path.

        Raises:
            MalformedIdentityError: If the path has no `<segment>/<name>` form.
        """
        match = SEGMENT_PATTERN.search(logical_path)
        if not match:
            raise MalformedIdentityError(logical_path)
        return match.group(1)

    def _lookup(self, logical_path: str) -> ManifestRecord:
        segment = self.segment_of(logical_path)
        record = self.manifest.get(logical_path)
        if record is None:
            raise UnknownFileError(logical_path, self.collection_name, segment)
        return record

    def cache_key(self, logical_path: str) -> CacheKey:
        """Derives the cache key of a manifest file."""
        record = self._lookup(logical_path)
        return self.store.key_for(self.collection_name, record.storage_path)

    def _mark_valid(self, key: CacheKey) -> None:
        # Tracker failures must never abort a resolution.
        try:
            self.tracker.mark_valid(key)
        except Exception as e:
            log.warning(f"[yellow]Could not mark '{key}' as valid:[/] {e}")

    async def _current_checksum(self, key: CacheKey) -> str | None:
        if not await self.store.exists(key):
            return None
        try:
            return await self.checksum.checksum_stream(self.store.iter_chunks(key))
        except CacheNotFoundError:
            # Removed between the existence check and the read.
            return None

    async def resolve(self, logical_path: str) -> Path:
        """
        Returns the local path of a manifest file, fetching it first if the
        cached copy is missing or its checksum differs from the manifest.

        Raises:
            MalformedIdentityError: If `logical_path` has no segment.
            UnknownFileError: If the manifest does not list `logical_path`.
            FetchFailedError: If a required fetch failed. The cache is unchanged.
            CacheIOError: If the cache could not be read or written.
        """
        resolution = await self.resolve_detailed(logical_path)
        return resolution.path

    get_filename = resolve

    async def resolve_detailed(self, logical_path: str) -> Resolution:
        """Like `resolve`, but also reports whether a fetch happened."""
        record = self._lookup(logical_path)
        key = self.store.key_for(self.collection_name, record.storage_path)

        # Marked before any fetch decision so a concurrent sweep keeps it.
        self._mark_valid(key)

        current_checksum = await self._current_checksum(key)
        if ChecksumComparator.matches(current_checksum, record.checksum):
            return self._up_to_date(logical_path, key, record)

        async with self._locks.hold(key):
            # Another caller may have installed the entry while we waited.
            current_checksum = await self._current_checksum(key)
            if ChecksumComparator.matches(current_checksum, record.checksum):
                return self._up_to_date(logical_path, key, record)
            return await self._fetch_and_install(
                logical_path, key, record, current_checksum
            )

    def _up_to_date(
        self, logical_path: str, key: CacheKey, record: ManifestRecord
    ) -> Resolution:
        log.debug(f"Not fetching {key}, as the cache is up to date.")
        if self.events:
            self.events.file_up_to_date(logical_path, str(key), record.checksum)
        return Resolution(logical_path, key, self.store.path_for(key), fetched=False)

    async def _fetch_and_install(
        self,
        logical_path: str,
        key: CacheKey,
        record: ManifestRecord,
        current_checksum: str | None,
    ) -> Resolution:
        log.debug(
            f"Refreshing {key}: cached checksum {short_checksum(current_checksum)}, "
            f"manifest checksum {short_checksum(record.checksum)}"
        )
        try:
            fetched = await self.fetcher.fetch(record.url)
        except FetchFailedError as e:
            if self.events:
                self.events.fetch_failed(logical_path, str(key), record.url, str(e))
            raise FetchFailedError(
                e.url, e.cause, logical_path=logical_path, cache_key=str(key)
            ) from e

        log.debug(f"Storing updated {key} in the cache.")
        source = fetched.consume()
        try:
            path = await self.store.install(key, source)
        except CacheIOError:
            source.unlink(missing_ok=True)
            raise

        if self.events:
            self.events.file_fetched(
                logical_path, str(key), record.url, fetched.size, current_checksum
            )
        return Resolution(logical_path, key, path, fetched=True, size=fetched.size)
