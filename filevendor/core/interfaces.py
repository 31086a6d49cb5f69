"""Collaborator interfaces consumed by the resolver."""

from collections.abc import AsyncIterable, AsyncIterator
from pathlib import Path
from typing import Protocol

from filevendor.media.downloader import FetchedFile
from filevendor.storage.cache import CacheKey


class CacheStorePort(Protocol):
    """Port for cache storage operations."""

    def key_for(self, collection_name: str, storage_path: str) -> CacheKey:
        """Derive the cache key of a collection file."""
        ...

    def path_for(self, key: CacheKey) -> Path:
        """Get the local path of an entry."""
        ...

    async def exists(self, key: CacheKey) -> bool:
        """Check whether an entry exists."""
        ...

    def iter_chunks(
        self, key: CacheKey, chunk_size: int = ...
    ) -> AsyncIterator[bytes]:
        """Stream the content of an entry."""
        ...

    async def install(self, key: CacheKey, source: Path) -> Path:
        """Atomically replace an entry with a file."""
        ...


class FetcherPort(Protocol):
    """Port for remote fetches."""

    async def fetch(self, url: str) -> FetchedFile:
        """Download a remote file to a temporary location."""
        ...


class ChecksumPort(Protocol):
    """Port for content checksums."""

    async def checksum_stream(self, chunks: AsyncIterable[bytes]) -> str:
        """Compute the checksum of streamed content."""
        ...


class ValidityTrackerPort(Protocol):
    """Port for recording the cache entries in use."""

    def mark_valid(self, key: CacheKey) -> None:
        """Record that an entry is in use."""
        ...
