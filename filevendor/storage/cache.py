"""
A filesystem-backed content cache for manifest files.

Entries are stored as plain files under
``<cache_dir>/<namespace>/<collection_name>/<storage_path>`` so that
external cleanup tooling can enumerate the same key space by walking the
directory tree. No checksum metadata is stored next to the bytes; validity is
always recomputed from the content.
"""

import asyncio
import errno
import logging
import os
import shutil
import tempfile
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import aiofiles

from filevendor.exceptions import CacheIOError, CacheNotFoundError
from filevendor.models.config import DEFAULT_NAMESPACE

log = logging.getLogger(__name__)

TEMP_PREFIX = ".filevendor-"
TEMP_SUFFIX = ".tmp"


@dataclass(frozen=True, order=True)
class CacheKey:
    """Deterministic address of a cache entry."""

    collection_name: str
    storage_path: str
    namespace: str = DEFAULT_NAMESPACE

    def __str__(self) -> str:
        return f"{self.namespace}/{self.collection_name}/{self.storage_path}"


def is_temp_file(path: Path) -> bool:
    """Tells whether a file is an in-progress install or download."""
    return path.name.startswith(TEMP_PREFIX) and path.name.endswith(TEMP_SUFFIX)


class FileCacheStore:
    """
    Stores cache entries as files and installs new content atomically.

    New content is always written to a temporary file on the same filesystem
    and moved into place with `os.replace`, so a reader sees either the
    previous complete entry or the new complete entry.
    """

    def __init__(self, cache_dir: Path, namespace: str = DEFAULT_NAMESPACE):
        self.cache_dir = Path(cache_dir).expanduser()
        self.namespace = namespace
        self.root = self.cache_dir / namespace
        self.staging_dir = self.cache_dir / ".staging"
        self.root.mkdir(parents=True, exist_ok=True)
        self.staging_dir.mkdir(parents=True, exist_ok=True)

    def key_for(self, collection_name: str, storage_path: str) -> CacheKey:
        """Derives the cache key for a file of a collection."""
        return CacheKey(collection_name, storage_path, self.namespace)

    def path_for(self, key: CacheKey) -> Path:
        """Returns the local path of a cache entry, whether it exists or not."""
        relative = PurePosixPath(key.storage_path)
        if relative.is_absolute() or ".." in relative.parts:
            raise CacheIOError(
                f"Cache key escapes the cache directory: {key}", cache_key=str(key)
            )
        return self.root / key.collection_name / Path(*relative.parts)

    # --- Synchronous implementations -------------------------------------

    def _exists_sync(self, key: CacheKey) -> bool:
        return self.path_for(key).is_file()

    def _read_sync(self, key: CacheKey) -> bytes:
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise CacheNotFoundError(
                f"No cache entry for '{key}'", cache_key=str(key)
            ) from e
        except OSError as e:
            raise CacheIOError(
                f"Failed to read cache entry '{key}': {e}", cache_key=str(key)
            ) from e

    def _new_temp_path(self, directory: Path) -> Path:
        fd, temp_name = tempfile.mkstemp(
            prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX, dir=directory
        )
        os.close(fd)
        return Path(temp_name)

    def _install_sync(self, key: CacheKey, source: Path) -> Path:
        """Moves `source` into place as the entry for `key`."""
        destination = self.path_for(key)
        temp_path: Path | None = None
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            try:
                os.replace(source, destination)
            except OSError as e:
                if e.errno != errno.EXDEV:
                    raise
                # Different filesystem: copy next to the destination first.
                temp_path = self._new_temp_path(destination.parent)
                shutil.copyfile(source, temp_path)
                os.replace(temp_path, destination)
                temp_path = None
                Path(source).unlink(missing_ok=True)
        except OSError as e:
            raise CacheIOError(
                f"Failed to install cache entry '{key}': {e}", cache_key=str(key)
            ) from e
        finally:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
        log.debug(f"Installed cache entry '{key}' at {destination}")
        return destination

    def _install_bytes_sync(self, key: CacheKey, data: bytes) -> Path:
        destination = self.path_for(key)
        temp_path: Path | None = None
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self._new_temp_path(destination.parent)
            with open(temp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, destination)
            temp_path = None
        except OSError as e:
            raise CacheIOError(
                f"Failed to install cache entry '{key}': {e}", cache_key=str(key)
            ) from e
        finally:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
        return destination

    def _remove_sync(self, key: CacheKey) -> bool:
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CacheIOError(
                f"Failed to remove cache entry '{key}': {e}", cache_key=str(key)
            ) from e
        self._prune_empty_dirs(path.parent)
        return True

    def _prune_empty_dirs(self, directory: Path) -> None:
        """Removes empty parent directories up to the collection directory."""
        while directory != self.root and self.root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                return
            directory = directory.parent

    def _keys_sync(self, collection_name: str | None = None) -> list[CacheKey]:
        if collection_name is not None:
            collection_dirs = [self.root / collection_name]
        else:
            collection_dirs = [p for p in self.root.iterdir() if p.is_dir()]

        keys = []
        for collection_dir in collection_dirs:
            if not collection_dir.is_dir():
                continue
            for path in collection_dir.rglob("*"):
                if path.is_file() and not is_temp_file(path):
                    storage_path = path.relative_to(collection_dir).as_posix()
                    keys.append(
                        CacheKey(collection_dir.name, storage_path, self.namespace)
                    )
        return sorted(keys)

    def _clear_sync(self) -> int:
        removed = 0
        for key in self._keys_sync():
            if self._remove_sync(key):
                removed += 1
        for stale in self.staging_dir.glob(f"{TEMP_PREFIX}*{TEMP_SUFFIX}"):
            stale.unlink(missing_ok=True)
        return removed

    # --- Async API -------------------------------------------------------

    async def exists(self, key: CacheKey) -> bool:
        """Checks whether an entry exists for `key`."""
        return await asyncio.to_thread(self._exists_sync, key)

    async def read(self, key: CacheKey) -> bytes:
        """
        Reads the whole content of an entry. Never triggers a remote fetch.

        Raises:
            CacheNotFoundError: If no entry exists for `key`.
            CacheIOError: If the entry cannot be read.
        """
        return await asyncio.to_thread(self._read_sync, key)

    async def iter_chunks(
        self, key: CacheKey, chunk_size: int = 1048576
    ) -> AsyncIterator[bytes]:
        """Streams the content of an entry in chunks."""
        path = self.path_for(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                while chunk := await f.read(chunk_size):
                    yield chunk
        except FileNotFoundError as e:
            raise CacheNotFoundError(
                f"No cache entry for '{key}'", cache_key=str(key)
            ) from e
        except OSError as e:
            raise CacheIOError(
                f"Failed to read cache entry '{key}': {e}", cache_key=str(key)
            ) from e

    async def install(self, key: CacheKey, source: Path) -> Path:
        """
        Atomically replaces the entry for `key` with the file at `source`.

        The source file is consumed. On failure the previous entry is left
        untouched.

        Raises:
            CacheIOError: If the file cannot be moved into place.
        """
        return await asyncio.to_thread(self._install_sync, key, source)

    async def install_bytes(self, key: CacheKey, data: bytes) -> Path:
        """Atomically replaces the entry for `key` with `data`."""
        return await asyncio.to_thread(self._install_bytes_sync, key, data)

    async def remove(self, key: CacheKey) -> bool:
        """Deletes an entry. Returns False if there was nothing to delete."""
        return await asyncio.to_thread(self._remove_sync, key)

    async def keys(self, collection_name: str | None = None) -> list[CacheKey]:
        """Enumerates the entries of one or all collections."""
        return await asyncio.to_thread(self._keys_sync, collection_name)

    async def clear(self) -> int:
        """Removes every entry in the namespace and returns how many were removed."""
        log.info("Clearing all cache entries...")
        return await asyncio.to_thread(self._clear_sync)
