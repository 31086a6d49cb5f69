"""
Shared fixtures: an example manifest, a cache store under tmp_path, and
in-memory stand-ins for the fetcher, checksum and validity tracker.
"""

import asyncio
from collections.abc import AsyncIterable
from pathlib import Path

import pytest

from filevendor.core.resolver import Resolver
from filevendor.exceptions import FetchFailedError
from filevendor.media.downloader import FetchedFile
from filevendor.models.manifest import Manifest
from filevendor.storage.cache import CacheKey, FileCacheStore

DEFAULT_URL = "https://x/default.rb"


class ContentChecksum:
    """Uses the content itself as its checksum, so b"abc123" checksums to "abc123"."""

    async def checksum_stream(self, chunks: AsyncIterable[bytes]) -> str:
        data = b"".join([chunk async for chunk in chunks])
        return data.decode("utf-8")


class RecordingTracker:
    """Remembers every mark, in order."""

    def __init__(self) -> None:
        self.marks: list[CacheKey] = []

    def mark_valid(self, key: CacheKey) -> None:
        self.marks.append(key)


class FakeFetcher:
    """
    Serves payloads from a dict. A value that is an exception is raised
    (wrapped in FetchFailedError like the real downloader does).
    """

    def __init__(self, staging_dir: Path, payloads: dict[str, bytes | Exception]):
        self.staging_dir = staging_dir
        self.payloads = payloads
        self.calls: list[str] = []
        self.delay = 0.0
        self.gate: asyncio.Event | None = None

    async def fetch(self, url: str) -> FetchedFile:
        self.calls.append(url)
        index = len(self.calls)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)

        payload = self.payloads[url]
        if isinstance(payload, Exception):
            raise FetchFailedError(url, payload)

        self.staging_dir.mkdir(parents=True, exist_ok=True)
        path = self.staging_dir / f"fetch-{index}.tmp"
        path.write_bytes(payload)
        return FetchedFile(path=path, size=len(payload), url=url)


@pytest.fixture
def manifest() -> Manifest:
    return Manifest.from_records(
        "apache2",
        [
            {
                "logical_path": "recipes/default.rb",
                "storage_path": "default.rb",
                "checksum": "abc123",
                "url": DEFAULT_URL,
            },
            {
                "logical_path": "templates/default/site.conf.erb",
                "storage_path": "templates/default/site.conf.erb",
                "checksum": "site-v1",
                "url": "https://x/site.conf.erb",
            },
        ],
    )


@pytest.fixture
def store(tmp_path: Path) -> FileCacheStore:
    return FileCacheStore(tmp_path / "cache")


@pytest.fixture
def tracker() -> RecordingTracker:
    return RecordingTracker()


@pytest.fixture
def fetcher(tmp_path: Path) -> FakeFetcher:
    return FakeFetcher(
        tmp_path / "cache" / ".staging",
        {DEFAULT_URL: b"abc123", "https://x/site.conf.erb": b"site-v1"},
    )


@pytest.fixture
def resolver(manifest, store, fetcher, tracker) -> Resolver:
    return Resolver(manifest, store, fetcher, tracker, checksum=ContentChecksum())


@pytest.fixture
def default_key(store: FileCacheStore) -> CacheKey:
    return store.key_for("apache2", "default.rb")
