"""
Batch resolution: per-path failures, statistics, sweeping and history.
"""

import asyncio
import json

import pytest

from filevendor.core.resolver import Resolver
from filevendor.core.session import ResolveSession
from filevendor.exceptions import CacheIOError, FetchFailedError, UnknownFileError
from filevendor.media.downloader import Downloader
from filevendor.storage.validity import ValidCacheEntries
from filevendor.utils.structured_logger import create_structured_logger

from .conftest import DEFAULT_URL, ContentChecksum


@pytest.fixture
def valid_entries() -> ValidCacheEntries:
    return ValidCacheEntries()


@pytest.fixture
def session(manifest, store, fetcher, valid_entries, tmp_path) -> ResolveSession:
    resolver = Resolver(
        manifest, store, fetcher, valid_entries, checksum=ContentChecksum()
    )
    return ResolveSession(
        resolver, store, valid_entries, max_workers=2, history_dir=tmp_path / "state"
    )


async def test_resolve_all_collects_failures(session, fetcher):
    fetcher.payloads[DEFAULT_URL] = ConnectionError("refused")

    result = await session.resolve_all(
        [
            "recipes/default.rb",
            "templates/default/site.conf.erb",
            "recipes/missing.rb",
        ]
    )

    assert not result.ok
    assert list(result.resolved) == ["templates/default/site.conf.erb"]
    assert isinstance(result.failed["recipes/default.rb"], FetchFailedError)
    assert isinstance(result.failed["recipes/missing.rb"], UnknownFileError)
    assert session.stats.files_failed == 2
    assert session.stats.files_fetched == 1


async def test_duplicate_paths_are_resolved_once(session, fetcher):
    result = await session.resolve_all(["recipes/default.rb"] * 3)

    assert result.ok
    assert len(result.resolved) == 1
    assert fetcher.calls == [DEFAULT_URL]


async def test_empty_request_is_a_no_op(session, fetcher):
    result = await session.resolve_all([])

    assert result.ok
    assert result.resolved == {}
    assert fetcher.calls == []


async def test_sync_counts_hits_and_fetches(session, store, default_key):
    await store.install_bytes(default_key, b"abc123")

    result = await session.sync()

    assert result.ok
    assert session.stats.files_up_to_date == 1
    assert session.stats.files_fetched == 1
    assert session.stats.total_size_fetched == len(b"site-v1")
    assert result.swept == []


async def test_sync_with_sweep_removes_unlisted_entries(session, store):
    stale = store.key_for("apache2", "recipes/removed.rb")
    other = store.key_for("nginx", "default.rb")
    await store.install_bytes(stale, b"gone")
    await store.install_bytes(other, b"kept")
    session.sweep_after = True

    result = await session.sync()

    assert result.swept == [stale]
    assert session.stats.entries_swept == 1
    assert not await store.exists(stale)
    assert await store.exists(other)


async def test_sweep_keeps_entries_whose_refresh_failed(
    session, store, fetcher, default_key
):
    await store.install_bytes(default_key, b"old999")
    fetcher.payloads[DEFAULT_URL] = TimeoutError()
    session.sweep_after = True

    result = await session.sync()

    assert not result.ok
    assert result.swept == []
    assert await store.read(default_key) == b"old999"


async def test_session_history_is_appended(session, tmp_path):
    await session.sync()
    session.save_session_stats()
    session.save_session_stats()

    lines = (tmp_path / "state" / "session_history.jsonl").read_text().splitlines()
    assert len(lines) == 2
    entry = json.loads(lines[0])
    assert entry["collection"] == "apache2"
    assert entry["files_fetched"] == 2


async def test_events_are_written_as_json_lines(
    manifest, store, fetcher, valid_entries, tmp_path
):
    base, events = create_structured_logger(tmp_path / "logs", enable_json=True)
    resolver = Resolver(
        manifest,
        store,
        fetcher,
        valid_entries,
        checksum=ContentChecksum(),
        events=events,
    )
    session = ResolveSession(resolver, store, valid_entries, events=events)
    fetcher.payloads[DEFAULT_URL] = OSError("down")

    await session.sync()
    base.close()

    entries = [json.loads(line) for line in base.json_log_path.read_text().splitlines()]
    names = [entry["event"] for entry in entries]
    assert names.count("fetch_failed") == 1
    assert names.count("file_fetched") == 1
    assert names[-1] == "session_completed"
    assert entries[-1]["files_failed"] == 1


async def test_staging_failure_is_collected_per_path(
    manifest, store, valid_entries, tmp_path
):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    async with Downloader(staging_dir=blocker / "staging", base_delay=0) as downloader:
        resolver = Resolver(manifest, store, downloader, valid_entries)
        session = ResolveSession(resolver, store, valid_entries)

        result = await session.resolve_all(
            ["recipes/default.rb", "templates/default/site.conf.erb"]
        )

    assert result.resolved == {}
    assert set(result.failed) == {
        "recipes/default.rb",
        "templates/default/site.conf.erb",
    }
    assert all(isinstance(e, CacheIOError) for e in result.failed.values())


async def test_unexpected_error_waits_for_siblings(session, store, monkeypatch):
    resolve_detailed = session.resolver.resolve_detailed

    async def flaky_resolve(logical_path):
        if logical_path == "recipes/default.rb":
            raise RuntimeError("bug")
        await asyncio.sleep(0.05)
        return await resolve_detailed(logical_path)

    monkeypatch.setattr(session.resolver, "resolve_detailed", flaky_resolve)

    with pytest.raises(RuntimeError):
        await session.resolve_all(
            ["recipes/default.rb", "templates/default/site.conf.erb"]
        )

    site_key = store.key_for("apache2", "templates/default/site.conf.erb")
    assert await store.read(site_key) == b"site-v1"
