"""
ValidCacheEntries marking and the sweep of unmarked entries.
"""

import threading

from filevendor.storage.cache import FileCacheStore
from filevendor.storage.validity import ValidCacheEntries


def test_concurrent_marks_are_not_lost(store: FileCacheStore):
    tracker = ValidCacheEntries()
    keys = [store.key_for("apache2", f"files/{i}.txt") for i in range(400)]

    def mark(chunk):
        for key in chunk:
            tracker.mark_valid(key)

    threads = [threading.Thread(target=mark, args=(keys[i::4],)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert tracker.valid_keys() == frozenset(keys)


async def test_sweep_removes_only_unmarked_entries(store: FileCacheStore):
    tracker = ValidCacheEntries()
    used = store.key_for("apache2", "recipes/default.rb")
    unused = store.key_for("apache2", "recipes/old.rb")
    other_collection = store.key_for("nginx", "recipes/default.rb")
    for key in (used, unused, other_collection):
        await store.install_bytes(key, b"x")
    tracker.mark_valid(used)

    removed = await tracker.sweep(store, "apache2")

    assert removed == [unused]
    assert await store.exists(used)
    assert await store.exists(other_collection)
    assert not tracker.is_valid(used)


async def test_sweep_without_collection_covers_the_namespace(store: FileCacheStore):
    tracker = ValidCacheEntries()
    keep = store.key_for("apache2", "a.rb")
    await store.install_bytes(keep, b"a")
    await store.install_bytes(store.key_for("nginx", "b.rb"), b"b")
    tracker.mark_valid(keep)

    removed = await tracker.sweep(store)

    assert [str(k) for k in removed] == ["collections/nginx/b.rb"]
    assert tracker.valid_keys() == frozenset()


async def test_sweep_keeps_marks_of_other_collections(store: FileCacheStore):
    tracker = ValidCacheEntries()
    nginx_key = store.key_for("nginx", "b.rb")
    tracker.mark_valid(store.key_for("apache2", "a.rb"))
    tracker.mark_valid(nginx_key)

    await tracker.sweep(store, "apache2")

    assert tracker.valid_keys() == frozenset({nginx_key})


async def test_resolver_marks_protect_entries_from_sweep(
    manifest, store, fetcher
):
    from filevendor.core.resolver import Resolver

    from .conftest import ContentChecksum

    tracker = ValidCacheEntries()
    resolver = Resolver(manifest, store, fetcher, tracker, checksum=ContentChecksum())
    stale = store.key_for("apache2", "recipes/removed.rb")
    await store.install_bytes(stale, b"gone")

    path = await resolver.resolve("recipes/default.rb")
    removed = await tracker.sweep(store, "apache2")

    assert removed == [stale]
    assert path.exists()


class MarkingStore(FileCacheStore):
    """A store that marks a key while the sweep enumerates, like a resolver would."""

    def __init__(self, cache_dir, tracker, key_to_mark):
        super().__init__(cache_dir)
        self.tracker = tracker
        self.key_to_mark = key_to_mark

    async def keys(self, collection_name=None):
        found = await super().keys(collection_name)
        self.tracker.mark_valid(self.key_to_mark)
        return found


async def test_mark_during_sweep_keeps_entry_and_mark(tmp_path):
    tracker = ValidCacheEntries()
    store = MarkingStore(tmp_path / "cache", tracker, None)
    key = store.key_for("apache2", "default.rb")
    store.key_to_mark = key
    await store.install_bytes(key, b"abc123")

    removed = await tracker.sweep(store, "apache2")

    assert removed == []
    assert await store.exists(key)
    assert tracker.is_valid(key)

    # A second sweep ends the period that mark belonged to.
    store.key_to_mark = store.key_for("apache2", "other.rb")
    assert await tracker.sweep(store, "apache2") == []
    assert not tracker.is_valid(key)
