"""
FileCacheStore: key layout, atomic install, enumeration and removal.
"""

import asyncio
import hashlib
import os
from pathlib import Path

import pytest

from filevendor.exceptions import CacheIOError, CacheNotFoundError
from filevendor.storage.cache import CacheKey, FileCacheStore, is_temp_file


def test_layout_follows_namespace_collection_and_storage_path(tmp_path: Path):
    store = FileCacheStore(tmp_path, namespace="cookbooks")
    key = store.key_for("apache2", "templates/default/site.conf.erb")

    assert str(key) == "cookbooks/apache2/templates/default/site.conf.erb"
    assert store.path_for(key) == (
        tmp_path / "cookbooks" / "apache2" / "templates" / "default" / "site.conf.erb"
    )


def test_path_for_rejects_escaping_keys(store: FileCacheStore):
    with pytest.raises(CacheIOError):
        store.path_for(CacheKey("apache2", "../../etc/passwd"))


async def test_read_missing_entry(store: FileCacheStore):
    key = store.key_for("apache2", "default.rb")

    assert not await store.exists(key)
    with pytest.raises(CacheNotFoundError):
        await store.read(key)


async def test_install_moves_the_source_into_place(store: FileCacheStore):
    key = store.key_for("apache2", "recipes/default.rb")
    source = store.staging_dir / "download.tmp"
    source.write_bytes(b"package 'apache2'\n")

    path = await store.install(key, source)

    assert path == store.path_for(key)
    assert await store.read(key) == b"package 'apache2'\n"
    assert not source.exists()


async def test_install_replaces_existing_content(store: FileCacheStore):
    key = store.key_for("apache2", "default.rb")
    await store.install_bytes(key, b"old")

    await store.install_bytes(key, b"new")

    assert await store.read(key) == b"new"
    assert [p.name for p in store.path_for(key).parent.iterdir()] == ["default.rb"]


async def test_failed_install_leaves_previous_entry(store: FileCacheStore, tmp_path):
    key = store.key_for("apache2", "default.rb")
    await store.install_bytes(key, b"old")

    with pytest.raises(CacheIOError):
        await store.install(key, tmp_path / "does-not-exist.tmp")

    assert await store.read(key) == b"old"
    assert not any(is_temp_file(p) for p in store.path_for(key).parent.iterdir())


async def test_install_across_filesystems_falls_back_to_copy(
    store: FileCacheStore, tmp_path, monkeypatch
):
    import errno

    key = store.key_for("apache2", "default.rb")
    source = tmp_path / "elsewhere.tmp"
    source.write_bytes(b"abc123")
    real_replace = os.replace

    def replace(src, dst):
        if Path(src) == source:
            raise OSError(errno.EXDEV, "Invalid cross-device link")
        return real_replace(src, dst)

    monkeypatch.setattr(os, "replace", replace)

    await store.install(key, source)

    assert await store.read(key) == b"abc123"
    assert not source.exists()


async def test_iter_chunks_streams_content(store: FileCacheStore):
    key = store.key_for("apache2", "files/blob.bin")
    payload = os.urandom(10_000)
    await store.install_bytes(key, payload)

    chunks = [chunk async for chunk in store.iter_chunks(key, chunk_size=4096)]

    assert len(chunks) == 3
    assert b"".join(chunks) == payload


async def test_keys_enumerates_entries_and_skips_temp_files(store: FileCacheStore):
    await store.install_bytes(store.key_for("apache2", "default.rb"), b"a")
    await store.install_bytes(store.key_for("apache2", "templates/x.erb"), b"b")
    await store.install_bytes(store.key_for("nginx", "default.rb"), b"c")
    collection_dir = store.root / "apache2"
    (collection_dir / ".filevendor-abc.tmp").write_bytes(b"partial")

    assert await store.keys("apache2") == [
        CacheKey("apache2", "default.rb"),
        CacheKey("apache2", "templates/x.erb"),
    ]
    assert len(await store.keys()) == 3
    assert await store.keys("unknown") == []


async def test_remove_prunes_empty_directories(store: FileCacheStore):
    key = store.key_for("apache2", "templates/default/x.erb")
    await store.install_bytes(key, b"x")

    assert await store.remove(key)
    assert not await store.remove(key)
    assert not (store.root / "apache2" / "templates").exists()


async def test_clear_removes_everything(store: FileCacheStore):
    await store.install_bytes(store.key_for("apache2", "a.rb"), b"a")
    await store.install_bytes(store.key_for("nginx", "b.rb"), b"b")

    assert await store.clear() == 2
    assert await store.keys() == []


async def test_readers_never_see_a_partial_install(store: FileCacheStore):
    key = store.key_for("apache2", "files/large.bin")
    payloads = [b"a" * 3_000_000, b"b" * 3_000_000]
    complete = {hashlib.md5(p).hexdigest() for p in payloads}
    await store.install_bytes(key, payloads[0])
    observed: list[str] = []
    writing = True

    async def writer():
        nonlocal writing
        for i in range(40):
            payload = payloads[i % 2]
            if i % 4 < 2:
                await store.install_bytes(key, payload)
            else:
                source = store.staging_dir / f"incoming-{i}.bin"
                source.write_bytes(payload)
                await store.install(key, source)
        writing = False

    async def reader():
        while writing:
            digest = hashlib.md5()
            async for chunk in store.iter_chunks(key, chunk_size=65536):
                digest.update(chunk)
            observed.append(digest.hexdigest())
            observed.append(hashlib.md5(await store.read(key)).hexdigest())

    await asyncio.gather(writer(), reader(), reader())

    assert observed
    assert set(observed) <= complete
