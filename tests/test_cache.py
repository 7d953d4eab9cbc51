"""Tests for the cache store."""

import os
import threading

import pytest

from relayci.cache import CacheStore, fingerprint
from relayci.dsl import cache_key
from relayci.errors import CacheError


class TestCacheStore:

    def test_put_then_get(self, cache):
        blobs = {"target/a.bin": b"\x00\x01", "target/b.txt": b"hello"}
        cache.put("k1", blobs)

        entry = cache.get("k1")
        assert entry is not None
        assert entry.key == "k1"
        assert entry.blobs == blobs
        assert entry.created_at > 0

    def test_get_miss_returns_none(self, cache):
        assert cache.get("never-written") is None

    def test_get_before_root_exists(self, tmp_path):
        store = CacheStore(tmp_path / "does" / "not" / "exist")
        assert store.get("k") is None
        assert store.keys() == []

    def test_put_is_idempotent(self, cache):
        cache.put("k", {"f": b"1"})
        cache.put("k", {"f": b"1"})
        assert cache.get("k").blobs == {"f": b"1"}
        assert cache.keys() == ["k"]

    def test_last_writer_wins(self, cache):
        cache.put("k", {"f": b"old"})
        cache.put("k", {"f": b"new", "g": b"2"})
        assert cache.get("k").blobs == {"f": b"new", "g": b"2"}

    def test_corrupt_artifact_is_a_miss(self, tmp_path):
        logged = []
        store = CacheStore(tmp_path / "cache", log=logged.append)
        store.root.mkdir(parents=True)
        (store.root / "bad.tar.gz").write_bytes(b"not a tarball")

        assert store.get("bad") is None
        assert logged

    def test_truncated_artifact_is_a_miss(self, tmp_path):
        logged = []
        store = CacheStore(tmp_path / "cache", log=logged.append)
        store.put("k", {"f": os.urandom(200000)})
        art = store.artifact_path("k")
        data = art.read_bytes()
        art.write_bytes(data[: len(data) // 2])

        assert store.get("k") is None
        assert store.restore("k", root=tmp_path / "ws") is None
        assert logged

    def test_invalid_key(self, cache):
        assert cache.get("../escape") is None
        with pytest.raises(CacheError):
            cache.put("../escape", {"f": b"x"})

    def test_put_failure_raises_cache_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = CacheStore(blocker / "cache")
        with pytest.raises(CacheError):
            store.put("k", {"f": b"x"})

    def test_concurrent_writes_same_key(self, cache):
        payloads = [{"f": bytes([i]) * 1000} for i in range(8)]
        threads = [threading.Thread(target=cache.put, args=("k", p)) for p in payloads]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.get("k").blobs in payloads

    def test_collect_and_restore(self, cache, tmp_path):
        src = tmp_path / "src"
        (src / "target" / "deps").mkdir(parents=True)
        (src / "target" / "deps" / "lib.rlib").write_bytes(b"lib")
        (src / "single.txt").write_text("one")

        blobs = CacheStore.collect(["target", "single.txt", "missing-dir"], root=src)
        assert blobs == {"target/deps/lib.rlib": b"lib", "single.txt": b"one"}

        cache.put("k", blobs)
        dest = tmp_path / "dest"
        entry = cache.restore("k", root=dest)
        assert entry is not None
        assert (dest / "target" / "deps" / "lib.rlib").read_bytes() == b"lib"
        assert (dest / "single.txt").read_text() == "one"

    def test_restore_miss(self, cache, tmp_path):
        assert cache.restore("nothing", root=tmp_path) is None

    def test_prune_keeps_newest(self, cache):
        for i in range(4):
            cache.put(f"k{i}", {"f": b"x"})
            os.utime(cache.artifact_path(f"k{i}"), (1000 + i, 1000 + i))

        removed = cache.prune(keep=2)
        assert sorted(removed) == ["k0", "k1"]
        assert cache.keys() == ["k2", "k3"]


class TestFingerprint:

    def test_depends_on_file_contents(self, tmp_path):
        key = cache_key("v1-cargo-cache", "Cargo.lock")
        (tmp_path / "Cargo.lock").write_text("a = 1")
        first = fingerprint(key, root=tmp_path, arch="linux-x86_64")
        assert fingerprint(key, root=tmp_path, arch="linux-x86_64") == first

        (tmp_path / "Cargo.lock").write_text("a = 2")
        assert fingerprint(key, root=tmp_path, arch="linux-x86_64") != first

    def test_depends_on_arch(self, tmp_path):
        key = cache_key("v1", "Cargo.lock")
        (tmp_path / "Cargo.lock").write_text("x")
        a = fingerprint(key, root=tmp_path, arch="linux-x86_64")
        b = fingerprint(key, root=tmp_path, arch="linux-aarch64")
        assert a != b
        assert a.startswith("v1-linux-x86_64-")

    def test_arch_can_be_left_out(self, tmp_path):
        key = cache_key("v1", arch=False)
        assert fingerprint(key, root=tmp_path, arch="linux-x86_64") == "v1"

    def test_missing_file_differs_from_empty_file(self, tmp_path):
        key = cache_key("v1", "deps.lock")
        missing = fingerprint(key, root=tmp_path, arch="a")
        (tmp_path / "deps.lock").write_text("")
        assert fingerprint(key, root=tmp_path, arch="a") != missing
