"""
Tests for the two-tier discovery cache and the loaded-module registry
(sigfind.core.cache).
"""

import json
import logging
import os
import sys
import threading
import types

import pytest

from sigfind.core.cache import CacheEntry, DiscoveryCache, LRUCache, ModuleRegistry
from sigfind.core.models import ExportAccess


@pytest.fixture
def target(tmp_path):
    path = tmp_path / "Calculator.js"
    path.write_text("module.exports = class Calculator {};\n", encoding="utf-8")
    return path


def _mtime(path):
    return os.stat(path).st_mtime_ns / 1_000_000


def _entry(cache, path, score=172.0):
    return cache.make_entry(str(path), ExportAccess(type="direct"), score, _mtime(path))


# =============================================================================
# LRU
# =============================================================================

class TestLRUCache:

    def test_evicts_oldest(self):
        lru = LRUCache(max_size=2)
        lru.put("a", 1)
        lru.put("b", 2)
        lru.put("c", 3)
        assert "a" not in lru
        assert len(lru) == 2

    def test_get_refreshes_recency(self):
        lru = LRUCache(max_size=2)
        lru.put("a", 1)
        lru.put("b", 2)
        assert lru.get("a") == 1
        lru.put("c", 3)
        assert "a" in lru
        assert "b" not in lru

    def test_pop_and_clear(self):
        lru = LRUCache()
        lru.put("a", 1)
        assert lru.pop("a") == 1
        assert lru.pop("a") is None
        lru.put("b", 2)
        lru.clear()
        assert len(lru) == 0


# =============================================================================
# Entries
# =============================================================================

class TestCacheEntry:

    def test_persisted_shape(self, tmp_path, target):
        cache = DiscoveryCache(tmp_path / "cache.json", ttl_seconds=60)
        entry = cache.make_entry(str(target), ExportAccess(type="named", name="Calculator"),
                                 172, 1234.5, now=1_000)
        assert entry.to_dict() == {
            "path": str(target),
            "access": {"type": "named", "name": "Calculator"},
            "score": 172,
            "mtimeMs": 1234.5,
            "expiresAt": 61_000,
        }

    def test_non_positive_ttl_never_expires(self, tmp_path, target):
        cache = DiscoveryCache(tmp_path / "cache.json", ttl_seconds=0)
        assert _entry(cache, target).expires_at is None

    @pytest.mark.parametrize("raw", [
        None,
        {"path": 3, "score": 1, "mtimeMs": 1},
        {"path": "x", "score": "high", "mtimeMs": 1},
        {"path": "x", "score": 1},
        {"path": "x", "score": 1, "mtimeMs": 1, "expiresAt": "soon"},
    ])
    def test_malformed_records(self, raw):
        assert CacheEntry.from_dict(raw) is None


# =============================================================================
# Validity
# =============================================================================

class TestValidity:

    def test_valid_until_expiry(self, tmp_path, target):
        cache = DiscoveryCache(tmp_path / "cache.json", ttl_seconds=60)
        entry = cache.make_entry(str(target), ExportAccess(), 1, _mtime(target), now=0)
        assert cache.is_valid(entry, now=59_999)
        assert not cache.is_valid(entry, now=60_000)

    def test_mtime_change_invalidates(self, tmp_path, target):
        cache = DiscoveryCache(tmp_path / "cache.json")
        entry = _entry(cache, target)
        stat = os.stat(target)
        os.utime(target, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))
        assert not cache.is_valid(entry)

    def test_deleted_file_invalidates(self, tmp_path, target):
        cache = DiscoveryCache(tmp_path / "cache.json")
        entry = _entry(cache, target)
        target.unlink()
        assert not cache.is_valid(entry)

    def test_stale_entry_not_returned(self, tmp_path, target):
        cache = DiscoveryCache(tmp_path / "cache.json")
        cache.put("k", _entry(cache, target))
        stat = os.stat(target)
        os.utime(target, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))
        assert cache.get("k") is None
        assert "k" not in cache.memory


# =============================================================================
# Persistence
# =============================================================================

class TestPersistence:

    def test_put_writes_file(self, tmp_path, target):
        cache_file = tmp_path / "cache.json"
        cache = DiscoveryCache(cache_file)
        cache.put("k", _entry(cache, target))
        data = json.loads(cache_file.read_text(encoding="utf-8"))
        assert data["k"]["path"] == str(target)
        assert set(data["k"]) == {"path", "access", "score", "mtimeMs", "expiresAt"}
        assert not [p for p in tmp_path.iterdir() if p.name.endswith(".tmp")]

    def test_survives_reload(self, tmp_path, target):
        cache_file = tmp_path / "cache.json"
        first = DiscoveryCache(cache_file)
        first.put("k", _entry(first, target))

        second = DiscoveryCache(cache_file)
        entry = second.get("k")
        assert entry is not None
        assert entry.score == 172.0
        assert "k" in second.memory
        assert list(second) == ["k"]

    def test_corrupt_file_is_empty(self, tmp_path, target, caplog):
        cache_file = tmp_path / "cache.json"
        cache_file.write_text("{not json", encoding="utf-8")
        cache = DiscoveryCache(cache_file)
        with caplog.at_level(logging.WARNING, logger="sigfind.core.cache"):
            assert cache.get("k") is None
        assert "unreadable" in caplog.text

        cache.put("k", _entry(cache, target))
        assert json.loads(cache_file.read_text(encoding="utf-8"))["k"]["path"] == str(target)

    def test_malformed_entries_skipped(self, tmp_path, target):
        cache_file = tmp_path / "cache.json"
        cache_file.write_text(json.dumps({
            "bad": {"path": 1},
            "good": {"path": str(target), "access": {"type": "direct"}, "score": 5,
                     "mtimeMs": _mtime(target), "expiresAt": None},
        }), encoding="utf-8")
        cache = DiscoveryCache(cache_file)
        assert list(cache) == ["good"]
        assert cache.get("good").score == 5

    def test_disabled_keeps_memory_only(self, tmp_path, target):
        cache_file = tmp_path / "cache.json"
        cache = DiscoveryCache(cache_file, enabled=False)
        cache.put("k", _entry(cache, target))
        assert cache.get("k") is not None
        assert not cache_file.exists()

    def test_invalidate(self, tmp_path, target):
        cache_file = tmp_path / "cache.json"
        cache = DiscoveryCache(cache_file)
        cache.put("k", _entry(cache, target))
        cache.invalidate("k")
        assert cache.get("k") is None
        assert json.loads(cache_file.read_text(encoding="utf-8")) == {}

    def test_clear_removes_file(self, tmp_path, target):
        cache_file = tmp_path / "cache.json"
        cache = DiscoveryCache(cache_file)
        cache.put("k", _entry(cache, target))
        cache.clear()
        assert not cache_file.exists()
        assert cache.get("k") is None
        cache.clear()

    def test_optional_fields_round_trip(self, tmp_path, target):
        cache_file = tmp_path / "cache.json"
        first = DiscoveryCache(cache_file)
        first.put("k", first.make_entry(str(target), ExportAccess(type="direct"), 172, _mtime(target),
                                        kind="class", export_name="Calculator",
                                        breakdown={"fileName": 45, "exports": 127}))
        entry = DiscoveryCache(cache_file).get("k")
        assert entry.kind == "class"
        assert entry.export_name == "Calculator"
        assert entry.breakdown == {"exports": 127, "fileName": 45}


# =============================================================================
# Shared files
# =============================================================================

class TestSharedFile:

    def test_instances_merge_instead_of_overwriting(self, tmp_path, target):
        cache_file = tmp_path / "cache.json"
        first, second = DiscoveryCache(cache_file), DiscoveryCache(cache_file)
        assert first.get("a") is None
        assert second.get("b") is None

        first.put("a", _entry(first, target))
        second.put("b", _entry(second, target))

        data = json.loads(cache_file.read_text(encoding="utf-8"))
        assert set(data) == {"a", "b"}

    def test_invalidation_is_not_undone_by_another_instance(self, tmp_path, target):
        cache_file = tmp_path / "cache.json"
        first, second = DiscoveryCache(cache_file), DiscoveryCache(cache_file)
        first.put("a", _entry(first, target))
        assert second.get("a") is not None

        first.invalidate("a")
        second.put("b", _entry(second, target))

        assert set(json.loads(cache_file.read_text(encoding="utf-8"))) == {"b"}

    def test_concurrent_writers(self, tmp_path, target):
        cache_file = tmp_path / "cache.json"
        caches = [DiscoveryCache(cache_file), DiscoveryCache(cache_file)]
        errors = []

        def writer(index):
            cache = caches[index % 2]
            try:
                for n in range(25):
                    cache.put(f"w{index}-{n}", _entry(cache, target))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        data = json.loads(cache_file.read_text(encoding="utf-8"))
        assert set(data) == {f"w{i}-{n}" for i in range(4) for n in range(25)}
        assert not [p for p in tmp_path.iterdir() if p.name.endswith(".tmp")]


# =============================================================================
# Module registry
# =============================================================================

class TestModuleRegistry:

    def test_evicts_oldest_from_sys_modules(self):
        registry = ModuleRegistry(max_modules=2)
        names = [f"sigfind_test_module_{i}" for i in range(3)]
        for i, name in enumerate(names):
            sys.modules[name] = types.ModuleType(name)
            registry.add(f"/p/{i}.py", name)
        try:
            assert registry.paths == ["/p/1.py", "/p/2.py"]
            assert names[0] not in sys.modules
            assert names[2] in sys.modules
        finally:
            registry.clear()
        assert names[2] not in sys.modules
        assert len(registry) == 0

    def test_re_adding_refreshes(self):
        registry = ModuleRegistry(max_modules=2)
        registry.add("/a.py", "sigfind_test_a")
        registry.add("/b.py", "sigfind_test_b")
        registry.add("/a.py", "sigfind_test_a")
        registry.add("/c.py", "sigfind_test_c")
        assert "/a.py" in registry
        assert "/b.py" not in registry
        assert registry.get("/c.py") == "sigfind_test_c"
