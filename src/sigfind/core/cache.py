"""
sigfind Discovery Cache

Two tiers keyed by the hash of the normalized signature and search root:

- an in-memory LRU (lock-free reads)
- a persisted JSON file, ``{hash: {path, access, score, mtimeMs, expiresAt}}``
  (plus ``kind``, ``exportName`` and ``breakdown`` when known)

Entries are invalidated lazily on read: an entry is only returned while
``now < expiresAt`` and the referenced file's mtime still equals the
recorded one.  File writes are single-writer (one lock per file, merged
with the current file contents, atomic replace).

Also holds the bounded registry of modules imported by the caller.
"""

import json
import logging
import os
import sys
import tempfile
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from sigfind.core.config import MAX_CACHED_MODULES
from sigfind.core.models import ExportAccess

logger = logging.getLogger(__name__)


def _now_ms() -> float:
    return time.time() * 1000


# =============================================================================
# In-memory tier
# =============================================================================

class LRUCache:
    """Bounded mapping; reads refresh recency, inserts evict the oldest."""

    def __init__(self, max_size: int = 100):
        self.max_size = max(1, int(max_size))
        self._data: "OrderedDict[str, Any]" = OrderedDict()

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        self._data.move_to_end(key)
        return self._data[key]

    def put(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._data.move_to_end(key)
        while len(self._data) > self.max_size:
            self._data.popitem(last=False)

    def pop(self, key: str) -> Any:
        return self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


# =============================================================================
# Entries
# =============================================================================

@dataclass
class CacheEntry:
    """Resolved identity of a signature's winner."""
    path: str
    access: ExportAccess
    score: float
    mtime_ms: float
    expires_at: Optional[float] = None
    """Epoch milliseconds; ``None`` never expires."""
    kind: Optional[str] = None
    export_name: Optional[str] = None
    breakdown: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {
            "path": self.path,
            "access": self.access.to_dict(),
            "score": self.score,
            "mtimeMs": self.mtime_ms,
            "expiresAt": self.expires_at,
        }
        if self.kind is not None:
            data["kind"] = self.kind
        if self.export_name is not None:
            data["exportName"] = self.export_name
        if self.breakdown:
            data["breakdown"] = dict(self.breakdown)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Optional["CacheEntry"]:
        """Parse one persisted entry; ``None`` for malformed records."""
        if not isinstance(data, dict):
            return None
        path, score, mtime = data.get("path"), data.get("score"), data.get("mtimeMs")
        expires = data.get("expiresAt")
        if not isinstance(path, str) or not isinstance(mtime, (int, float)):
            return None
        if not isinstance(score, (int, float)):
            return None
        if expires is not None and not isinstance(expires, (int, float)):
            return None
        kind, export_name = data.get("kind"), data.get("exportName")
        breakdown = data.get("breakdown")
        if not isinstance(breakdown, dict) or not all(
            isinstance(v, (int, float)) for v in breakdown.values()
        ):
            breakdown = {}
        return cls(
            path=path,
            access=ExportAccess.from_dict(data.get("access")),
            score=score,
            mtime_ms=mtime,
            expires_at=expires,
            kind=kind if isinstance(kind, str) else None,
            export_name=export_name if isinstance(export_name, str) else None,
            breakdown=breakdown,
        )


# =============================================================================
# Two-tier cache
# =============================================================================

_FILE_LOCKS: Dict[str, threading.Lock] = {}
_FILE_LOCKS_GUARD = threading.Lock()


def _lock_for(cache_file: Optional[Path]) -> threading.Lock:
    """One lock per resolved cache file, shared by every cache in the process."""
    if cache_file is None:
        return threading.Lock()
    key = str(cache_file.resolve())
    with _FILE_LOCKS_GUARD:
        lock = _FILE_LOCKS.get(key)
        if lock is None:
            lock = _FILE_LOCKS[key] = threading.Lock()
        return lock


class DiscoveryCache:
    """
    Memory LRU in front of an optional persisted JSON store.

    ``enabled=False`` (or no ``cache_file``) keeps the memory tier only.
    The persisted file is read lazily on first access; a corrupt or
    unreadable file is logged and treated as empty.

    Caches pointing at the same file share a lock, and every save merges
    this instance's changes into the file's current contents, so two
    engines on one root never drop each other's entries.
    """

    def __init__(self, cache_file: Path | str | None = None, ttl_seconds: float = 24 * 60 * 60,
                 enabled: bool = True, memory_size: int = 100):
        self.cache_file = Path(cache_file) if cache_file else None
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled and self.cache_file is not None
        self.memory = LRUCache(memory_size)
        self._persisted: Dict[str, CacheEntry] = {}
        self._dirty: set = set()
        self._removed: set = set()
        self._loaded = False
        self._lock = _lock_for(self.cache_file)

    # ── Public API ────────────────────────────────────────────────

    def get(self, key: str) -> Optional[CacheEntry]:
        """Valid entry for *key* or ``None`` (stale entries are dropped)."""
        entry = self.memory.get(key)
        if entry is not None:
            if self.is_valid(entry):
                return entry
            self.memory.pop(key)

        if not self.enabled:
            return None
        self._ensure_loaded()
        entry = self._persisted.get(key)
        if entry is None:
            return None
        if not self.is_valid(entry):
            logger.debug(f"Stale cache entry for {entry.path}")
            return None
        self.memory.put(key, entry)
        return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        """Write *entry* to both tiers and persist."""
        self.memory.put(key, entry)
        if not self.enabled:
            return
        self._ensure_loaded()
        with self._lock:
            self._persisted[key] = entry
            self._dirty.add(key)
            self._removed.discard(key)
        self.save()

    def make_entry(self, path: str, access: ExportAccess, score: float,
                   mtime_ms: float, now: Optional[float] = None, *,
                   kind: Optional[str] = None, export_name: Optional[str] = None,
                   breakdown: Optional[Dict[str, float]] = None) -> CacheEntry:
        """Build an entry whose expiry follows the configured TTL."""
        expires = None
        if self.ttl_seconds and self.ttl_seconds > 0:
            expires = (now if now is not None else _now_ms()) + self.ttl_seconds * 1000
        return CacheEntry(path=path, access=access, score=score,
                          mtime_ms=mtime_ms, expires_at=expires, kind=kind,
                          export_name=export_name, breakdown=dict(breakdown or {}))

    def is_valid(self, entry: CacheEntry, now: Optional[float] = None) -> bool:
        """Unexpired and the file's current mtime equals the recorded one."""
        current = now if now is not None else _now_ms()
        if entry.expires_at is not None and current >= entry.expires_at:
            return False
        try:
            mtime = os.stat(entry.path).st_mtime_ns / 1_000_000
        except OSError:
            return False
        return mtime == entry.mtime_ms

    def invalidate(self, key: str) -> None:
        self.memory.pop(key)
        if self.enabled:
            self._ensure_loaded()
            with self._lock:
                self._persisted.pop(key, None)
                self._dirty.discard(key)
                self._removed.add(key)
            self.save()

    def clear(self) -> None:
        """Empty both tiers and delete the persisted file."""
        self.memory.clear()
        with self._lock:
            self._persisted.clear()
            self._dirty.clear()
            self._removed.clear()
            self._loaded = True
            if self.cache_file is not None:
                try:
                    self.cache_file.unlink()
                except FileNotFoundError:
                    pass
                except OSError as e:
                    logger.warning(f"Could not remove cache file {self.cache_file}: {e}")

    def __iter__(self) -> Iterator[str]:
        self._ensure_loaded()
        return iter(list(self._persisted))

    # ── Persistence ───────────────────────────────────────────────

    def load(self) -> Dict[str, CacheEntry]:
        """Read the persisted file; any failure yields an empty cache."""
        entries: Dict[str, CacheEntry] = {}
        if self.cache_file is None or not self.cache_file.exists():
            return entries
        try:
            raw = json.loads(self.cache_file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable discovery cache {self.cache_file}: {e}")
            return entries
        if not isinstance(raw, dict):
            logger.warning(f"Ignoring malformed discovery cache {self.cache_file}")
            return entries
        for key, value in raw.items():
            entry = CacheEntry.from_dict(value)
            if entry is not None:
                entries[key] = entry
        return entries

    def save(self) -> None:
        """
        Atomically rewrite the persisted file (one writer per file).

        The file is re-read under the lock and this instance's pending
        writes and removals are applied on top of it.
        """
        if not self.enabled:
            return
        with self._lock:
            merged = self.load()
            for key in self._removed:
                merged.pop(key, None)
            for key in self._dirty:
                if key in self._persisted:
                    merged[key] = self._persisted[key]
            self._persisted = merged
            self._dirty.clear()
            self._removed.clear()
            payload = {key: entry.to_dict() for key, entry in merged.items()}
            directory = self.cache_file.parent
            try:
                directory.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(prefix=".sigfind-", suffix=".tmp", dir=directory)
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        json.dump(payload, fh, indent=2, sort_keys=True)
                    os.replace(tmp_name, self.cache_file)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except OSError as e:
                logger.warning(f"Could not write discovery cache {self.cache_file}: {e}")

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        entries = self.load()
        with self._lock:
            if not self._loaded:
                self._persisted = entries
                self._loaded = True


# =============================================================================
# Loaded-module registry
# =============================================================================

class ModuleRegistry:
    """
    Bounded, insertion-ordered set of modules imported for callers.

    When the cap is exceeded the oldest module is evicted and removed
    from ``sys.modules``.
    """

    def __init__(self, max_modules: int = MAX_CACHED_MODULES):
        self.max_modules = max(1, int(max_modules))
        self._modules: "OrderedDict[str, str]" = OrderedDict()

    def add(self, path: str, module_name: str) -> None:
        if path in self._modules:
            self._modules.move_to_end(path)
            return
        self._modules[path] = module_name
        while len(self._modules) > self.max_modules:
            old_path, old_name = self._modules.popitem(last=False)
            sys.modules.pop(old_name, None)
            logger.debug(f"Evicted loaded module {old_name} ({old_path})")

    def get(self, path: str) -> Optional[str]:
        return self._modules.get(path)

    def clear(self) -> None:
        for name in self._modules.values():
            sys.modules.pop(name, None)
        self._modules.clear()

    def __contains__(self, path: object) -> bool:
        return path in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    @property
    def paths(self) -> list:
        return list(self._modules)
