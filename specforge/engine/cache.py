"""Bounded TTL cache for generated content.

Entries are keyed by (specification hash, package name); each entry maps
generated file paths to their content. The cache is synchronous and
guarded by a ``threading.Lock`` so worker threads may share it.
"""

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger()

DEFAULT_MAX_SIZE = 100
DEFAULT_TTL_SECONDS = 24 * 60 * 60


@dataclass
class CacheStats:
    """Snapshot of cache counters."""

    entries: int = 0
    hits: int = 0
    misses: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


@dataclass
class _CacheEntry:
    files: dict[str, str]
    stored_at: float = field(default=0.0)


class GenerationCache:
    """Caches generated files to avoid regenerating unchanged packages."""

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size if max_size > 0 else DEFAULT_MAX_SIZE
        self.ttl_seconds = ttl_seconds if ttl_seconds > 0 else DEFAULT_TTL_SECONDS
        self.enabled = enabled
        self._clock = clock
        self._entries: OrderedDict[tuple[str, str], _CacheEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()
        self._logger = logger.bind(component="GenerationCache")

    def get(self, spec_hash: str, package_name: str) -> dict[str, str] | None:
        """Return cached files, or None on a miss or an expired entry."""
        if not self.enabled:
            return None

        key = (spec_hash, package_name)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._clock() - entry.stored_at > self.ttl_seconds:
                del self._entries[key]
                self._misses += 1
                return None

            self._hits += 1
            return dict(entry.files)

    def put(self, spec_hash: str, package_name: str, files: dict[str, str]) -> None:
        """Store files, evicting the least recently inserted entry when full."""
        if not self.enabled:
            return

        with self._lock:
            self._store((spec_hash, package_name), files)

    def merge(self, spec_hash: str, package_name: str, files: dict[str, str]) -> None:
        """Add files to an existing entry (or create it) under a single lock."""
        if not self.enabled:
            return

        key = (spec_hash, package_name)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() - entry.stored_at <= self.ttl_seconds:
                entry.files.update(files)
            else:
                self._store(key, files)

    def _store(self, key: tuple[str, str], files: dict[str, str]) -> None:
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            self._logger.debug("Evicted cache entry", spec_hash=evicted[0], package=evicted[1])

        self._entries[key] = _CacheEntry(files=dict(files), stored_at=self._clock())

    def invalidate(self, spec_hash: str) -> int:
        """Drop every entry of one specification hash."""
        with self._lock:
            stale = [key for key in self._entries if key[0] == spec_hash]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        """Drop every entry and reset the counters."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(entries=len(self._entries), hits=self._hits, misses=self._misses)
