"""
geo/cache.py — Shared cache primitives for the decision engine
================================================================
TTLCache        per-key entries with an injected clock; used by GeoResolver.
SnapshotCache   copy-on-write mapping; used by RestrictionRegistry so a
                reader sees either the old or the new rule set, never a mix.

Usage:
    cache = TTLCache(ttl=3600, clock=clock)
    cache.set("1.2.3.4", record)            # stamped with clock()
    cache.get("1.2.3.4")                    # None once older than ttl
    cache.invalidate("1.2.3.4")

    rules = SnapshotCache()
    rules.set(("content", None), (r1, r2))  # builds and swaps a new snapshot
    rules.get(("content", None))

    token = rules.generation(key)           # read before loading from the store
    rules.fill(key, loaded, token)          # dropped if invalidated meanwhile
"""
from __future__ import annotations

import threading
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, Callable, Hashable, Mapping, Optional

from db.models import utcnow


class TTLCache:
    """Entries expire once ``clock() - stored_at > ttl``."""

    def __init__(self, ttl: float, clock: Callable[[], datetime] = utcnow):
        self._ttl = timedelta(seconds=ttl)
        self._clock = clock
        self._store: dict[Hashable, tuple[datetime, Any]] = {}   # key → (stored_at, value)
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        """Return cached value or None if missing/expired."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at > self._ttl:
                del self._store[key]
                return None
            return value

    def set(self, key: Hashable, value: Any, stored_at: Optional[datetime] = None) -> None:
        with self._lock:
            self._store[key] = (stored_at or self._clock(), value)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class SnapshotCache:
    """
    Single-writer / multi-reader mapping.

    Readers dereference ``self._snapshot`` once and work on an immutable
    view; writers serialise on a lock, copy the current mapping, apply the
    change and swap the reference.
    """

    def __init__(self):
        self._snapshot: Mapping[Hashable, Any] = MappingProxyType({})
        self._write_lock = threading.Lock()
        self._generations: dict[Hashable, int] = {}   # key → invalidation count

    def snapshot(self) -> Mapping[Hashable, Any]:
        return self._snapshot

    def get(self, key: Hashable) -> Optional[Any]:
        return self._snapshot.get(key)

    def generation(self, key: Hashable) -> int:
        """Token for :meth:`fill`; read it before loading the value."""
        with self._write_lock:
            return self._generations.get(key, 0)

    def set(self, key: Hashable, value: Any) -> None:
        with self._write_lock:
            self._swap(key, value)

    def fill(self, key: Hashable, value: Any, generation: int) -> bool:
        """
        Store ``value`` only if ``key`` has not been invalidated since
        ``generation`` was read. Returns False when the load went stale.
        """
        with self._write_lock:
            if self._generations.get(key, 0) != generation:
                return False
            self._swap(key, value)
            return True

    def invalidate(self, key: Hashable) -> None:
        with self._write_lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            if key not in self._snapshot:
                return
            updated = dict(self._snapshot)
            del updated[key]
            self._snapshot = MappingProxyType(updated)

    def clear(self) -> None:
        with self._write_lock:
            for key in self._snapshot:
                self._generations[key] = self._generations.get(key, 0) + 1
            self._snapshot = MappingProxyType({})

    def _swap(self, key: Hashable, value: Any) -> None:
        updated = dict(self._snapshot)
        updated[key] = value
        self._snapshot = MappingProxyType(updated)
