"""
Process-wide resource cache.

Holds the last known server state per ``ResourceKey``. Entries are immutable;
every write swaps in a new ``CacheEntry`` so a reader never observes a
partially written entry. Only the query and mutation executors write to the
cache; everything else reads and subscribes.
"""

import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from shared.logging import get_logger
from .keys import ResourceKey


class CacheState(str, Enum):
    """Lifecycle state of a cache entry."""
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class CacheEntry:
    """Snapshot of one cache slot."""

    key: ResourceKey
    data: Any = None
    state: CacheState = CacheState.IDLE
    fetched_at: Optional[float] = None
    error: Optional[BaseException] = None
    invalidated: bool = False

    def is_stale(self, stale_time: float, now: Optional[float] = None) -> bool:
        """Return True if the entry must be revalidated before it is trusted."""
        if self.invalidated or self.fetched_at is None:
            return True
        current = time.time() if now is None else now
        return (current - self.fetched_at) >= stale_time


class CacheEventType(str, Enum):
    """Kinds of cache change notifications."""
    UPDATED = "updated"
    INVALIDATED = "invalidated"
    REMOVED = "removed"


@dataclass(frozen=True)
class CacheEvent:
    """Notification delivered to cache subscribers."""

    type: CacheEventType
    key: ResourceKey
    entry: Optional[CacheEntry]


CacheListener = Callable[[CacheEvent], None]


class ResourceCache:
    """In-memory key -> entry store with change notifications."""

    def __init__(self, clock: Callable[[], float] = time.time, metrics: Optional[Any] = None):
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("compliance_client.resource_cache")
        self._entries: Dict[ResourceKey, CacheEntry] = {}
        self._listeners: List[CacheListener] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: ResourceKey) -> bool:
        return key in self._entries

    def get(self, key: ResourceKey) -> Optional[CacheEntry]:
        """Return the entry for ``key`` or None."""
        return self._entries.get(key)

    def get_data(self, key: ResourceKey, default: Any = None) -> Any:
        """Return the cached data for ``key`` or ``default``."""
        entry = self._entries.get(key)
        return default if entry is None else entry.data

    def keys(self) -> List[ResourceKey]:
        return list(self._entries.keys())

    def find(self, pattern: ResourceKey) -> List[CacheEntry]:
        """Return every entry whose key is covered by ``pattern``."""
        return [entry for key, entry in self._entries.items() if pattern.covers(key)]

    def set(self, key: ResourceKey, data: Any, state: CacheState = CacheState.SUCCESS,
            error: Optional[BaseException] = None) -> CacheEntry:
        """Replace data, state, error and fetched_at for ``key`` in one step."""
        entry = CacheEntry(
            key=key,
            data=data,
            state=state,
            fetched_at=self.clock(),
            error=error,
            invalidated=False,
        )
        self._write(entry)
        return entry

    def mark(self, key: ResourceKey, state: CacheState,
             error: Optional[BaseException] = None) -> CacheEntry:
        """Change state and error of ``key``, keeping its data.

        Creates an empty entry when none exists yet.
        """
        current = self._entries.get(key) or CacheEntry(key=key)
        entry = replace(current, state=state, error=error)
        self._write(entry)
        return entry

    def invalidate(self, key: ResourceKey) -> bool:
        """Mark ``key`` stale without dropping its data.

        Returns False when there is no entry for the key.
        """
        current = self._entries.get(key)
        if current is None:
            return False
        if not current.invalidated:
            self._entries[key] = replace(current, invalidated=True)
        self._notify(CacheEventType.INVALIDATED, key, self._entries[key])
        return True

    def invalidate_matching(self, pattern: ResourceKey) -> List[ResourceKey]:
        """Invalidate every key covered by ``pattern``; return the keys touched."""
        matched = [key for key in self._entries if pattern.covers(key)]
        for key in matched:
            self.invalidate(key)
        return matched

    def remove(self, key: ResourceKey) -> Optional[CacheEntry]:
        """Delete ``key`` entirely; return the removed entry."""
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._notify(CacheEventType.REMOVED, key, None)
            self._record_size()
        return entry

    def restore(self, key: ResourceKey, snapshot: Optional[CacheEntry]) -> None:
        """Put back an exact snapshot, or delete ``key`` when the snapshot is absent."""
        if snapshot is None:
            self.remove(key)
            return
        self._write(snapshot)

    def clear(self) -> None:
        """Drop every entry."""
        for key in list(self._entries):
            self.remove(key)

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        """Register ``listener`` for change events; return an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _write(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry
        self._notify(CacheEventType.UPDATED, entry.key, entry)
        self._record_size()

    def _notify(self, event_type: CacheEventType, key: ResourceKey, entry: Optional[CacheEntry]) -> None:
        event = CacheEvent(type=event_type, key=key, entry=entry)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                self.logger.error(
                    "Cache listener failed",
                    key=str(key),
                    cache_event=event_type.value,
                    error=str(exc),
                )

    def _record_size(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("cache_entries", len(self._entries))


_default_cache: Optional[ResourceCache] = None


def get_resource_cache() -> ResourceCache:
    """Return the process-wide cache, creating it on first use."""
    global _default_cache
    if _default_cache is None:
        _default_cache = ResourceCache()
    return _default_cache


def reset_resource_cache() -> ResourceCache:
    """Replace the process-wide cache with an empty one (new session, tests)."""
    global _default_cache
    _default_cache = ResourceCache()
    return _default_cache
