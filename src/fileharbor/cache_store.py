"""Metadata cache mapping cache keys to local file locations.

This is only an accelerator: a miss means "ask the entry registry", never
"the file does not exist". Entries carry tags so that owners can invalidate
them without the store knowing anything about entries.
"""

import logging
import threading
import time
from typing import Iterable, Optional, Protocol

from cachetools import LRUCache

LOG = logging.getLogger("fileharbor.cache_store")

PERMANENT = -1


class CacheStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, location: str, tags: Iterable[str] = (), ttl: float = PERMANENT) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def invalidate_tags(self, tags: Iterable[str]) -> None:
        ...


class _TaggedLRUCache(LRUCache):
    """LRUCache that reports evictions so the tag index stays in sync."""

    def __init__(self, maxsize: int, on_evict) -> None:
        super().__init__(maxsize=maxsize)
        self._on_evict = on_evict

    def popitem(self):
        key, value = super().popitem()
        self._on_evict(key, value)
        return key, value


class MemoryCacheStore:
    """In-process, thread-safe, tag-aware cache store."""

    def __init__(self, maxsize: int = 4096, clock=time.monotonic) -> None:
        self._data = _TaggedLRUCache(maxsize, self._untag)
        self._tags: dict[str, set[str]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            location, expires_at, _ = item
            if expires_at is not None and self._clock() >= expires_at:
                self._drop(key)
                return None
            return location

    def set(self, key: str, location: str, tags: Iterable[str] = (), ttl: float = PERMANENT) -> None:
        tags = frozenset(tags)
        expires_at = None if ttl == PERMANENT else self._clock() + ttl
        with self._lock:
            if key in self._data:
                self._drop(key)
            self._data[key] = (location, expires_at, tags)
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self._drop(key)

    def invalidate_tags(self, tags: Iterable[str]) -> None:
        with self._lock:
            for tag in tags:
                for key in self._tags.pop(tag, set()):
                    self._drop(key)
                    LOG.debug("Cache invalidated key=%s tag=%s", key, tag)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._tags.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def _drop(self, key: str) -> None:
        item = self._data.pop(key, None)
        if item is not None:
            self._untag(key, item)

    def _untag(self, key: str, item) -> None:
        for tag in item[2]:
            keys = self._tags.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tags[tag]
