"""Fetch, cache and serve orchestration.

resolve() returns either Serve(location) with a local copy ready to stream,
or RedirectToOrigin(url) when the origin could not be fetched. Fetch
failures never surface as errors: the proxy accelerates access, it must not
block it.
"""

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from fileharbor.cache_store import PERMANENT, CacheStore
from fileharbor.cache_utils import build_proxy_url, cache_key, ensure_external
from fileharbor.errors import FetchError
from fileharbor.expiration import ExpirationQueue
from fileharbor.fetcher import Fetcher
from fileharbor.registry import Entry, EntryRegistry

LOG = logging.getLogger("fileharbor.engine")


@dataclass(frozen=True)
class Serve:
    location: str


@dataclass(frozen=True)
class RedirectToOrigin:
    url: str


ServeResult = Union[Serve, RedirectToOrigin]


class KeyedLock:
    """One mutex per key, dropped again once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._locks: dict[str, list] = {}

    @contextmanager
    def __call__(self, key: str):
        with self._lock:
            slot = self._locks.get(key)
            if slot is None:
                slot = self._locks[key] = [threading.Lock(), 0]
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._lock:
                slot[1] -= 1
                if not slot[1]:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._locks)


class ProxyEngine:
    def __init__(
        self,
        cache_store: CacheStore,
        registry: EntryRegistry,
        fetcher: Fetcher,
        queue: ExpirationQueue,
        files_dir: str,
        *,
        base_url: str = "",
        local_hosts: Iterable[str] = (),
        lock_fetches: bool = True,
    ) -> None:
        self.cache_store = cache_store
        self.registry = registry
        self.fetcher = fetcher
        self.queue = queue
        self.files_dir = files_dir
        self.base_url = base_url
        self.local_hosts = tuple(local_hosts)
        self.lock_fetches = lock_fetches
        self._key_lock = KeyedLock()

    def ensure_external(self, url: str) -> str:
        return ensure_external(url, self.local_hosts)

    def build_proxy_url(self, url: str) -> str:
        return build_proxy_url(url, self.base_url, self.local_hosts)

    def find_entry(self, url: str) -> Optional[Entry]:
        return self.registry.find_by_url(self.ensure_external(url))

    def get_cached_location(self, url: str) -> Optional[str]:
        """Return the local copy's location from the cache store or registry."""
        self.ensure_external(url)
        key = cache_key(url)
        if (location := self._cached(key)):
            return location
        entry = self.registry.find_by_url(url)
        if entry is None:
            LOG.debug("Cache miss key=%s", key)
            return None
        LOG.debug("Registry hit key=%s entry_id=%s", key, entry.id)
        self._warm(key, entry)
        return entry.file.uri

    def create_entry_for_url(self, url: str) -> Optional[Entry]:
        """Fetch ``url`` and record it. None if the fetch failed."""
        self.ensure_external(url)
        result = self.fetcher.fetch(url, self.files_dir)
        if isinstance(result, FetchError):
            return None
        entry = self.registry.create(url, result)
        self._warm(cache_key(url), entry)
        # removal happens later, on a drain pass
        self.queue.enqueue(entry.id, entry.created_at)
        return entry

    def resolve(self, url: str) -> ServeResult:
        self.ensure_external(url)
        key = cache_key(url)
        if (location := self._cached(key)):
            return Serve(location)
        if not self.lock_fetches:
            return self._resolve_miss(url)
        with self._key_lock(key):
            return self._resolve_miss(url)

    def _resolve_miss(self, url: str) -> ServeResult:
        # also re-checks after waiting on another thread's fetch of the same URL
        if (location := self.get_cached_location(url)):
            return Serve(location)
        entry = self.create_entry_for_url(url)
        if entry is None:
            LOG.warning("Redirecting to origin url=%s", url)
            return RedirectToOrigin(url)
        return Serve(entry.file.uri)

    def _cached(self, key: str) -> Optional[str]:
        location = self.cache_store.get(key)
        if not location:
            return None
        if not os.path.isfile(location):
            # removed by a drain running in another process
            LOG.info("Dropping stale cache item key=%s path=%s", key, location)
            self.cache_store.delete(key)
            return None
        LOG.debug("Cache hit key=%s", key)
        return location

    def _warm(self, key: str, entry: Entry) -> None:
        self.cache_store.set(key, entry.file.uri, entry.cache_tags, ttl=PERMANENT)
