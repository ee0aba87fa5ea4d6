"""
fileharbor - caching proxy for externally hosted files.

Given an external URL, fileharbor returns a locally cached copy of the file,
fetching and storing it on first access and redirecting to the origin when
the fetch fails. Copies are removed again after a retention window.
"""

__version__ = "0.1.0"

from fileharbor.cache_store import PERMANENT, CacheStore, MemoryCacheStore
from fileharbor.cache_utils import (
    build_proxy_url,
    cache_key,
    decode_proxy_segment,
    ensure_external,
    is_external,
)
from fileharbor.config import Settings, build_engine
from fileharbor.engine import ProxyEngine, RedirectToOrigin, Serve
from fileharbor.errors import (
    DirectoryError,
    EmptyBodyError,
    FetchError,
    FileharborError,
    HttpStatusError,
    InvalidUrlError,
    ResponseTooLargeError,
    StorageError,
    TransportError,
    UnexpectedHtmlError,
)
from fileharbor.expiration import (
    DrainWorker,
    ExpirationQueue,
    MemoryExpirationQueue,
    QueueItem,
    SqliteExpirationQueue,
)
from fileharbor.fetcher import CachedFile, Fetcher
from fileharbor.headers import parse_header_line
from fileharbor.registry import (
    Entry,
    EntryRegistry,
    MemoryEntryRegistry,
    SqliteEntryRegistry,
)

__all__ = [
    "__version__",
    "PERMANENT",
    "CacheStore",
    "MemoryCacheStore",
    "build_proxy_url",
    "cache_key",
    "decode_proxy_segment",
    "ensure_external",
    "is_external",
    "Settings",
    "build_engine",
    "ProxyEngine",
    "Serve",
    "RedirectToOrigin",
    "FileharborError",
    "InvalidUrlError",
    "DirectoryError",
    "FetchError",
    "HttpStatusError",
    "UnexpectedHtmlError",
    "EmptyBodyError",
    "ResponseTooLargeError",
    "StorageError",
    "TransportError",
    "ExpirationQueue",
    "MemoryExpirationQueue",
    "SqliteExpirationQueue",
    "QueueItem",
    "DrainWorker",
    "CachedFile",
    "Fetcher",
    "parse_header_line",
    "Entry",
    "EntryRegistry",
    "MemoryEntryRegistry",
    "SqliteEntryRegistry",
]
