"""Durable records binding one external URL to one locally stored file.

The registry does not enforce one entry per URL; callers look up before they
create (see ProxyEngine).
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import pytz

from fileharbor.cache_store import CacheStore
from fileharbor.cache_utils import ensure_external
from fileharbor.fetcher import CachedFile
from fileharbor.storage import delete_file

LOG = logging.getLogger("fileharbor.registry")

ENTRY_TAG = "fileharbor_entry"


def utcnow() -> datetime:
    return datetime.now(tz=pytz.utc)


@dataclass
class Entry:
    id: int
    origin_url: str
    file: CachedFile
    created_at: datetime
    status: bool = True

    @property
    def cache_tags(self) -> set[str]:
        return {f"{ENTRY_TAG}:{self.id}"}


class EntryRegistry:
    """Base registry. Subclasses provide the record storage."""

    def __init__(self, cache_store: Optional[CacheStore] = None, clock=utcnow) -> None:
        self.cache_store = cache_store
        self._clock = clock

    def find_by_url(self, url: str) -> Optional[Entry]:
        return self._find_by_url(ensure_external(url))

    def create(self, url: str, file: CachedFile, created_at: Optional[datetime] = None) -> Entry:
        ensure_external(url)
        entry = self._insert(url, file, created_at or self._clock())
        LOG.info("Entry created id=%s url=%s path=%s", entry.id, url, file.uri)
        return entry

    def delete(self, entry: Entry) -> bool:
        """Delete the entry and its backing file; False if it was already gone."""
        delete_file(entry.file.uri)
        removed = self._remove(entry.id)
        if self.cache_store is not None:
            self.cache_store.invalidate_tags(entry.cache_tags)
        if removed:
            LOG.info("Entry deleted id=%s url=%s", entry.id, entry.origin_url)
        return removed

    def load(self, entry_id: int) -> Optional[Entry]:
        raise NotImplementedError

    def find_created_before(self, cutoff: datetime) -> list[Entry]:
        raise NotImplementedError

    def count(self) -> int:
        raise NotImplementedError

    def _find_by_url(self, url: str) -> Optional[Entry]:
        raise NotImplementedError

    def _insert(self, url: str, file: CachedFile, created_at: datetime) -> Entry:
        raise NotImplementedError

    def _remove(self, entry_id: int) -> bool:
        raise NotImplementedError


class MemoryEntryRegistry(EntryRegistry):
    def __init__(self, cache_store: Optional[CacheStore] = None, clock=utcnow) -> None:
        super().__init__(cache_store, clock)
        self._lock = threading.Lock()
        self._entries: dict[int, Entry] = {}
        self._next_id = 1

    def load(self, entry_id: int) -> Optional[Entry]:
        with self._lock:
            return self._entries.get(entry_id)

    def find_created_before(self, cutoff: datetime) -> list[Entry]:
        with self._lock:
            return [e for e in self._entries.values() if e.created_at < cutoff]

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def _find_by_url(self, url: str) -> Optional[Entry]:
        with self._lock:
            for entry in self._entries.values():
                if entry.origin_url == url:
                    return entry
        return None

    def _insert(self, url: str, file: CachedFile, created_at: datetime) -> Entry:
        with self._lock:
            entry = Entry(id=self._next_id, origin_url=url, file=file, created_at=created_at)
            self._entries[entry.id] = entry
            self._next_id += 1
            return entry

    def _remove(self, entry_id: int) -> bool:
        with self._lock:
            return self._entries.pop(entry_id, None) is not None


def connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


_ENTRY_COLUMNS = "id, origin_url, file_uri, file_name, content_type, size, status, created_at"


class SqliteEntryRegistry(EntryRegistry):
    def __init__(self, db_path: str, cache_store: Optional[CacheStore] = None, clock=utcnow) -> None:
        super().__init__(cache_store, clock)
        self._lock = threading.Lock()
        self._conn = connect(db_path)
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                origin_url TEXT NOT NULL,
                file_uri TEXT NOT NULL,
                file_name TEXT NOT NULL,
                content_type TEXT,
                size INTEGER NOT NULL DEFAULT 0,
                status INTEGER NOT NULL DEFAULT 1,
                created_at REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS entries_origin_url ON entries (origin_url);
            CREATE INDEX IF NOT EXISTS entries_created_at ON entries (created_at);
            """
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @staticmethod
    def _row_to_entry(row) -> Entry:
        return Entry(
            id=row[0],
            origin_url=row[1],
            file=CachedFile(uri=row[2], name=row[3], content_type=row[4], size=row[5]),
            status=bool(row[6]),
            created_at=datetime.fromtimestamp(row[7], tz=pytz.utc),
        )

    def _query(self, sql: str, params: tuple = ()) -> list:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def load(self, entry_id: int) -> Optional[Entry]:
        rows = self._query(f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE id = ?", (entry_id,))
        return self._row_to_entry(rows[0]) if rows else None

    def find_created_before(self, cutoff: datetime) -> list[Entry]:
        rows = self._query(
            f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE created_at < ? ORDER BY id",
            (cutoff.timestamp(),),
        )
        return [self._row_to_entry(row) for row in rows]

    def count(self) -> int:
        return self._query("SELECT COUNT(*) FROM entries")[0][0]

    def _find_by_url(self, url: str) -> Optional[Entry]:
        rows = self._query(
            f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE origin_url = ? ORDER BY id LIMIT 1",
            (url,),
        )
        return self._row_to_entry(rows[0]) if rows else None

    def _insert(self, url: str, file: CachedFile, created_at: datetime) -> Entry:
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO entries (origin_url, file_uri, file_name, content_type, size, status, created_at) "
                "VALUES (?, ?, ?, ?, ?, 1, ?)",
                (url, file.uri, file.name, file.content_type, file.size, created_at.timestamp()),
            )
            self._conn.commit()
            entry_id = cur.lastrowid
        return Entry(id=entry_id, origin_url=url, file=file, created_at=created_at)

    def _remove(self, entry_id: int) -> bool:
        with self._lock:
            cur = self._conn.execute("DELETE FROM entries WHERE id = ?", (entry_id,))
            self._conn.commit()
            return cur.rowcount > 0
