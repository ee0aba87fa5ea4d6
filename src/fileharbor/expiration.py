"""Deferred removal of cached entries.

Every new entry gets a QueueItem with its expiry time. A periodic drain pass
removes entries whose retention window has elapsed. Expiry is always
recomputed from the entry's own creation time, and each pass finishes with a
sweep of the registry, so a lost or skipped queue item only delays removal.
"""

import heapq
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import pytz

from fileharbor.registry import Entry, EntryRegistry, connect, utcnow

LOG = logging.getLogger("fileharbor.expiration")

RETENTION = timedelta(days=1)
DRAIN_INTERVAL = 600


@dataclass(frozen=True, order=True)
class QueueItem:
    expire: datetime
    entry_id: int


class ExpirationQueue:
    """Base queue. Subclasses provide the item storage."""

    def __init__(self, registry: EntryRegistry, retention: timedelta = RETENTION, clock=utcnow) -> None:
        self.registry = registry
        self.retention = retention
        self._clock = clock
        self._drain_lock = threading.Lock()

    def enqueue(self, entry_id: int, created_at: datetime) -> QueueItem:
        item = QueueItem(expire=created_at + self.retention, entry_id=entry_id)
        self._put(item)
        LOG.debug("Queued for removal entry_id=%s expire=%s", entry_id, item.expire.isoformat())
        return item

    def is_expired(self, entry: Entry, now: datetime) -> bool:
        return now > entry.created_at + self.retention

    def drain(self, now: Optional[datetime] = None) -> int:
        """Remove every expired entry; return how many were removed."""
        now = now or self._clock()
        removed = 0
        with self._drain_lock:
            for item in self._pop_due(now):
                entry = self.registry.load(item.entry_id)
                if entry is None:
                    # already removed, stale item
                    continue
                if not self.is_expired(entry, now):
                    self._put(QueueItem(expire=entry.created_at + self.retention, entry_id=entry.id))
                    continue
                removed += self._remove(entry)
            for entry in self.registry.find_created_before(now - self.retention):
                removed += self._remove(entry)
        if removed:
            LOG.info("Drain removed=%d now=%s", removed, now.isoformat())
        return removed

    def _remove(self, entry: Entry) -> int:
        try:
            return int(self.registry.delete(entry))
        except OSError as e:
            # the registry sweep retries on the next pass
            LOG.error("Entry removal failed id=%s error=%s", entry.id, e)
            return 0

    def __len__(self) -> int:
        raise NotImplementedError

    def _put(self, item: QueueItem) -> None:
        raise NotImplementedError

    def _pop_due(self, now: datetime) -> list[QueueItem]:
        raise NotImplementedError


class MemoryExpirationQueue(ExpirationQueue):
    def __init__(self, registry: EntryRegistry, retention: timedelta = RETENTION, clock=utcnow) -> None:
        super().__init__(registry, retention, clock)
        self._lock = threading.Lock()
        self._heap: list[QueueItem] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)

    def _put(self, item: QueueItem) -> None:
        with self._lock:
            heapq.heappush(self._heap, item)

    def _pop_due(self, now: datetime) -> list[QueueItem]:
        due = []
        with self._lock:
            while self._heap and self._heap[0].expire < now:
                due.append(heapq.heappop(self._heap))
        return due


class SqliteExpirationQueue(ExpirationQueue):
    def __init__(self, db_path: str, registry: EntryRegistry, retention: timedelta = RETENTION, clock=utcnow) -> None:
        super().__init__(registry, retention, clock)
        self._lock = threading.Lock()
        self._conn = connect(db_path)
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS removal_queue (
                item_id INTEGER PRIMARY KEY AUTOINCREMENT,
                entry_id INTEGER NOT NULL,
                expire REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS removal_queue_expire ON removal_queue (expire);
            """
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __len__(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM removal_queue").fetchone()[0]

    def _put(self, item: QueueItem) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO removal_queue (entry_id, expire) VALUES (?, ?)",
                (item.entry_id, item.expire.timestamp()),
            )
            self._conn.commit()

    def _pop_due(self, now: datetime) -> list[QueueItem]:
        cutoff = now.timestamp()
        with self._lock:
            rows = self._conn.execute(
                "SELECT item_id, entry_id, expire FROM removal_queue WHERE expire < ? ORDER BY expire",
                (cutoff,),
            ).fetchall()
            self._conn.executemany(
                "DELETE FROM removal_queue WHERE item_id = ?",
                [(row[0],) for row in rows],
            )
            self._conn.commit()
        return [
            QueueItem(expire=datetime.fromtimestamp(row[2], tz=pytz.utc), entry_id=row[1])
            for row in rows
        ]


class DrainWorker:
    """Background thread draining the queue every ``interval`` seconds."""

    def __init__(self, queue: ExpirationQueue, interval: float = DRAIN_INTERVAL) -> None:
        self._queue = queue
        self._interval = interval
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._loop, name="fileharbor-drain", daemon=True)

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._thread.join(timeout=5)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self._stop_event.wait(self._interval)
            if self._stop_event.is_set():
                break
            try:
                self._queue.drain()
            except Exception as e:
                LOG.error("Drain pass failed: %s", e)
