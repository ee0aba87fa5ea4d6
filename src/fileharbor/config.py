"""Runtime settings and wiring of the proxy components."""

import os
from dataclasses import dataclass, field, fields
from datetime import timedelta
from typing import Mapping, Optional

from fileharbor.cache_store import MemoryCacheStore
from fileharbor.cache_utils import host_of
from fileharbor.engine import ProxyEngine
from fileharbor.expiration import (
    DRAIN_INTERVAL,
    ExpirationQueue,
    MemoryExpirationQueue,
    SqliteExpirationQueue,
)
from fileharbor.fetcher import CONNECT_TIMEOUT, READ_TIMEOUT, Fetcher
from fileharbor.registry import MemoryEntryRegistry, SqliteEntryRegistry

ENV_PREFIX = "FILEHARBOR_"


def _parse_bytes(value: str, default: int) -> int:
    raw = (value or "").strip().lower()
    if not raw:
        return default
    multipliers = {
        "k": 1024,
        "kb": 1024,
        "m": 1024 ** 2,
        "mb": 1024 ** 2,
        "g": 1024 ** 3,
        "gb": 1024 ** 3,
    }
    for suffix, mult in multipliers.items():
        if raw.endswith(suffix):
            num = raw[: -len(suffix)].strip()
            try:
                return int(float(num) * mult)
            except ValueError:
                return default
    try:
        return int(raw)
    except ValueError:
        return default


def parse_seconds(value: str, default: float) -> float:
    """Parse '90', '15m', '6h' or '1d' into seconds."""
    raw = (value or "").strip().lower()
    if not raw:
        return default
    multipliers = {"s": 1, "m": 60, "h": 3600, "d": 86400}
    mult = multipliers.get(raw[-1])
    if mult is not None:
        raw = raw[:-1].strip()
    try:
        return float(raw) * (mult or 1)
    except ValueError:
        return default


def _parse_bool(value: str, default: bool) -> bool:
    raw = (value or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    files_dir: str = "./fileharbor-files"
    db_path: str = ""
    base_url: str = "http://localhost:8080"
    retention_seconds: float = 86400
    connect_timeout: float = CONNECT_TIMEOUT
    read_timeout: float = READ_TIMEOUT
    max_bytes: int = 0
    cache_size: int = 4096
    drain_interval: float = DRAIN_INTERVAL
    lock_fetches: bool = True
    local_hosts: list[str] = field(default_factory=list)

    @property
    def retention(self) -> timedelta:
        return timedelta(seconds=self.retention_seconds)

    @property
    def all_local_hosts(self) -> list[str]:
        hosts = list(self.local_hosts)
        if self.base_url and (base_host := host_of(self.base_url)):
            hosts.append(base_host)
        return hosts

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        def get(name: str) -> str:
            return env.get(ENV_PREFIX + name, "")

        defaults = cls()
        return cls(
            files_dir=get("FILES_DIR") or defaults.files_dir,
            db_path=get("DB_PATH"),
            base_url=get("BASE_URL") or defaults.base_url,
            retention_seconds=parse_seconds(get("RETENTION"), defaults.retention_seconds),
            connect_timeout=parse_seconds(get("CONNECT_TIMEOUT"), defaults.connect_timeout),
            read_timeout=parse_seconds(get("READ_TIMEOUT"), defaults.read_timeout),
            max_bytes=_parse_bytes(get("MAX_BYTES"), defaults.max_bytes),
            cache_size=int(get("CACHE_SIZE") or defaults.cache_size),
            drain_interval=parse_seconds(get("DRAIN_INTERVAL"), defaults.drain_interval),
            lock_fetches=_parse_bool(get("LOCK_FETCHES"), defaults.lock_fetches),
            local_hosts=[h.strip() for h in get("LOCAL_HOSTS").split(",") if h.strip()],
        )

    def replace(self, **overrides) -> "Settings":
        """Return a copy with every non-None override applied."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return type(self)(**values)


def build_engine(settings: Settings) -> ProxyEngine:
    cache_store = MemoryCacheStore(maxsize=max(1, settings.cache_size))
    queue: ExpirationQueue
    if settings.db_path:
        registry = SqliteEntryRegistry(settings.db_path, cache_store=cache_store)
        queue = SqliteExpirationQueue(settings.db_path, registry, retention=settings.retention)
    else:
        registry = MemoryEntryRegistry(cache_store=cache_store)
        queue = MemoryExpirationQueue(registry, retention=settings.retention)
    fetcher = Fetcher(
        connect_timeout=settings.connect_timeout,
        read_timeout=settings.read_timeout,
        max_bytes=settings.max_bytes,
    )
    return ProxyEngine(
        cache_store,
        registry,
        fetcher,
        queue,
        settings.files_dir,
        base_url=settings.base_url,
        local_hosts=settings.all_local_hosts,
        lock_fetches=settings.lock_fetches,
    )
