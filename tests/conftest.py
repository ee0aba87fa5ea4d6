import pytest

from fileharbor.cache_store import MemoryCacheStore
from fileharbor.engine import ProxyEngine
from fileharbor.expiration import MemoryExpirationQueue
from fileharbor.fetcher import Fetcher
from fileharbor.registry import MemoryEntryRegistry
from fileharbor.test_server import TestServer


@pytest.fixture(scope="module")
def test_server():
    server = TestServer()
    server.start(host="127.0.0.1", port=0)
    yield server
    server.stop()


@pytest.fixture(autouse=True)
def _reset_server(request):
    if "test_server" in request.fixturenames:
        request.getfixturevalue("test_server").reset()
    yield


@pytest.fixture
def files_dir(tmp_path):
    return str(tmp_path / "files")


@pytest.fixture
def engine(files_dir):
    cache_store = MemoryCacheStore()
    registry = MemoryEntryRegistry(cache_store=cache_store)
    queue = MemoryExpirationQueue(registry)
    fetcher = Fetcher(connect_timeout=2, read_timeout=2)
    return ProxyEngine(cache_store, registry, fetcher, queue, files_dir, base_url="http://proxy.local")
