import errno
import hashlib
import os

import pytest
import requests

from fileharbor.errors import (
    DirectoryError,
    EmptyBodyError,
    FetchError,
    HttpStatusError,
    ResponseTooLargeError,
    StorageError,
    TransportError,
    UnexpectedHtmlError,
)
from fileharbor.fetcher import CachedFile, Fetcher, derive_filename, guess_extension
from fileharbor.storage import save_data
from fileharbor.test_server import PNG_BODY


@pytest.fixture
def fetcher():
    return Fetcher(connect_timeout=2, read_timeout=2)


def test_sends_plain_transfer_headers(fetcher, test_server, files_dir):
    result = fetcher.fetch(test_server.url("/image.png"), files_dir)
    assert isinstance(result, CachedFile)
    headers = test_server.stats()["requests"]["/image.png"][0]["headers"]
    assert headers["accept"] == "text/plain"
    assert headers["connection"] == "close"


def test_disposition_filename_is_used(fetcher, test_server, files_dir):
    result = fetcher.fetch(test_server.url("/attachment/report.pdf"), files_dir)
    assert isinstance(result, CachedFile)
    assert result.name == "report.pdf"
    assert result.uri == os.path.join(os.path.abspath(files_dir), "report.pdf")
    with open(result.uri, "rb") as f:
        assert f.read() == b"attachment report.pdf"
    assert result.size == len(b"attachment report.pdf")


def test_hash_name_with_guessed_extension(fetcher, test_server, files_dir):
    result = fetcher.fetch(test_server.url("/image.png"), files_dir)
    assert result.name == hashlib.md5(PNG_BODY).hexdigest() + ".png"
    assert result.content_type == "image/png"


def test_explicit_destination_name_wins(fetcher, test_server, files_dir):
    result = fetcher.fetch(test_server.url("/attachment/report.pdf"), files_dir, "mine.bin")
    assert result.name == "mine.bin"


def test_existing_file_is_never_overwritten(fetcher, test_server, files_dir):
    first = fetcher.fetch(test_server.url("/attachment/report.pdf"), files_dir)
    second = fetcher.fetch(test_server.url("/attachment/report.pdf"), files_dir)
    third = fetcher.fetch(test_server.url("/attachment/report.pdf"), files_dir)
    assert [first.name, second.name, third.name] == ["report.pdf", "report_0.pdf", "report_1.pdf"]
    assert all(os.path.exists(f.uri) for f in (first, second, third))


def test_follows_redirects(fetcher, test_server, files_dir):
    result = fetcher.fetch(test_server.url("/redirect"), files_dir)
    assert isinstance(result, CachedFile)
    assert result.name.endswith(".png")


@pytest.mark.parametrize("code", [403, 404, 500])
def test_non_200_status(fetcher, test_server, files_dir, code):
    result = fetcher.fetch(test_server.url(f"/status/{code}"), files_dir)
    assert isinstance(result, HttpStatusError)
    assert result.status_code == code


@pytest.mark.parametrize("path", ["/html", "/html-charset"])
def test_html_is_refused(fetcher, test_server, files_dir, path):
    result = fetcher.fetch(test_server.url(path), files_dir)
    assert isinstance(result, UnexpectedHtmlError)


def test_status_and_html_errors_are_distinct(fetcher, test_server, files_dir):
    missing = fetcher.fetch(test_server.url("/status/404"), files_dir)
    html = fetcher.fetch(test_server.url("/html"), files_dir)
    assert isinstance(missing, FetchError) and isinstance(html, FetchError)
    assert type(missing) is not type(html)


def test_empty_body(fetcher, test_server, files_dir):
    result = fetcher.fetch(test_server.url("/empty"), files_dir)
    assert isinstance(result, EmptyBodyError)
    assert os.listdir(files_dir) == []


def test_body_size_limit(test_server, files_dir):
    fetcher = Fetcher(connect_timeout=2, read_timeout=2, max_bytes=100)
    assert isinstance(fetcher.fetch(test_server.url("/bytes/100"), files_dir), CachedFile)
    assert isinstance(fetcher.fetch(test_server.url("/bytes/101"), files_dir), ResponseTooLargeError)


def test_read_timeout_is_a_transport_error(test_server, files_dir):
    fetcher = Fetcher(connect_timeout=2, read_timeout=0.2)
    result = fetcher.fetch(test_server.url("/delay/1"), files_dir)
    assert isinstance(result, TransportError)
    assert isinstance(result.__cause__, requests.RequestException)


def test_connection_refused_is_a_transport_error(fetcher, files_dir):
    result = fetcher.fetch("http://127.0.0.1:9/unreachable", files_dir)
    assert isinstance(result, TransportError)


def test_directory_error_before_network(fetcher, test_server, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    with pytest.raises(DirectoryError):
        fetcher.fetch(test_server.url("/image.png"), str(blocker / "sub"))
    assert test_server.count("/image.png") == 0


def test_derive_filename_prefers_disposition():
    assert derive_filename(b"B", "image/png", 'attachment; filename="report.pdf"') == "report.pdf"


def test_derive_filename_hash_and_extension():
    assert derive_filename(b"B", "image/png") == hashlib.md5(b"B").hexdigest() + ".png"
    assert derive_filename(b"B", "") == hashlib.md5(b"B").hexdigest()


def test_derive_filename_sanitizes_paths():
    assert derive_filename(b"B", "", 'attachment; filename="../../etc/passwd"') == "etc_passwd"
    assert derive_filename(b"B", "", 'attachment; filename="../.."') == hashlib.md5(b"B").hexdigest()


def test_guess_extension_first_guessable_token_wins():
    assert guess_extension("application/x-unknown-thing; image/png; application/pdf") == ".png"
    assert guess_extension("application/x-unknown-thing") == ""


def test_local_write_failure_is_a_storage_error(fetcher, test_server, files_dir, monkeypatch):
    def no_space(data, directory, name):
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr("fileharbor.fetcher.save_data", no_space)
    result = fetcher.fetch(test_server.url("/image.png"), files_dir)
    assert isinstance(result, StorageError)
    assert result.url == test_server.url("/image.png")


def test_partial_write_is_removed(tmp_path, monkeypatch):
    real_fdopen = os.fdopen

    class FailingFile:
        def __init__(self, fd, mode):
            self._f = real_fdopen(fd, mode)

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            self._f.close()

        def write(self, data):
            self._f.write(data[:3])
            raise OSError(errno.EIO, "Input/output error")

    monkeypatch.setattr(os, "fdopen", FailingFile)
    with pytest.raises(OSError):
        save_data(b"0123456789", str(tmp_path), "file.bin")
    assert os.listdir(tmp_path) == []
