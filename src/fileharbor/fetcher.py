"""Outbound fetch of external files into local storage."""

import logging
import mimetypes
import os
import threading
from dataclasses import dataclass
from typing import Optional, Union

import requests
from werkzeug.utils import secure_filename

from fileharbor.cache_utils import content_hash
from fileharbor.errors import (
    EmptyBodyError,
    FetchError,
    HttpStatusError,
    ResponseTooLargeError,
    StorageError,
    TransportError,
    UnexpectedHtmlError,
)
from fileharbor.headers import disposition_filename, media_type, mime_types
from fileharbor.storage import prepare_directory, save_data

LOG = logging.getLogger("fileharbor.fetcher")

CONNECT_TIMEOUT = 10
READ_TIMEOUT = 30
CHUNK_SIZE = 64 * 1024

# We expect a plain file transfer, not a browsable page.
FETCH_HEADERS = {
    "Accept": "text/plain",
    "Connection": "close",
}


@dataclass(frozen=True)
class CachedFile:
    """A fetched file persisted in local storage."""

    uri: str
    name: str
    content_type: Optional[str] = None
    size: int = 0


def get_session(tls=threading.local()) -> requests.Session:
    """
    Always return the same requests session to the same thread.

    Sessions are not guaranteed to be thread-safe, but reusing one per
    thread still gives us urllib3's connection pooling.
    """
    try:
        return tls.session
    except AttributeError:
        tls.session = requests.Session()
        return tls.session


def guess_extension(content_type: str) -> str:
    """Return the extension for the first guessable MIME token, or ''."""
    for token in mime_types(content_type):
        if (ext := mimetypes.guess_extension(token)):
            return ext
    return ""


def derive_filename(data: bytes, content_type: str = "", content_disposition: str = "") -> str:
    if content_disposition and (name := disposition_filename(content_disposition)):
        safe = secure_filename(name)
        if safe:
            return safe
        LOG.debug("Unusable Content-Disposition filename=%r", name)
    return content_hash(data) + guess_extension(content_type)


class Fetcher:
    def __init__(
        self,
        connect_timeout: float = CONNECT_TIMEOUT,
        read_timeout: float = READ_TIMEOUT,
        max_bytes: int = 0,
        session_factory=get_session,
    ) -> None:
        self.timeout = (connect_timeout, read_timeout)
        self.max_bytes = max_bytes
        self._session_factory = session_factory

    def fetch(self, url: str, dest_dir: str, dest_name: Optional[str] = None) -> Union[CachedFile, FetchError]:
        """
        Fetch ``url`` into ``dest_dir``.

        Returns the CachedFile on success, or the FetchError describing why
        the fetch was refused. DirectoryError is raised before any network
        traffic if ``dest_dir`` cannot be prepared.
        """
        dest_dir = prepare_directory(dest_dir)
        try:
            data, headers = self._download(url)
        except FetchError as e:
            LOG.error("Fetch failed url=%s reason=%s error=%s", url, type(e).__name__, e)
            return e

        content_type = headers.get("Content-Type", "")
        if not dest_name:
            dest_name = derive_filename(data, content_type, headers.get("Content-Disposition", ""))
        try:
            path = save_data(data, dest_dir, dest_name)
        except OSError as exc:
            e = StorageError(url, f"Unable to store {url} in {dest_dir}: {exc}")
            LOG.error("Fetch failed url=%s reason=%s error=%s", url, type(e).__name__, e)
            return e
        LOG.debug("Fetched url=%s path=%s size=%d", url, path, len(data))
        return CachedFile(
            uri=path,
            name=os.path.basename(path),
            content_type=media_type(content_type) or None,
            size=len(data),
        )

    def _download(self, url: str):
        try:
            with self._session_factory().get(
                url,
                headers=FETCH_HEADERS,
                timeout=self.timeout,
                stream=True,
            ) as r:
                if r.status_code != 200:
                    raise HttpStatusError(url, r.status_code)
                if media_type(r.headers.get("Content-Type", "")) == "text/html":
                    # most likely an error or login page instead of the file
                    raise UnexpectedHtmlError(url)
                data = self._read_body(url, r)
                return data, r.headers
        except requests.RequestException as e:
            raise TransportError(url, f"Error {e} when fetching {url}") from e

    def _read_body(self, url: str, r: requests.Response) -> bytes:
        if self.max_bytes:
            length = r.headers.get("Content-Length", "")
            if length.isdigit() and int(length) > self.max_bytes:
                raise ResponseTooLargeError(url, self.max_bytes)
        buf = bytearray()
        for chunk in r.iter_content(CHUNK_SIZE):
            buf.extend(chunk)
            if self.max_bytes and len(buf) > self.max_bytes:
                raise ResponseTooLargeError(url, self.max_bytes)
        if not buf:
            raise EmptyBodyError(url)
        return bytes(buf)
