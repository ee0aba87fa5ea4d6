"""Pure utility functions for cache key derivation and proxy URL handling.

Shared by the engine (runtime), the WSGI boundary and cli.py.
"""

import base64
import binascii
import hashlib
from typing import Iterable
from urllib.parse import urlparse

from fileharbor.errors import InvalidUrlError

CACHE_KEY_PREFIX = "fileharbor:"
PROXY_PATH = "proxy"
EXTERNAL_SCHEMES = ("http", "https")


def cache_key(url: str) -> str:
    """Return the metadata cache key for an external URL."""
    return CACHE_KEY_PREFIX + hashlib.sha224(url.encode("utf-8")).hexdigest()


def content_hash(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def is_external(url: str, local_hosts: Iterable[str] = ()) -> bool:
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
    except ValueError:
        return False
    if parsed.scheme.lower() not in EXTERNAL_SCHEMES or not host:
        return False
    return host not in {h.strip().lower() for h in local_hosts if h}


def ensure_external(url: str, local_hosts: Iterable[str] = ()) -> str:
    if not is_external(url, local_hosts):
        raise InvalidUrlError(f"External url expected, got {url!r}")
    return url


def host_of(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def encode_proxy_segment(url: str) -> str:
    return base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii")


def decode_proxy_segment(segment: str) -> str:
    """Decode a proxy path segment back to the URL string.

    Both the standard and the URL-safe base64 alphabets are accepted, and
    missing padding is tolerated.
    """
    raw = (segment or "").strip().replace("-", "+").replace("_", "/")
    if not raw:
        raise InvalidUrlError("Empty proxy segment")
    raw += "=" * (-len(raw) % 4)
    try:
        return base64.b64decode(raw, validate=True).decode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise InvalidUrlError(f"Malformed proxy segment {segment!r}") from exc


def build_proxy_url(url: str, base_url: str = "", local_hosts: Iterable[str] = ()) -> str:
    """Return ``<base_url>/proxy/<base64(url)>`` for an external URL."""
    ensure_external(url, local_hosts)
    return f"{base_url.rstrip('/')}/{PROXY_PATH}/{encode_proxy_segment(url)}"
