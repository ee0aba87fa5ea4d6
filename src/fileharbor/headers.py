"""Best-effort parsing of semi-structured HTTP header values.

Used for Content-Type (MIME tokens for extension guessing) and
Content-Disposition (the ``filename`` field).

Example::

    >>> parse_header_line('form-data; name="AttachedFile1"; filename="photo-1.jpg"')
    {0: 'form-data', 'name': 'AttachedFile1', 'filename': 'photo-1.jpg'}
"""

from typing import Iterator, Optional
from urllib.parse import unquote


def parse_header_line(value: str) -> dict[str | int, str]:
    parsed: dict[str | int, str] = {}
    position = 0
    for segment in (value or "").split(";"):
        segment = segment.replace('"', "").strip()
        if not segment:
            continue
        if "=" in segment:
            k, v = segment.split("=", 1)
            parsed[k.strip()] = v.strip()
        elif ":" in segment:
            k, v = segment.split(":", 1)
            parsed[k.strip()] = v.strip()
        else:
            parsed[position] = segment
            position += 1
    return parsed


def mime_types(content_type: str) -> Iterator[str]:
    """Yield candidate MIME tokens of a Content-Type value, in header order."""
    for v in parse_header_line(content_type).values():
        if "/" in v:
            yield v.lower()


def media_type(content_type: str) -> str:
    """Return the bare ``type/subtype`` of a Content-Type value, lowercased."""
    return (content_type or "").split(";", 1)[0].strip().strip('"').lower()


def _decode_ext_value(value: str) -> str:
    # RFC 5987: charset'lang'percent-encoded
    parts = value.split("'", 2)
    if len(parts) != 3:
        return unquote(value)
    charset, _, encoded = parts
    try:
        return unquote(encoded, encoding=charset or "utf-8", errors="strict")
    except (LookupError, UnicodeDecodeError):
        return unquote(encoded)


def disposition_filename(content_disposition: str) -> Optional[str]:
    parsed = parse_header_line(content_disposition)
    if (name := parsed.get("filename")):
        return name
    if (ext := parsed.get("filename*")):
        return _decode_ext_value(ext) or None
    return None
