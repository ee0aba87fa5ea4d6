"""Threaded local HTTP origin for integration tests."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Optional
from urllib.parse import parse_qs, urlparse

PNG_BODY = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@dataclass
class _TestState:
    lock: threading.Lock = field(default_factory=threading.Lock)
    counts: Dict[str, int] = field(default_factory=dict)
    requests: Dict[str, list[dict]] = field(default_factory=dict)
    path_overrides: Dict[str, dict] = field(default_factory=dict)

    def reset(self) -> None:
        with self.lock:
            self.counts.clear()
            self.requests.clear()
            self.path_overrides.clear()

    def record(self, path: str, record: dict) -> None:
        with self.lock:
            self.counts[path] = self.counts.get(path, 0) + 1
            self.requests.setdefault(path, []).append(record)

    def snapshot(self) -> dict:
        with self.lock:
            return {
                "counts": dict(self.counts),
                "requests": {k: list(v) for k, v in self.requests.items()},
            }

    def set_path_override(self, path: str, *, status: int | None = None, delay: float | None = None) -> None:
        with self.lock:
            self.path_overrides[path] = {
                "status": status,
                "delay": delay,
            }

    def get_path_override(self, path: str) -> dict:
        with self.lock:
            return dict(self.path_overrides.get(path, {}))


class _Handler(BaseHTTPRequestHandler):
    server: "_TestHTTPServer"

    def log_message(self, format: str, *args) -> None:
        return

    def do_HEAD(self) -> None:
        self._handle_request(send_body=False)

    def do_GET(self) -> None:
        self._handle_request(send_body=True)

    def _handle_request(self, send_body: bool) -> None:
        parsed = urlparse(self.path)
        path = parsed.path
        query = parse_qs(parsed.query)
        record = {
            "method": self.command,
            "path": path,
            "query": query,
            "headers": {k.lower(): v for k, v in self.headers.items()},
        }
        self.server.state.record(path, record)

        override = self.server.state.get_path_override(path)
        if override.get("delay"):
            time.sleep(override["delay"])
        if override.get("status"):
            self._respond(override["status"], b"overridden", "text/plain", send_body)
            return

        if path.startswith("/delay/"):
            seconds = float(path.split("/delay/", 1)[1] or "0")
            time.sleep(seconds)
            self._respond(HTTPStatus.OK, f"delayed {seconds}".encode("utf-8"), "text/plain", send_body)
            return

        if path.startswith("/status/"):
            code = int(path.split("/status/", 1)[1] or "200")
            self._respond(code, f"status {code}".encode("utf-8"), "text/plain", send_body)
            return

        if path.startswith("/attachment/"):
            # /attachment/<filename>
            name = path.split("/attachment/", 1)[1] or "file.bin"
            self._respond(
                HTTPStatus.OK,
                f"attachment {name}".encode("utf-8"),
                "application/octet-stream",
                send_body,
                extra={"Content-Disposition": f'attachment; filename="{name}"'},
            )
            return

        if path == "/image.png":
            self._respond(HTTPStatus.OK, PNG_BODY, "image/png", send_body)
            return

        if path == "/text":
            body = query.get("body", ["plain text"])[0].encode("utf-8")
            self._respond(HTTPStatus.OK, body, "text/plain; charset=utf-8", send_body)
            return

        if path == "/html":
            self._respond(HTTPStatus.OK, b"<html><body>login</body></html>", "text/html", send_body)
            return

        if path == "/html-charset":
            self._respond(HTTPStatus.OK, b"<html></html>", "text/html; charset=utf-8", send_body)
            return

        if path == "/empty":
            self._respond(HTTPStatus.OK, b"", "application/octet-stream", send_body)
            return

        if path == "/redirect":
            self.send_response(HTTPStatus.FOUND)
            self.send_header("Location", "/image.png")
            self.send_header("Content-Length", "0")
            self.end_headers()
            return

        if path.startswith("/bytes/"):
            size = int(path.split("/bytes/", 1)[1] or "0")
            self._respond(HTTPStatus.OK, b"0" * size, "application/octet-stream", send_body)
            return

        if path == "/reset":
            self.server.state.reset()
            self._respond(HTTPStatus.OK, b"reset", "text/plain", send_body)
            return

        self._respond(HTTPStatus.NOT_FOUND, b"not found", "text/plain", send_body)

    def _respond(
        self,
        status: int | HTTPStatus,
        body: bytes,
        content_type: str,
        send_body: bool,
        extra: Optional[dict] = None,
    ) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        for k, v in (extra or {}).items():
            self.send_header(k, v)
        self.end_headers()
        if send_body:
            self.wfile.write(body)


class _TestHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, server_address, handler_class):
        super().__init__(server_address, handler_class)
        self.state = _TestState()


class TestServer:
    __test__ = False

    def __init__(self, public_host: str | None = None) -> None:
        self._server: Optional[_TestHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._public_host = public_host

    def start(self, host: str = "127.0.0.1", port: int = 0) -> None:
        if self._server is not None:
            return
        self._server = _TestHTTPServer((host, port), _Handler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        self._thread = None

    @property
    def address(self) -> tuple[str, int]:
        if self._server is None:
            raise RuntimeError("Server not started")
        host, port = self._server.server_address
        return host, port

    @property
    def base_url(self) -> str:
        host, port = self.address
        public_host = self._public_host or host
        return f"http://{public_host}:{port}"

    def url(self, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}{path}"

    def reset(self) -> None:
        if self._server is None:
            return
        self._server.state.reset()

    def stats(self) -> dict:
        if self._server is None:
            return {"counts": {}, "requests": {}}
        return self._server.state.snapshot()

    def count(self, path: str) -> int:
        return self.stats()["counts"].get(path, 0)

    def set_path_override(self, path: str, *, status: int | None = None, delay: float | None = None) -> None:
        if self._server is None:
            raise RuntimeError("Server not started")
        self._server.state.set_path_override(path, status=status, delay=delay)
