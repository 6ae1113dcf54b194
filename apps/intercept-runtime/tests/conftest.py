"""Test bootstrap for intercept-runtime."""

from __future__ import annotations

import json
import sys
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Iterator

import pytest

APP_ROOT = Path(__file__).resolve().parents[1]
app_root_str = str(APP_ROOT)
if app_root_str not in sys.path:
    sys.path.insert(0, app_root_str)


class _BackendHandler(BaseHTTPRequestHandler):
    """Stand-in for the application backend: everything under /api needs auth."""

    def do_GET(self) -> None:  # noqa: N802 - HTTP handler requirement
        self._handle()

    def do_POST(self) -> None:  # noqa: N802
        length = int(self.headers.get("Content-Length", 0) or 0)
        self.rfile.read(length)
        self._handle()

    def _handle(self) -> None:
        if self.path.startswith("/api/"):
            status, payload = 401, {"error": "Unauthorized"}
        else:
            status, payload = 200, {"ok": True, "path": self.path}
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:  # pragma: no cover - silence logs
        return


@pytest.fixture
def backend_url() -> Iterator[str]:
    server = HTTPServer(("127.0.0.1", 0), _BackendHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=2)


class _DroppingHandler(BaseHTTPRequestHandler):
    """Reads the request and hangs up without sending a status line."""

    def do_GET(self) -> None:  # noqa: N802
        self.close_connection = True

    def log_message(self, format: str, *args: object) -> None:  # pragma: no cover - silence logs
        return


@pytest.fixture
def dropping_backend_url() -> Iterator[str]:
    server = HTTPServer(("127.0.0.1", 0), _DroppingHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=2)
