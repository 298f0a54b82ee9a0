import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import httpx
import pytest

from oasbench.sut.factory import SpecLoader
from oasbench.sut.http import build_client

FIXTURES = Path(__file__).parent / "fixtures"
PETSTORE = FIXTURES / "petstore.yaml"
API_URL = "http://api.test"


@pytest.fixture
def petstore_path() -> Path:
    return PETSTORE


@pytest.fixture
def petstore():
    return SpecLoader().load(PETSTORE)


@pytest.fixture
def operations(petstore):
    return {op.operation_id: op for op in petstore.operations(API_URL)}


def mock_client(handler, concurrency: int = 1) -> httpx.AsyncClient:
    """Client whose requests never leave the process."""
    return build_client(concurrency=concurrency, transport=httpx.MockTransport(handler))


def json_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={})


class _Handler(BaseHTTPRequestHandler):
    status = 200
    body = b"{}"

    def _answer(self):
        length = int(self.headers.get("Content-Length") or 0)
        if length:
            self.rfile.read(length)
        self.send_response(self.status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(self.body)))
        self.end_headers()
        self.wfile.write(self.body)

    do_GET = do_POST = do_PUT = do_PATCH = do_DELETE = _answer

    def log_message(self, format, *args):
        pass


@pytest.fixture
def live_server(monkeypatch):
    """A real HTTP server on localhost answering every request with 200 and ``{}``."""
    for var in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(var, raising=False)

    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


def write_spec(path: Path, responses: dict, method: str = "get", route: str = "/health") -> Path:
    doc = {
        "openapi": "3.0.3",
        "info": {"title": "health", "version": "1"},
        "paths": {route: {method: {"operationId": "health", "responses": responses}}},
    }
    path.write_text(json.dumps(doc), encoding="utf-8")
    return path
