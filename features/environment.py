import os
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer


class StubHandler(BaseHTTPRequestHandler):
    """Answers every request with ``server.status`` and ``server.body``."""

    def _answer(self):
        length = int(self.headers.get("Content-Length") or 0)
        if length:
            self.rfile.read(length)
        body = self.server.body
        self.send_response(self.server.status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    do_GET = do_POST = do_PUT = do_PATCH = do_DELETE = _answer

    def log_message(self, format, *args):
        pass


def before_all(context):
    context.timeout = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
    context.verify_tls = os.getenv("HTTP_VERIFY_TLS", "true").lower() == "true"

    server = ThreadingHTTPServer(("127.0.0.1", 0), StubHandler)
    server.status = 200
    server.body = b"{}"
    threading.Thread(target=server.serve_forever, daemon=True).start()
    context.stub = server
    context.base_url = f"http://127.0.0.1:{server.server_address[1]}"


def before_scenario(context, scenario):
    # Reset per scenario
    context.stub.status = 200
    context.stub.body = b"{}"
    context.document = None
    context.result = None
    context.events = []


def after_all(context):
    context.stub.shutdown()
    context.stub.server_close()
