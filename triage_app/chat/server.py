"""HTTP endpoint receiving Slack interactive payloads."""

from __future__ import annotations

import hmac
import json
import logging
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs

from .actions import ActionDispatcher

logger = logging.getLogger(__name__)


def parse_address(address: str) -> tuple[str, int]:
    host, _, port = address.rpartition(":")
    return host or "0.0.0.0", int(port)


class InteractionHandler(BaseHTTPRequestHandler):
    dispatcher: ActionDispatcher
    verification_token: str = ""

    def log_message(self, format, *args):
        logger.debug("%s %s", self.address_string(), format % args)

    def _json_response(self, data, status=HTTPStatus.OK):
        body = json.dumps(data).encode() if data else b""
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if body:
            self.wfile.write(body)

    def _read_body(self) -> bytes:
        length = int(self.headers.get("Content-Length", 0))
        return self.rfile.read(length) if length else b""

    def do_GET(self):
        if self.path.split("?")[0] == "/healthz":
            self._json_response({"ok": True})
            return
        self.send_error(HTTPStatus.NOT_FOUND)

    def do_POST(self):
        if self.path.split("?")[0] not in ("/", "/slack/interactive"):
            self.send_error(HTTPStatus.NOT_FOUND)
            return
        form = parse_qs(self._read_body().decode("utf-8", errors="replace"))
        raw = (form.get("payload") or [""])[0]
        try:
            payload = json.loads(raw)
        except ValueError:
            self._json_response({"error": "invalid payload"}, HTTPStatus.BAD_REQUEST)
            return
        if not isinstance(payload, dict):
            self._json_response({"error": "invalid payload"}, HTTPStatus.BAD_REQUEST)
            return
        if self.verification_token and not hmac.compare_digest(str(payload.get("token") or ""), self.verification_token):
            logger.warning("Rejected interactive payload with a bad verification token")
            self._json_response({"error": "forbidden"}, HTTPStatus.FORBIDDEN)
            return
        self._json_response(self.dispatcher.handle(payload))


class InteractionServer:
    def __init__(self, address: str, dispatcher: ActionDispatcher, verification_token: str = ""):
        host, port = parse_address(address)
        handler = type(
            "BoundInteractionHandler",
            (InteractionHandler,),
            {"dispatcher": dispatcher, "verification_token": verification_token},
        )
        self.httpd = ThreadingHTTPServer((host, port), handler)
        self.httpd.daemon_threads = True
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        return self.httpd.server_address[1]

    def start(self) -> None:
        self._thread = threading.Thread(target=self.httpd.serve_forever, name="interactions", daemon=True)
        self._thread.start()
        logger.info("Listening for interactive callbacks on port %d", self.port)

    def stop(self) -> None:
        self.httpd.shutdown()
        self.httpd.server_close()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
