from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from collections.abc import Awaitable, Callable
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

from auto_containers.m1 import db as db_mod
from auto_containers.m1.config import Settings
from auto_containers.m1.store import SettingsStore
from auto_containers.m4.memory import InMemoryBrowser
from auto_containers.m6.background import Background

logger = logging.getLogger(__name__)

MESSAGE_PATH = "/v1/message"
DEFAULT_PORT = 5056
# seconds a request waits for the background loop
FORWARD_TIMEOUT = 30

MessageFn = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class MessageRequestHandler(BaseHTTPRequestHandler):
    server: MessageHTTPServer  # type: ignore[assignment]

    def _json_response(self, status: int, obj: dict[str, Any]) -> None:
        data = json.dumps(obj, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(data)))
        # Simple CORS for the extension pages.
        self.send_header("Access-Control-Allow-Origin", "*")
        self.end_headers()
        self.wfile.write(data)

    def do_OPTIONS(self) -> None:  # noqa: N802
        self.send_response(HTTPStatus.NO_CONTENT)
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "content-type")
        self.end_headers()

    def do_POST(self) -> None:  # noqa: N802
        if self.path != MESSAGE_PATH:
            self._json_response(HTTPStatus.NOT_FOUND, {"error": "not found"})
            return

        try:
            length = int(self.headers.get("Content-Length", "0"))
        except ValueError:
            length = 0

        body = self.rfile.read(length) if length else b""
        try:
            message = json.loads(body.decode("utf-8") or "{}")
        except (json.JSONDecodeError, UnicodeDecodeError):
            self._json_response(HTTPStatus.BAD_REQUEST, {"error": "invalid json"})
            return

        if not isinstance(message, dict):
            self._json_response(HTTPStatus.BAD_REQUEST, {"error": "message must be an object"})
            return

        try:
            reply = self.server.forward(message)
        except TimeoutError:
            self._json_response(HTTPStatus.GATEWAY_TIMEOUT, {"error": "background timed out"})
            return

        self._json_response(HTTPStatus.OK, reply)

    def log_message(self, fmt: str, *args: Any) -> None:
        # Quiet by default; opt-in with AUTO_CONTAINERS_SERVER_LOG=1
        if os.environ.get("AUTO_CONTAINERS_SERVER_LOG") == "1":
            super().log_message(fmt, *args)


class MessageHTTPServer(ThreadingHTTPServer):
    def __init__(
        self,
        server_address: tuple[str, int],
        handle_message: MessageFn,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        super().__init__(server_address, MessageRequestHandler)
        self.handle_message = handle_message
        self.loop = loop

    def forward(self, message: dict[str, Any]) -> dict[str, Any]:
        """Run the message handler on the background loop (or a private one)."""
        if self.loop is None:
            return asyncio.run(self.handle_message(message))
        future = asyncio.run_coroutine_threadsafe(self.handle_message(message), self.loop)
        return future.result(timeout=FORWARD_TIMEOUT)


def serve(
    db_path: Path,
    settings: Settings | None = None,
    host: str = "127.0.0.1",
    port: int = DEFAULT_PORT,
) -> None:
    conn = db_mod.connect(db_path, check_same_thread=False)
    background = Background(InMemoryBrowser(), SettingsStore(conn), settings)

    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, name="auto-containers-background", daemon=True)
    thread.start()
    asyncio.run_coroutine_threadsafe(background.start(), loop).result()

    httpd = MessageHTTPServer((host, port), handle_message=background.on_message, loop=loop)
    logger.info("message server listening on http://%s:%d", host, port)
    try:
        httpd.serve_forever(poll_interval=0.25)
    finally:
        httpd.server_close()
        asyncio.run_coroutine_threadsafe(background.close(), loop).result()
        loop.call_soon_threadsafe(loop.stop)
        thread.join()
        loop.close()
        conn.close()
