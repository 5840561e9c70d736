"""Embedded HTTP server.

Serves the Flask app from a daemon thread with werkzeug's threaded
WSGI server so ``acmesync run`` stays a single process.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from werkzeug.serving import make_server

if TYPE_CHECKING:
    from flask import Flask

log = logging.getLogger(__name__)


class ApiServer:
    """Run *app* on ``host:port`` in a background thread."""

    def __init__(self, app: Flask, host: str, port: int) -> None:
        self._server = make_server(host, port, app, threaded=True)
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        return self._server.server_port

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="acmesync-http",
            daemon=True,
        )
        self._thread.start()
        log.info("HTTP API listening on %s:%d", self._server.host, self.port)

    def stop(self) -> None:
        self._server.shutdown()
        if self._thread is not None:
            self._thread.join(timeout=5)
        log.info("HTTP API stopped")
