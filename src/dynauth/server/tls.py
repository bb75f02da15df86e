"""Threaded HTTPS server for the health and metrics application.

Runs werkzeug's WSGI server on a daemon thread.  The TLS context comes
from the operator, so every new connection presents the serving
certificate current at handshake time.

Usage::

    from dynauth.server.tls import HTTPSServer

    server = HTTPSServer(app, operator.server_ssl_context(), settings.server)
    server.start()
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from werkzeug.serving import make_server

if TYPE_CHECKING:
    import ssl

    from flask import Flask
    from werkzeug.serving import BaseWSGIServer

    from dynauth.config.settings import ServerSettings

log = logging.getLogger(__name__)


class HTTPSServer:
    """Background HTTPS listener.

    Parameters
    ----------
    app:
        WSGI application to serve.
    ssl_context:
        Server context, typically hot-swapping via its SNI callback.
    settings:
        Bind address and port.

    """

    def __init__(self, app: Flask, ssl_context: ssl.SSLContext, settings: ServerSettings) -> None:
        self._app = app
        self._ssl_context = ssl_context
        self._settings = settings
        self._server: BaseWSGIServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        """Bound port (useful when configured as 0)."""
        if self._server is None:
            return self._settings.port
        return self._server.server_port

    def start(self) -> None:
        """Bind the socket and start serving on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._server = make_server(
            self._settings.bind,
            self._settings.port,
            self._app,
            threaded=True,
            ssl_context=self._ssl_context,
        )
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="https-server",
            daemon=True,
        )
        self._thread.start()
        log.info("HTTPS endpoint listening on %s:%d", self._settings.bind, self.port)

    def stop(self) -> None:
        """Stop accepting connections and wait for the serving thread."""
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
            log.info("HTTPS endpoint stopped")
        self._server = None
        self._thread = None
