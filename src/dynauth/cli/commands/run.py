"""``run`` subcommand: start the operator and the HTTPS endpoint."""

from __future__ import annotations

import logging
import signal
import sys
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import argparse

    from dynauth.config import DynauthConfig

log = logging.getLogger(__name__)


def run_operator(config: DynauthConfig, args: argparse.Namespace) -> None:
    """Run until SIGINT/SIGTERM."""
    from dynauth.authority import InjectableLoadError, ServingCertificateOperator  # noqa: PLC0415
    from dynauth.metrics.collector import MetricsCollector  # noqa: PLC0415
    from dynauth.server import HTTPSServer, create_app  # noqa: PLC0415
    from dynauth.store import InMemoryResourceStore  # noqa: PLC0415

    settings = config.settings
    metrics = MetricsCollector() if settings.metrics.enabled else None
    store = InMemoryResourceStore()

    try:
        operator = ServingCertificateOperator(
            store,
            settings.authority,
            settings.controller,
            metrics=metrics,
        )
    except InjectableLoadError as exc:
        if args.debug:
            raise
        log.error("Cannot start: %s", exc)  # noqa: TRY400
        sys.exit(1)

    server = None
    if settings.server.enabled:
        app = create_app(operator, metrics)
        server = HTTPSServer(app, operator.server_ssl_context(), settings.server)

    stop_event = threading.Event()

    def _handle_signal(signum: int, _frame: object) -> None:
        log.info("Received %s, shutting down", signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    operator.start()
    if server is not None:
        try:
            server.start()
        except OSError as exc:
            operator.stop()
            if args.debug:
                raise
            log.error("Cannot bind HTTPS endpoint: %s", exc)  # noqa: TRY400
            sys.exit(1)

    try:
        while not stop_event.wait(timeout=1.0):
            pass
    finally:
        if server is not None:
            server.stop()
        operator.stop()
