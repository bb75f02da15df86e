"""Cooperative cancellation for reconcile passes."""

from __future__ import annotations

import threading


class CancelledError(Exception):
    """The reconcile context was stopped while work was in progress."""


class Context:
    """Carries the stop signal of the controller running a reconcile.

    Long operations call :meth:`check` between steps so that a shutdown
    aborts key generation and store I/O promptly.
    """

    def __init__(self, stop_event: threading.Event | None = None) -> None:
        self._stop_event = stop_event or threading.Event()

    @classmethod
    def background(cls) -> Context:
        """Return a context that is never cancelled by anyone else."""
        return cls()

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    def cancel(self) -> None:
        self._stop_event.set()

    def check(self) -> None:
        """Raise :class:`CancelledError` if the context has been stopped."""
        if self._stop_event.is_set():
            msg = "reconcile cancelled"
            raise CancelledError(msg)

    def wait(self, timeout: float) -> bool:
        """Sleep up to *timeout* seconds; return True if cancelled meanwhile."""
        return self._stop_event.wait(timeout=timeout)
