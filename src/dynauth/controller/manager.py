"""Controller manager with a leadership gate.

Controllers that do not need leader election start immediately; the
others start once :attr:`Manager.elected` is set.  Cross-process
election is left to the surrounding orchestration, so the in-process
default is to grant leadership at start.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dynauth.controller.controller import Controller

log = logging.getLogger(__name__)


class Manager:
    """Owns the lifecycle of a set of controllers.

    Parameters
    ----------
    elect_on_start:
        Grant leadership as soon as :meth:`start` runs.  Set to False
        when an external component calls :meth:`grant_leadership`.

    """

    def __init__(self, *, elect_on_start: bool = True) -> None:
        self._controllers: list[Controller] = []
        self._elect_on_start = elect_on_start
        self.elected = threading.Event()
        self._stop_event = threading.Event()
        self._gate: threading.Thread | None = None
        self._lock = threading.Lock()
        self._running = False

    @property
    def controllers(self) -> tuple[Controller, ...]:
        return tuple(self._controllers)

    @property
    def running(self) -> bool:
        return self._running

    def add(self, controller: Controller) -> None:
        with self._lock:
            if self._running:
                msg = f"cannot add controller {controller.name} to a running manager"
                raise RuntimeError(msg)
            self._controllers.append(controller)

    def grant_leadership(self) -> None:
        if not self.elected.is_set():
            log.info("Leadership granted")
        self.elected.set()

    def start(self) -> None:
        """Start every controller, gating leader-elected ones."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._stop_event.clear()

        for controller in self._controllers:
            if not controller.need_leader_election:
                controller.start()

        self._gate = threading.Thread(
            target=self._start_elected,
            name="manager-leader-gate",
            daemon=True,
        )
        self._gate.start()
        if self._elect_on_start:
            self.grant_leadership()

    def _start_elected(self) -> None:
        while not self._stop_event.is_set():
            if self.elected.wait(timeout=0.5):
                break
        if self._stop_event.is_set():
            return
        for controller in self._controllers:
            if controller.need_leader_election:
                controller.start()

    def stop(self) -> None:
        """Stop every controller in reverse registration order."""
        self._stop_event.set()
        if self._gate is not None:
            self._gate.join(timeout=5)
            self._gate = None
        for controller in reversed(self._controllers):
            controller.stop()
        with self._lock:
            self._running = False
