"""Level-triggered controller: watch sources, work queue and workers.

A :class:`Controller` turns change notifications into
:class:`~dynauth.controller.base.Request` items, de-duplicates them in a
:class:`~dynauth.controller.queue.WorkQueue` and runs the reconciler on
daemon worker threads.  Failed passes are retried with per-item
exponential backoff; a request is never reconciled by two workers at
once.
"""

from __future__ import annotations

import abc
import logging
import threading
from typing import TYPE_CHECKING, Any

from dynauth.controller.base import Request, Result
from dynauth.controller.context import CancelledError, Context
from dynauth.controller.queue import WorkQueue
from dynauth.logging.setup import reconcile_scope
from dynauth.store.base import key_of

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from dynauth.controller.base import Reconciler
    from dynauth.metrics.collector import MetricsCollector
    from dynauth.store.base import ResourceStore, Watch, WatchEvent

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class Source(abc.ABC):
    """Producer of reconcile requests."""

    @abc.abstractmethod
    def start(self, enqueue: Callable[[Request], None]) -> None:
        """Begin delivering requests to *enqueue*."""

    def stop(self) -> None:  # noqa: B027
        """Stop delivering requests."""


class KindSource(Source):
    """Requests derived from store watch events of one kind.

    Parameters
    ----------
    store:
        Store to subscribe to.
    kind:
        Resource kind to watch.
    namespace, labels, predicate:
        Scope filters evaluated by the store before delivery.
    mapper:
        Maps an event to the requests it triggers.  Defaults to the
        identity of the changed object.

    """

    def __init__(
        self,
        store: ResourceStore,
        kind: str,
        *,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
        predicate: Callable[[dict[str, Any]], bool] | None = None,
        mapper: Callable[[WatchEvent], Iterable[Request]] | None = None,
    ) -> None:
        self._store = store
        self.kind = kind
        self._namespace = namespace
        self._labels = labels
        self._predicate = predicate
        self._mapper = mapper or (lambda event: [key_of(event.object)])
        self._watch: Watch | None = None

    def start(self, enqueue: Callable[[Request], None]) -> None:
        def _handle(event: WatchEvent) -> None:
            for request in self._mapper(event):
                enqueue(request)

        self._watch = self._store.watch(
            self.kind,
            _handle,
            namespace=self._namespace,
            labels=self._labels,
            predicate=self._predicate,
        )

    def stop(self) -> None:
        if self._watch is not None:
            self._watch.stop()
            self._watch = None


class ChannelSource(Source):
    """Synthetic requests pushed by code rather than by the store.

    Requests sent before the controller starts are buffered and
    delivered on :meth:`start`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._enqueue: Callable[[Request], None] | None = None
        self._pending: list[Request] = []

    def send(self, request: Request) -> None:
        with self._lock:
            if self._enqueue is None:
                self._pending.append(request)
                return
            enqueue = self._enqueue
        enqueue(request)

    def start(self, enqueue: Callable[[Request], None]) -> None:
        with self._lock:
            self._enqueue = enqueue
            pending, self._pending = self._pending, []
        for request in pending:
            enqueue(request)

    def stop(self) -> None:
        with self._lock:
            self._enqueue = None


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class Controller:
    """Runs a :class:`Reconciler` for requests produced by its sources.

    Parameters
    ----------
    name:
        Used for thread names, log context and metric labels.
    reconciler:
        The reconcile handler.
    workers:
        Number of concurrent worker threads.
    need_leader_election:
        Whether the manager must hold leadership before starting this
        controller.
    backoff_base, backoff_max:
        Rate-limited retry delays in seconds.
    metrics:
        Optional collector for reconcile outcome counters.

    """

    def __init__(
        self,
        name: str,
        reconciler: Reconciler,
        *,
        workers: int = 1,
        need_leader_election: bool = True,
        backoff_base: float = 0.5,
        backoff_max: float = 300.0,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.name = name
        self._reconciler = reconciler
        self._workers = max(1, workers)
        self.need_leader_election = need_leader_election
        self._metrics = metrics
        self._sources: list[Source] = []
        self._queue: WorkQueue[Request] = WorkQueue(backoff_base, backoff_max)
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._started = False

    @property
    def queue(self) -> WorkQueue[Request]:
        return self._queue

    @property
    def started(self) -> bool:
        return self._started

    def watch(self, source: Source) -> Controller:
        """Register *source*; must be called before :meth:`start`."""
        if self._started:
            msg = f"controller {self.name} already started"
            raise RuntimeError(msg)
        self._sources.append(source)
        return self

    def start(self) -> None:
        """Start the sources and the worker threads."""
        if self._started:
            return
        self._started = True
        self._stop_event.clear()
        for source in self._sources:
            source.start(self._queue.add)
        for index in range(self._workers):
            thread = threading.Thread(
                target=self._run,
                name=f"{self.name}-worker-{index}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        log.info("Controller %s started (workers=%d)", self.name, self._workers)

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel in-flight passes, drain the workers and wait for them."""
        self._stop_event.set()
        for source in self._sources:
            source.stop()
        self._queue.shutdown()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads.clear()
        if self._started:
            log.info("Controller %s stopped", self.name)

    def _run(self) -> None:
        """Worker loop."""
        while not self._stop_event.is_set():
            request = self._queue.get()
            if request is None:
                return
            try:
                self.process(request)
            finally:
                self._queue.done(request)

    def process(self, request: Request) -> None:
        """Run one reconcile pass for *request* and schedule its follow-up."""
        ctx = Context(self._stop_event)
        with reconcile_scope(self.name, request):
            try:
                result = self._reconciler.reconcile(ctx, request) or Result()
            except CancelledError:
                log.debug("Reconcile of %s cancelled", request)
                return
            except Exception as exc:
                self._count("error")
                if not getattr(exc, "retryable", True):
                    log.error(  # noqa: TRY400
                        "Reconcile of %s failed permanently: %s",
                        request,
                        exc,
                    )
                    self._queue.forget(request)
                    return
                delay = self._queue.when(request)
                log.exception(
                    "Reconcile of %s failed (attempt %d, retry in %.1fs)",
                    request,
                    self._queue.num_requeues(request),
                    delay,
                )
                self._queue.add_after(request, delay)
                return

        if result.requeue_after > 0:
            self._count("requeue_after")
            self._queue.forget(request)
            self._queue.add_after(request, result.requeue_after)
        elif result.requeue:
            self._count("requeue")
            self._queue.add_rate_limited(request)
        else:
            self._count("success")
            self._queue.forget(request)

    def _count(self, outcome: str) -> None:
        if self._metrics:
            self._metrics.increment(
                "dynauth_reconcile_total",
                labels={"controller": self.name, "result": outcome},
            )
