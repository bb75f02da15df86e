"""Tests for dynauth.controller: Controller, sources and Manager."""

from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest

from dynauth.authority.ca import CAAuthority, CAOptions, CASecretReconciler
from dynauth.controller import (
    CancelledError,
    ChannelSource,
    Context,
    Controller,
    KindSource,
    Manager,
    Reconciler,
    Result,
)
from dynauth.metrics.collector import MetricsCollector
from dynauth.store import NamespacedName, NotFoundError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _RecordingReconciler(Reconciler):
    def __init__(self, results=None) -> None:
        self.calls: list = []
        self._results = list(results or [])
        self.called = threading.Event()
        self._lock = threading.Lock()

    def reconcile(self, ctx, request):
        with self._lock:
            self.calls.append(request)
            outcome = self._results.pop(0) if self._results else Result()
        self.called.set()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _cm(name: str) -> dict:
    return {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": name, "namespace": "ns"}}


REQ = NamespacedName("ns", "obj")

# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class TestContext:
    def test_check_passes_until_cancelled(self):
        ctx = Context.background()
        ctx.check()
        ctx.cancel()
        assert ctx.cancelled
        with pytest.raises(CancelledError):
            ctx.check()

    def test_wait_returns_true_when_cancelled(self):
        event = threading.Event()
        ctx = Context(event)
        assert ctx.wait(0.01) is False
        event.set()
        assert ctx.wait(0.01) is True


# ---------------------------------------------------------------------------
# Controller.process
# ---------------------------------------------------------------------------


class TestProcess:
    def test_success_forgets_backoff(self):
        metrics = MetricsCollector()
        controller = Controller("test", _RecordingReconciler(), metrics=metrics)
        controller.queue.when(REQ)
        controller.process(REQ)
        assert controller.queue.num_requeues(REQ) == 0
        assert metrics.get(
            "dynauth_reconcile_total",
            labels={"controller": "test", "result": "success"},
        ) == 1

    def test_requeue_after(self):
        reconciler = _RecordingReconciler([Result(requeue_after=0.05)])
        controller = Controller("test", reconciler)
        controller.process(REQ)
        assert controller.queue.get(timeout=0) is None
        assert controller.queue.get(timeout=2) == REQ

    def test_requeue_uses_backoff(self):
        reconciler = _RecordingReconciler([Result(requeue=True)])
        controller = Controller("test", reconciler, backoff_base=0.01)
        controller.process(REQ)
        assert controller.queue.num_requeues(REQ) == 1
        assert controller.queue.get(timeout=2) == REQ

    def test_error_retries_with_backoff(self):
        metrics = MetricsCollector()
        reconciler = _RecordingReconciler([RuntimeError("boom")])
        controller = Controller("test", reconciler, backoff_base=0.01, metrics=metrics)
        controller.process(REQ)
        assert controller.queue.num_requeues(REQ) == 1
        assert controller.queue.get(timeout=2) == REQ
        assert metrics.get(
            "dynauth_reconcile_total",
            labels={"controller": "test", "result": "error"},
        ) == 1

    def test_non_retryable_error_is_dropped(self):
        reconciler = _RecordingReconciler([NotFoundError("gone")])
        controller = Controller("test", reconciler, backoff_base=0.01)
        controller.process(REQ)
        assert controller.queue.num_requeues(REQ) == 0
        assert controller.queue.get(timeout=0.1) is None

    def test_unsupported_curve_is_not_retried(self, store, caplog):
        options = CAOptions(
            "ns",
            "ca",
            duration=timedelta(hours=3),
            renew_before=timedelta(hours=1),
            key_curve=123,
        )
        controller = Controller(
            "dynamic-ca",
            CASecretReconciler(CAAuthority(store, options)),
            backoff_base=0.01,
        )
        controller.process(options.ref)
        assert controller.queue.num_requeues(options.ref) == 0
        assert controller.queue.get(timeout=0.1) is None
        assert "failed permanently" in caplog.text
        assert store.list("Secret") == []

    def test_cancelled_is_not_retried(self):
        reconciler = _RecordingReconciler([CancelledError("stop")])
        controller = Controller("test", reconciler, backoff_base=0.01)
        controller.process(REQ)
        assert controller.queue.get(timeout=0.1) is None

    def test_none_result_counts_as_success(self):
        class _NoneReconciler(Reconciler):
            def reconcile(self, ctx, request):
                return None

        controller = Controller("test", _NoneReconciler())
        controller.process(REQ)
        assert controller.queue.get(timeout=0) is None


# ---------------------------------------------------------------------------
# Sources and workers
# ---------------------------------------------------------------------------


class TestRunning:
    def test_kind_source_feeds_workers(self, store):
        reconciler = _RecordingReconciler()
        controller = Controller("cm", reconciler, workers=2)
        controller.watch(KindSource(store, "ConfigMap"))
        store.create(_cm("existing"))
        controller.start()
        try:
            store.create(_cm("new"))
            assert _wait_for(lambda: len(reconciler.calls) >= 2)
        finally:
            controller.stop()
        assert set(reconciler.calls) == {NamespacedName("ns", "existing"), NamespacedName("ns", "new")}

    def test_kind_source_mapper(self, store):
        reconciler = _RecordingReconciler()
        target = NamespacedName("other", "target")
        controller = Controller("mapped", reconciler)
        controller.watch(KindSource(store, "ConfigMap", mapper=lambda event: [target]))
        controller.start()
        try:
            store.create(_cm("trigger"))
            assert reconciler.called.wait(5)
        finally:
            controller.stop()
        assert reconciler.calls == [target]

    def test_channel_source_buffers_until_start(self):
        reconciler = _RecordingReconciler()
        source = ChannelSource()
        source.send(REQ)
        controller = Controller("chan", reconciler).watch(source)
        controller.start()
        try:
            assert reconciler.called.wait(5)
        finally:
            controller.stop()
        assert reconciler.calls == [REQ]

    def test_watch_after_start_rejected(self):
        controller = Controller("late", _RecordingReconciler())
        controller.start()
        try:
            with pytest.raises(RuntimeError, match="already started"):
                controller.watch(ChannelSource())
        finally:
            controller.stop()

    def test_stop_terminates_workers(self):
        controller = Controller("stopper", _RecordingReconciler(), workers=3)
        controller.start()
        controller.stop(timeout=2)
        assert not any(
            t.name.startswith("stopper-worker-") and t.is_alive() for t in threading.enumerate()
        )

    def test_stop_cancels_long_pass(self):
        started = threading.Event()
        outcome: list = []

        class _Slow(Reconciler):
            def reconcile(self, ctx, request):
                started.set()
                cancelled = ctx.wait(10)
                outcome.append(cancelled)
                ctx.check()
                return Result()

        source = ChannelSource()
        controller = Controller("slow", _Slow()).watch(source)
        controller.start()
        source.send(REQ)
        assert started.wait(5)
        controller.stop(timeout=5)
        assert outcome == [True]


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class TestManager:
    def test_leader_controllers_wait_for_election(self):
        manager = Manager(elect_on_start=False)
        everywhere = Controller("everywhere", _RecordingReconciler(), need_leader_election=False)
        leader_only = Controller("leader", _RecordingReconciler())
        manager.add(everywhere)
        manager.add(leader_only)

        manager.start()
        try:
            assert everywhere.started
            time.sleep(0.1)
            assert not leader_only.started
            manager.grant_leadership()
            assert _wait_for(lambda: leader_only.started)
        finally:
            manager.stop()
        assert not manager.running

    def test_elect_on_start(self):
        manager = Manager()
        leader_only = Controller("leader", _RecordingReconciler())
        manager.add(leader_only)
        manager.start()
        try:
            assert manager.elected.is_set()
            assert _wait_for(lambda: leader_only.started)
        finally:
            manager.stop()

    def test_add_while_running_rejected(self):
        manager = Manager()
        manager.start()
        try:
            with pytest.raises(RuntimeError, match="running manager"):
                manager.add(Controller("late", _RecordingReconciler()))
        finally:
            manager.stop()

    def test_stop_before_election_never_starts_leader_controllers(self):
        manager = Manager(elect_on_start=False)
        leader_only = Controller("leader", _RecordingReconciler())
        manager.add(leader_only)
        manager.start()
        manager.stop()
        assert not leader_only.started
        assert manager.controllers == (leader_only,)
