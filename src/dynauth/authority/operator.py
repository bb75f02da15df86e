"""Wiring of the dynamic authority controllers.

:class:`ServingCertificateOperator` registers with a
:class:`~dynauth.controller.manager.Manager`:

* the CA controller (leader elected), bootstrapped with one synthetic
  request so a hot start validates existing material;
* the serving certificate controller, which runs on every replica;
* one injection controller per configured injectable kind.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from dynauth.authority.ca import CAAuthority, CAOptions, CASecretReconciler
from dynauth.authority.constants import SECRET_KIND
from dynauth.authority.injectable import reference_labels
from dynauth.authority.injection import InjectableReconciler
from dynauth.authority.registry import load_injectables
from dynauth.authority.serving import (
    CertificateHolder,
    ServingCertificateReconciler,
    server_ssl_context,
)
from dynauth.controller.controller import ChannelSource, Controller, KindSource
from dynauth.controller.manager import Manager
from dynauth.store.base import key_of

if TYPE_CHECKING:
    import ssl
    from collections.abc import Callable
    from datetime import datetime

    from dynauth.authority.injectable import Injectable
    from dynauth.config.settings import AuthoritySettings, ControllerSettings
    from dynauth.metrics.collector import MetricsCollector
    from dynauth.store.base import ResourceStore

log = logging.getLogger(__name__)


class ServingCertificateOperator:
    """Builds, starts and stops the dynamic authority controllers.

    Parameters
    ----------
    store:
        Resource store shared by every controller.
    authority:
        The ``authority`` settings section.
    controller:
        The ``controller`` settings section.
    manager:
        Manager to register with; a new one is created when omitted.
    injectables:
        Kinds to inject; loaded from ``authority.injectables`` when
        omitted.
    metrics:
        Optional collector shared by every component.
    clock:
        Current-time source for the CA engine; injectable for tests.

    """

    def __init__(
        self,
        store: ResourceStore,
        authority: AuthoritySettings,
        controller: ControllerSettings,
        *,
        manager: Manager | None = None,
        injectables: list[Injectable] | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._settings = authority
        self._controller_settings = controller
        self._metrics = metrics
        self.manager = manager or Manager()
        self.options = CAOptions.from_settings(authority)
        self._holder = CertificateHolder()
        self._authority = CAAuthority(store, self.options, metrics=metrics, clock=clock)
        self._bootstrap = ChannelSource()
        if injectables is None:
            injectables = load_injectables(authority.injectables)
        self._injectables = injectables

        self.manager.add(self._ca_controller())
        self.manager.add(self._serving_controller())
        for injectable in self._injectables:
            self.manager.add(self._injection_controller(injectable))

    # -- controllers --------------------------------------------------------

    def _new_controller(self, name: str, reconciler: Any, *, leader: bool = True) -> Controller:
        cs = self._controller_settings
        return Controller(
            name,
            reconciler,
            workers=cs.workers,
            need_leader_election=leader,
            backoff_base=cs.backoff_base_seconds,
            backoff_max=cs.backoff_max_seconds,
            metrics=self._metrics,
        )

    def _secret_source(self, **kwargs: Any) -> KindSource:
        ref = self.options.ref
        return KindSource(
            self._store,
            SECRET_KIND,
            namespace=ref.namespace,
            predicate=lambda obj: key_of(obj) == ref,
            **kwargs,
        )

    def _ca_controller(self) -> Controller:
        controller = self._new_controller("dynamic-ca", CASecretReconciler(self._authority))
        controller.watch(self._secret_source())
        controller.watch(self._bootstrap)
        self._bootstrap.send(self.options.ref)
        return controller

    def _serving_controller(self) -> Controller:
        reconciler = ServingCertificateReconciler(
            self._store,
            self.options.ref,
            self._holder,
            metrics=self._metrics,
        )
        controller = self._new_controller("dynamic-serving-certificate", reconciler, leader=False)
        controller.watch(self._secret_source())
        return controller

    def _injection_controller(self, injectable: Injectable) -> Controller:
        ref = self.options.ref
        reconciler = InjectableReconciler(
            self._store,
            injectable,
            ref,
            field_owner=self.options.field_owner,
            not_found_requeue=self._settings.not_found_requeue_seconds,
            metrics=self._metrics,
        )
        controller = self._new_controller(f"inject-ca-{injectable.kind.lower()}", reconciler)
        controller.watch(
            KindSource(
                self._store,
                injectable.kind,
                labels=reference_labels(ref),
                predicate=lambda obj: injectable.matches(obj, ref),
            ),
        )
        controller.watch(self._secret_source(mapper=reconciler.requests_for_secret))
        return controller

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        log.info(
            "Starting dynamic authority for secret %s (%d injectable kinds)",
            self.options.ref,
            len(self._injectables),
        )
        self.manager.start()

    def stop(self) -> None:
        self.manager.stop()
        log.info("Dynamic authority stopped")

    # -- accessors ----------------------------------------------------------

    def serving_certificate(self) -> CertificateHolder:
        return self._holder

    def server_ssl_context(self) -> ssl.SSLContext:
        """Server context that always presents the current serving certificate."""
        return server_ssl_context(self._holder)

    def status(self) -> dict[str, Any]:
        """Summary used by the health endpoint."""
        result: dict[str, Any] = {
            "ca_secret": str(self.options.ref),
            "leader": self.manager.elected.is_set(),
            "serving_certificate": None,
            "injectables": [i.kind for i in self._injectables],
        }
        if self._holder.available:
            current = self._holder.get()
            result["serving_certificate"] = {
                "serial": format(current.certificate.serial_number, "x"),
                "not_after": current.certificate.not_valid_after_utc.isoformat(),
                "fingerprint": current.fingerprint,
            }
        return result
