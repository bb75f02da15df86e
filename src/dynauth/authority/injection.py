"""Injection engine: keep every referencing consumer on the current bundle.

Requests name individual consumer resources.  They come from two
watches: the consumers themselves (filtered by the reference labels)
and the CA secret, whose every change fans out to all consumers that
reference it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from dynauth.authority.ca import secret_bytes
from dynauth.authority.constants import CA_BUNDLE_KEY, SECRET_KIND
from dynauth.controller.base import Reconciler, Result
from dynauth.pki import InvalidDataError
from dynauth.store.base import NotFoundError, key_of
from dynauth.store.fields import field_paths, get_path

if TYPE_CHECKING:
    from dynauth.authority.injectable import Injectable
    from dynauth.controller.base import Request
    from dynauth.controller.context import Context
    from dynauth.metrics.collector import MetricsCollector
    from dynauth.store.base import NamespacedName, ResourceStore, WatchEvent

log = logging.getLogger(__name__)


class InjectableReconciler(Reconciler):
    """Applies the CA bundle to one consumer of one injectable kind.

    Parameters
    ----------
    store:
        Resource store holding consumers and the CA secret.
    injectable:
        The kind this reconciler serves.
    ca_ref:
        Identity of the CA secret consumers must reference.
    field_owner:
        Field manager of the forced apply.
    not_found_requeue:
        Seconds to wait before retrying while the CA secret or its
        bundle does not exist yet.
    metrics:
        Optional collector for injection counters.

    """

    def __init__(
        self,
        store: ResourceStore,
        injectable: Injectable,
        ca_ref: NamespacedName,
        *,
        field_owner: str,
        not_found_requeue: float = 5.0,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._store = store
        self._injectable = injectable
        self._ca_ref = ca_ref
        self._field_owner = field_owner
        self._not_found_requeue = not_found_requeue
        self._metrics = metrics

    def requests_for_secret(self, event: WatchEvent) -> list[Request]:
        """Map a CA secret change to every consumer referencing it."""
        if key_of(event.object) != self._ca_ref:
            return []
        return [key_of(obj) for obj in self._injectable.list(self._store, self._ca_ref)]

    def reconcile(self, ctx: Context, request: Request) -> Result:
        kind = self._injectable.kind
        try:
            obj = self._store.get(kind, request.namespace, request.name)
        except NotFoundError:
            log.debug("%s %s no longer exists", kind, request)
            return Result()
        if not self._injectable.matches(obj, self._ca_ref):
            log.debug("%s %s no longer references %s", kind, request, self._ca_ref)
            return Result()

        bundle = self._current_bundle()
        if bundle is None:
            return Result(requeue_after=self._not_found_requeue)

        ctx.check()
        patch = self._injectable.inject_bundle(obj, bundle)
        if _already_applied(obj, patch):
            return Result()

        self._store.apply(patch, field_manager=self._field_owner, force=True)
        if self._metrics:
            self._metrics.increment("dynauth_injections_total", labels={"kind": kind})
        log.info("Injected CA bundle from %s into %s %s", self._ca_ref, kind, request)
        return Result()

    def _current_bundle(self) -> bytes | None:
        ref = self._ca_ref
        try:
            secret: dict[str, Any] = self._store.get(SECRET_KIND, ref.namespace, ref.name)
        except NotFoundError:
            log.info("CA secret %s not found, retrying in %.0fs", ref, self._not_found_requeue)
            return None
        try:
            bundle = secret_bytes(secret, CA_BUNDLE_KEY)
        except InvalidDataError as exc:
            log.info("CA secret %s holds an unusable bundle: %s", ref, exc.detail)
            return None
        if not bundle:
            log.info("CA secret %s has no bundle yet", ref)
        return bundle or None


def _already_applied(obj: dict[str, Any], patch: dict[str, Any]) -> bool:
    return all(get_path(obj, path) == get_path(patch, path) for path in field_paths(patch))
