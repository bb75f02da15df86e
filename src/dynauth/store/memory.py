"""In-memory resource store.

An indexed cache keyed by ``(kind, namespace, name)`` with filtered
notification fan-out and per-field ownership for :meth:`apply`.  It
implements the full :class:`ResourceStore` contract and backs the
operator when no cluster is attached, as well as the test suite.

Handlers run synchronously on the writing thread while the store lock
is held, so every subscriber observes changes in commit order.
Handlers must therefore be cheap (typically: enqueue a request) and may
read from the store, but must not write to it.
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from dynauth.store.base import (
    AlreadyExistsError,
    ApplyRejectedError,
    ConflictError,
    EventType,
    NotFoundError,
    ResourceStore,
    Watch,
    WatchEvent,
    key_of,
    matches_labels,
)
from dynauth.store.fields import (
    MERGE_KEY,
    ListItem,
    delete_path,
    field_paths,
    format_path,
    get_path,
    set_path,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from dynauth.store.fields import FieldPath

log = logging.getLogger(__name__)

_Key = tuple[str, str, str]


class _Subscription(Watch):
    def __init__(
        self,
        store: InMemoryResourceStore,
        kind: str,
        handler: Callable[[WatchEvent], None],
        namespace: str | None,
        labels: Mapping[str, str] | None,
        predicate: Callable[[dict[str, Any]], bool] | None,
    ) -> None:
        self._store = store
        self.kind = kind
        self.handler = handler
        self.namespace = namespace
        self.labels = dict(labels or {})
        self.predicate = predicate
        self.active = True

    def matches(self, obj: dict[str, Any] | None) -> bool:
        if obj is None:
            return False
        if self.namespace is not None and key_of(obj).namespace != self.namespace:
            return False
        if not matches_labels(obj, self.labels):
            return False
        return self.predicate is None or bool(self.predicate(obj))

    def stop(self) -> None:
        self._store._unsubscribe(self)  # noqa: SLF001


class InMemoryResourceStore(ResourceStore):
    """Thread-safe in-process implementation of :class:`ResourceStore`."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._objects: dict[_Key, dict[str, Any]] = {}
        self._managed: dict[_Key, dict[str, set[FieldPath]]] = {}
        self._subscriptions: list[_Subscription] = []
        self._versions = itertools.count(1)

    # -- reads --------------------------------------------------------------

    def get(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        with self._lock:
            obj = self._objects.get((kind, namespace or "", name))
            if obj is None:
                msg = f"{kind} {_display(namespace, name)} not found"
                raise NotFoundError(msg)
            return copy.deepcopy(obj)

    def list(
        self,
        kind: str,
        *,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(obj)
                for (k, ns, _), obj in sorted(self._objects.items())
                if k == kind
                and (namespace is None or ns == namespace)
                and matches_labels(obj, labels)
            ]

    def managed_fields(self, kind: str, namespace: str, name: str) -> dict[str, set[str]]:
        """Return ``{manager: {rendered path, ...}}`` for a resource."""
        with self._lock:
            managed = self._managed.get((kind, namespace or "", name), {})
            return {m: {format_path(p) for p in paths} for m, paths in managed.items()}

    # -- writes -------------------------------------------------------------

    def create(self, obj: Mapping[str, Any], *, field_manager: str = "") -> dict[str, Any]:
        key = self._key(obj)
        with self._lock:
            if key in self._objects:
                msg = f"{key[0]} {_display(key[1], key[2])} already exists"
                raise AlreadyExistsError(msg)
            stored = copy.deepcopy(dict(obj))
            self._stamp(stored, created=True)
            self._objects[key] = stored
            self._managed[key] = {field_manager or "unknown": field_paths(stored)}
            self._notify(None, stored)
            return copy.deepcopy(stored)

    def update(self, obj: Mapping[str, Any], *, field_manager: str = "") -> dict[str, Any]:
        key = self._key(obj)
        with self._lock:
            live = self._objects.get(key)
            if live is None:
                msg = f"{key[0]} {_display(key[1], key[2])} not found"
                raise NotFoundError(msg)
            expected = (obj.get("metadata") or {}).get("resourceVersion")
            current = live["metadata"]["resourceVersion"]
            if expected and expected != current:
                msg = (
                    f"{key[0]} {_display(key[1], key[2])} was modified "
                    f"(resourceVersion {expected} != {current})"
                )
                raise ConflictError(msg)

            stored = copy.deepcopy(dict(obj))
            _carry_server_metadata(live, stored)
            if _content(stored) == _content(live):
                return copy.deepcopy(live)

            self._record_update(key, live, stored, field_manager or "unknown")
            self._stamp(stored)
            self._objects[key] = stored
            self._notify(live, stored)
            return copy.deepcopy(stored)

    def delete(self, kind: str, namespace: str, name: str) -> None:
        key = (kind, namespace or "", name)
        with self._lock:
            live = self._objects.pop(key, None)
            if live is None:
                msg = f"{kind} {_display(namespace, name)} not found"
                raise NotFoundError(msg)
            self._managed.pop(key, None)
            self._notify(live, None)

    def apply(
        self,
        patch: Mapping[str, Any],
        *,
        field_manager: str,
        force: bool = False,
    ) -> dict[str, Any]:
        if not field_manager:
            msg = "apply requires a field manager"
            raise ApplyRejectedError(msg, retryable=False)
        key = self._key(patch, error=ApplyRejectedError)
        patch = copy.deepcopy(dict(patch))
        paths = field_paths(patch)

        with self._lock:
            live = self._objects.get(key)
            managed = {m: set(p) for m, p in self._managed.get(key, {}).items()}

            conflicts = [
                (other, path)
                for other, owned in managed.items()
                if other != field_manager
                for path in paths & owned
                if live is not None and get_path(live, path) != get_path(patch, path)
            ]
            if conflicts and not force:
                rendered = ", ".join(f"{format_path(p)} (owned by {m})" for m, p in conflicts)
                msg = f"apply conflict on {key[0]} {_display(key[1], key[2])}: {rendered}"
                raise ConflictError(msg)
            for other, path in conflicts:
                managed[other].discard(path)

            result = copy.deepcopy(live) if live is not None else _skeleton(patch)
            try:
                for path in sorted(paths, key=_path_sort_key):
                    set_path(result, path, get_path(patch, path))
                others = set().union(*(o for m, o in managed.items() if m != field_manager))
                for path in managed.get(field_manager, set()) - paths:
                    if _still_owned(path, others):
                        continue
                    delete_path(result, path)
            except TypeError as exc:
                msg = f"apply rejected for {key[0]} {_display(key[1], key[2])}: {exc}"
                raise ApplyRejectedError(msg) from exc

            managed[field_manager] = paths
            self._managed[key] = {m: p for m, p in managed.items() if p}

            if live is not None and _content(result) == _content(live):
                return copy.deepcopy(live)

            self._stamp(result, created=live is None)
            self._objects[key] = result
            self._notify(live, result)
            log.debug(
                "Applied %s %s as %s (force=%s)",
                key[0],
                _display(key[1], key[2]),
                field_manager,
                force,
            )
            return copy.deepcopy(result)

    # -- watch --------------------------------------------------------------

    def watch(
        self,
        kind: str,
        handler: Callable[[WatchEvent], None],
        *,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
        predicate: Callable[[dict[str, Any]], bool] | None = None,
    ) -> Watch:
        sub = _Subscription(self, kind, handler, namespace, labels, predicate)
        with self._lock:
            self._subscriptions.append(sub)
            for (k, _, _), obj in sorted(self._objects.items()):
                if k == kind and sub.matches(obj):
                    self._deliver(sub, EventType.ADDED, obj)
        return sub

    def _unsubscribe(self, sub: _Subscription) -> None:
        with self._lock:
            sub.active = False
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    # -- internals ----------------------------------------------------------

    @staticmethod
    def _key(
        obj: Mapping[str, Any],
        error: type[ApplyRejectedError] | None = None,
    ) -> _Key:
        meta = obj.get("metadata") or {}
        kind = obj.get("kind")
        name = meta.get("name")
        if not kind or not name or not obj.get("apiVersion"):
            msg = "resource requires apiVersion, kind and metadata.name"
            if error is not None:
                raise error(msg, retryable=False)
            raise ValueError(msg)
        return (kind, meta.get("namespace") or "", name)

    def _stamp(self, obj: dict[str, Any], *, created: bool = False) -> None:
        meta = obj.setdefault("metadata", {})
        meta["resourceVersion"] = str(next(self._versions))
        if created:
            meta["uid"] = str(uuid.uuid4())
            meta["creationTimestamp"] = datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")

    def _record_update(
        self,
        key: _Key,
        live: dict[str, Any],
        stored: dict[str, Any],
        manager: str,
    ) -> None:
        old_paths = field_paths(live)
        new_paths = field_paths(stored)
        changed = {
            p for p in new_paths if p not in old_paths or get_path(live, p) != get_path(stored, p)
        }
        managed = self._managed.setdefault(key, {})
        for owner in list(managed):
            managed[owner] = (managed[owner] & new_paths) - (changed if owner != manager else set())
        managed[manager] = managed.get(manager, set()) | changed
        self._managed[key] = {m: p for m, p in managed.items() if p}

    def _notify(self, old: dict[str, Any] | None, new: dict[str, Any] | None) -> None:
        kind = (new or old or {}).get("kind")
        for sub in list(self._subscriptions):
            if sub.kind != kind:
                continue
            was, now = sub.matches(old), sub.matches(new)
            if now:
                self._deliver(sub, EventType.MODIFIED if was else EventType.ADDED, new)
            elif was:
                self._deliver(sub, EventType.DELETED, new if new is not None else old)

    @staticmethod
    def _deliver(sub: _Subscription, event_type: EventType, obj: dict[str, Any]) -> None:
        if not sub.active:
            return
        try:
            sub.handler(WatchEvent(type=event_type, object=copy.deepcopy(obj)))
        except Exception:
            log.exception("Watch handler for %s raised on %s event", sub.kind, event_type)


def _display(namespace: str | None, name: str) -> str:
    return f"{namespace}/{name}" if namespace else name


def _skeleton(patch: dict[str, Any]) -> dict[str, Any]:
    meta = patch.get("metadata") or {}
    skeleton_meta = {"name": meta["name"]}
    if meta.get("namespace"):
        skeleton_meta["namespace"] = meta["namespace"]
    return {"apiVersion": patch["apiVersion"], "kind": patch["kind"], "metadata": skeleton_meta}


def _content(obj: dict[str, Any]) -> dict[str, Any]:
    meta = {k: v for k, v in (obj.get("metadata") or {}).items() if k != "resourceVersion"}
    return {**obj, "metadata": meta}


def _carry_server_metadata(live: dict[str, Any], stored: dict[str, Any]) -> None:
    meta = stored.setdefault("metadata", {})
    for field in ("uid", "creationTimestamp", "resourceVersion"):
        if field in live["metadata"]:
            meta[field] = live["metadata"][field]


def _still_owned(path: FieldPath, others: set[FieldPath]) -> bool:
    if path in others:
        return True
    # An associative-list entry survives while anyone owns a field inside it.
    if len(path) >= 2 and path[-1] == MERGE_KEY and isinstance(path[-2], ListItem):  # noqa: PLR2004
        prefix = path[:-1]
        return any(p[: len(prefix)] == prefix for p in others)
    return False


def _path_sort_key(path: FieldPath) -> tuple:
    # Item keys first so entries exist before their fields are set.
    return tuple((1, str(e)) if isinstance(e, ListItem) else (0, e) for e in path)
