"""Resource store contract consumed by the authority core.

Resources are plain Kubernetes-style documents (``dict``) with
``apiVersion``, ``kind`` and ``metadata`` (``name``, optional
``namespace``, ``labels``, ``annotations``).  A store offers
read/list, whole-object writes, field-owned *apply* and filtered
change notifications.

All store errors derive from :class:`StoreError`, which carries a
``retryable`` flag so the reconciliation driver can decide between
backoff and giving up.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """Raised by resource stores on failed reads or writes.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether the failure is transient and the operation may be retried.

    """

    def __init__(self, detail: str, *, retryable: bool = True) -> None:
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


class NotFoundError(StoreError):
    """The addressed resource does not exist."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail, retryable=False)


class AlreadyExistsError(StoreError):
    """A create targeted an identity that is already taken."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail, retryable=False)


class ConflictError(StoreError):
    """Concurrent-writer contention (stale version or foreign field owner)."""


class ApplyRejectedError(StoreError):
    """An apply patch was malformed or could not be merged."""


# ---------------------------------------------------------------------------
# Identity helpers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, order=True)
class NamespacedName:
    """Namespace/name pair identifying a resource of a known kind.

    Cluster-scoped resources use an empty namespace.
    """

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


def metadata_of(obj: Mapping[str, Any]) -> dict[str, Any]:
    """Return the ``metadata`` mapping of *obj* (empty if absent)."""
    return obj.get("metadata") or {}


def key_of(obj: Mapping[str, Any]) -> NamespacedName:
    """Return the :class:`NamespacedName` of *obj*."""
    meta = metadata_of(obj)
    return NamespacedName(meta.get("namespace") or "", meta.get("name") or "")


def labels_of(obj: Mapping[str, Any]) -> dict[str, str]:
    return metadata_of(obj).get("labels") or {}


def annotations_of(obj: Mapping[str, Any]) -> dict[str, str]:
    return metadata_of(obj).get("annotations") or {}


def matches_labels(obj: Mapping[str, Any], selector: Mapping[str, str] | None) -> bool:
    """True when every ``key: value`` of *selector* is present on *obj*."""
    if not selector:
        return True
    labels = labels_of(obj)
    return all(labels.get(k) == v for k, v in selector.items())


# ---------------------------------------------------------------------------
# Watch events
# ---------------------------------------------------------------------------


class EventType(StrEnum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    GENERIC = "GENERIC"


@dataclass(frozen=True)
class WatchEvent:
    """A change notification delivered to watch handlers."""

    type: EventType
    object: dict[str, Any]


class Watch(abc.ABC):
    """Handle for an active subscription."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop delivering events to the handler."""


# ---------------------------------------------------------------------------
# Store contract
# ---------------------------------------------------------------------------


class ResourceStore(abc.ABC):
    """Abstract resource store.

    Returned documents are copies; mutating them never changes the
    store.
    """

    @abc.abstractmethod
    def get(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        """Return the resource or raise :class:`NotFoundError`."""

    @abc.abstractmethod
    def list(
        self,
        kind: str,
        *,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """Return all resources of *kind* matching the namespace/label scope.

        ``namespace=None`` lists across all namespaces.
        """

    @abc.abstractmethod
    def create(self, obj: Mapping[str, Any], *, field_manager: str = "") -> dict[str, Any]:
        """Create *obj*; raise :class:`AlreadyExistsError` if taken."""

    @abc.abstractmethod
    def update(self, obj: Mapping[str, Any], *, field_manager: str = "") -> dict[str, Any]:
        """Replace an existing resource.

        When ``metadata.resourceVersion`` is set it must match the stored
        version, otherwise :class:`ConflictError` is raised.
        """

    @abc.abstractmethod
    def delete(self, kind: str, namespace: str, name: str) -> None:
        """Delete the resource or raise :class:`NotFoundError`."""

    @abc.abstractmethod
    def apply(
        self,
        patch: Mapping[str, Any],
        *,
        field_manager: str,
        force: bool = False,
    ) -> dict[str, Any]:
        """Merge *patch* as the field set owned by *field_manager*.

        Creates the resource when absent.  Fields owned by another
        manager with a different value raise :class:`ConflictError`
        unless *force* is set, in which case ownership of exactly those
        fields moves to *field_manager*.  Fields the manager applied
        before but omits now are removed unless someone else owns them.

        Raises
        ------
        ConflictError
            Another manager owns a field with a different value.
        ApplyRejectedError
            The patch is malformed or cannot be merged.

        """

    @abc.abstractmethod
    def watch(
        self,
        kind: str,
        handler: Callable[[WatchEvent], None],
        *,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
        predicate: Callable[[dict[str, Any]], bool] | None = None,
    ) -> Watch:
        """Subscribe *handler* to changes of *kind* within the given scope.

        Current matching resources are delivered as ``ADDED`` events on
        subscription.  An object that stops matching the scope is
        delivered as ``DELETED``.
        """
