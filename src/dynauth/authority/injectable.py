"""Injectable kinds: resources that receive the CA trust bundle.

A consumer opts in by labelling itself with the namespace and name of
the CA secret it trusts.  Each kind knows how to recognise such a
resource, list its candidates and build the apply patch that sets its
``caBundle`` field(s).  The injection engine only talks to the
:class:`Injectable` protocol.
"""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from dynauth.authority.constants import (
    INJECT_FROM_SECRET_NAME_LABEL,
    INJECT_FROM_SECRET_NAMESPACE_LABEL,
)
from dynauth.store.base import NamespacedName, labels_of, metadata_of

if TYPE_CHECKING:
    from dynauth.store.base import ResourceStore


@runtime_checkable
class Injectable(Protocol):
    """Capability interface of an injectable kind."""

    kind: str
    api_version: str

    def matches(self, obj: dict[str, Any], ref: NamespacedName) -> bool:
        """True if *obj* asks for the bundle of the CA secret *ref*."""
        ...

    def list(self, store: ResourceStore, ref: NamespacedName) -> list[dict[str, Any]]:
        """Return every resource of this kind that references *ref*."""
        ...

    def inject_bundle(self, obj: dict[str, Any], bundle: bytes) -> dict[str, Any]:
        """Return the apply patch setting *bundle* on *obj*."""
        ...


# ---------------------------------------------------------------------------
# Reference helpers
# ---------------------------------------------------------------------------


def reference_labels(ref: NamespacedName) -> dict[str, str]:
    """Label selector for resources that reference the CA secret *ref*."""
    return {
        INJECT_FROM_SECRET_NAMESPACE_LABEL: ref.namespace,
        INJECT_FROM_SECRET_NAME_LABEL: ref.name,
    }


def reference_of(obj: dict[str, Any]) -> NamespacedName | None:
    """Return the CA secret *obj* references, or None without both labels."""
    labels = labels_of(obj)
    namespace = labels.get(INJECT_FROM_SECRET_NAMESPACE_LABEL)
    name = labels.get(INJECT_FROM_SECRET_NAME_LABEL)
    if not namespace or not name:
        return None
    return NamespacedName(namespace, name)


def encode_bundle(bundle: bytes) -> str:
    return base64.b64encode(bundle).decode("ascii")


def _patch_base(kind: str, api_version: str, obj: dict[str, Any]) -> dict[str, Any]:
    meta = metadata_of(obj)
    patch_meta = {"name": meta["name"]}
    if meta.get("namespace"):
        patch_meta["namespace"] = meta["namespace"]
    return {"apiVersion": api_version, "kind": kind, "metadata": patch_meta}


def _webhook_patch(kind: str, api_version: str, obj: dict[str, Any], bundle: bytes) -> dict:
    patch = _patch_base(kind, api_version, obj)
    webhooks = [
        {"name": webhook["name"], "clientConfig": {"caBundle": encode_bundle(bundle)}}
        for webhook in obj.get("webhooks") or []
        if webhook.get("name")
    ]
    if webhooks:
        patch["webhooks"] = webhooks
    return patch


# ---------------------------------------------------------------------------
# Built-in kinds
# ---------------------------------------------------------------------------


class ValidatingWebhookInjectable:
    """Every ``webhooks[*].clientConfig.caBundle`` of a validating webhook configuration."""

    kind = "ValidatingWebhookConfiguration"
    api_version = "admissionregistration.k8s.io/v1"

    def matches(self, obj: dict[str, Any], ref: NamespacedName) -> bool:
        return obj.get("kind") == self.kind and reference_of(obj) == ref

    def list(self, store: ResourceStore, ref: NamespacedName) -> list[dict[str, Any]]:
        return store.list(self.kind, labels=reference_labels(ref))

    def inject_bundle(self, obj: dict[str, Any], bundle: bytes) -> dict[str, Any]:
        return _webhook_patch(self.kind, self.api_version, obj, bundle)


class MutatingWebhookInjectable:
    """Every ``webhooks[*].clientConfig.caBundle`` of a mutating webhook configuration."""

    kind = "MutatingWebhookConfiguration"
    api_version = "admissionregistration.k8s.io/v1"

    def matches(self, obj: dict[str, Any], ref: NamespacedName) -> bool:
        return obj.get("kind") == self.kind and reference_of(obj) == ref

    def list(self, store: ResourceStore, ref: NamespacedName) -> list[dict[str, Any]]:
        return store.list(self.kind, labels=reference_labels(ref))

    def inject_bundle(self, obj: dict[str, Any], bundle: bytes) -> dict[str, Any]:
        return _webhook_patch(self.kind, self.api_version, obj, bundle)


class APIServiceInjectable:
    """``spec.caBundle`` of an aggregated API service."""

    kind = "APIService"
    api_version = "apiregistration.k8s.io/v1"

    def matches(self, obj: dict[str, Any], ref: NamespacedName) -> bool:
        return obj.get("kind") == self.kind and reference_of(obj) == ref

    def list(self, store: ResourceStore, ref: NamespacedName) -> list[dict[str, Any]]:
        return store.list(self.kind, labels=reference_labels(ref))

    def inject_bundle(self, obj: dict[str, Any], bundle: bytes) -> dict[str, Any]:
        patch = _patch_base(self.kind, self.api_version, obj)
        patch["spec"] = {"caBundle": encode_bundle(bundle)}
        return patch


class CRDConversionInjectable:
    """Conversion webhook ``caBundle`` of a custom resource definition.

    Only definitions whose conversion strategy is ``Webhook`` match.
    """

    kind = "CustomResourceDefinition"
    api_version = "apiextensions.k8s.io/v1"

    def matches(self, obj: dict[str, Any], ref: NamespacedName) -> bool:
        if obj.get("kind") != self.kind or reference_of(obj) != ref:
            return False
        conversion = (obj.get("spec") or {}).get("conversion") or {}
        return conversion.get("strategy") == "Webhook"

    def list(self, store: ResourceStore, ref: NamespacedName) -> list[dict[str, Any]]:
        return [
            obj
            for obj in store.list(self.kind, labels=reference_labels(ref))
            if self.matches(obj, ref)
        ]

    def inject_bundle(self, obj: dict[str, Any], bundle: bytes) -> dict[str, Any]:
        patch = _patch_base(self.kind, self.api_version, obj)
        patch["spec"] = {
            "conversion": {
                "webhook": {"clientConfig": {"caBundle": encode_bundle(bundle)}},
            },
        }
        return patch
