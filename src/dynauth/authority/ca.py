"""CA authority engine.

One pass over the CA secret runs *load → validate → generate (if
needed) → rebuild bundle → persist*.  Every decision is re-derived from
the secret as currently stored, so a pass interrupted after generation
simply regenerates on the next one.  A pass over valid material whose
bundle is already consistent writes nothing.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from cryptography import x509

from dynauth.authority.bundle import reconcile_bundle
from dynauth.authority.constants import (
    CA_BUNDLE_KEY,
    DEFAULT_CA_DURATION,
    DEFAULT_COMMON_NAME,
    DEFAULT_FIELD_OWNER,
    INJECT_DYNAMIC_CA_LABEL,
    ISSUED_AT_ANNOTATION,
    RENEW_HANDLED_AT_ANNOTATION,
    SECRET_API_VERSION,
    SECRET_KIND,
    SECRET_TYPE_TLS,
    SERIAL_NUMBER_BITS,
    TLS_CERT_KEY,
    TLS_PRIVATE_KEY_KEY,
)
from dynauth.authority.renewal import issuance_annotations, renewal_pending
from dynauth.controller.base import Reconciler, Result
from dynauth.logging.sanitize import sanitize_for_logs
from dynauth.pki import (
    EC_CURVE_384,
    InvalidDataError,
    PKIError,
    decode_certificate,
    decode_certificate_set,
    decode_private_key,
    encode_certificate,
    encode_private_key,
    generate_ec_private_key,
    public_keys_equal,
    self_signed_ca,
)
from dynauth.store.base import NamespacedName, NotFoundError, annotations_of, labels_of

if TYPE_CHECKING:
    from collections.abc import Callable

    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from dynauth.config.settings import AuthoritySettings
    from dynauth.controller.base import Request
    from dynauth.controller.context import Context
    from dynauth.metrics.collector import MetricsCollector
    from dynauth.store.base import ResourceStore

log = logging.getLogger(__name__)

_MIN_RECHECK_SECONDS = 1.0


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CAOptions:
    """Where the CA lives and how it is generated."""

    namespace: str
    secret_name: str
    duration: timedelta = DEFAULT_CA_DURATION
    renew_before: timedelta | None = None
    key_curve: int = EC_CURVE_384
    common_name: str = DEFAULT_COMMON_NAME
    field_owner: str = DEFAULT_FIELD_OWNER

    @classmethod
    def from_settings(cls, settings: AuthoritySettings) -> CAOptions:
        return cls(
            namespace=settings.namespace,
            secret_name=settings.ca_secret,
            duration=settings.ca_duration,
            renew_before=settings.renew_before,
            key_curve=settings.key_curve,
            common_name=settings.common_name,
            field_owner=settings.field_owner,
        )

    @property
    def ref(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.secret_name)

    def renew_at(self, cert: x509.Certificate) -> datetime:
        """Point in time from which *cert* is rotated proactively."""
        not_before = cert.not_valid_before_utc
        not_after = cert.not_valid_after_utc
        window = self.renew_before
        if window is None:
            window = (not_after - not_before) / 3
        return not_after - window


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


def generate_ca(
    options: CAOptions,
    *,
    now: datetime | None = None,
) -> tuple[x509.Certificate, PrivateKeyTypes]:
    """Create a fresh key pair and a self-signed CA certificate for it.

    The certificate is valid from *now* for ``options.duration`` and
    carries a random, non-zero 128-bit serial number.
    """
    now = now or datetime.now(UTC)
    key = generate_ec_private_key(options.key_curve)
    cert = self_signed_ca(
        key,
        common_name=options.common_name,
        not_before=now,
        not_after=now + options.duration,
        serial_number=secrets.randbelow(2**SERIAL_NUMBER_BITS - 1) + 1,
    )
    return cert, key


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CAInspection:
    """Verdict on the CA material currently stored in the secret.

    ``reason`` is None when the material can be kept as is.
    """

    certificate: x509.Certificate | None = None
    private_key: PrivateKeyTypes | None = None
    reason: str | None = None

    @property
    def needs_generate(self) -> bool:
        return self.reason is not None


def secret_bytes(secret: dict[str, Any], key: str) -> bytes | None:
    """Return the base64-decoded value of ``data[key]`` or None if unset.

    Raises
    ------
    InvalidDataError
        If the value is not valid base64.

    """
    value = (secret.get("data") or {}).get(key)
    if not value:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        msg = f"{key} is not valid base64"
        raise InvalidDataError(msg) from exc


def inspect_ca_secret(
    secret: dict[str, Any] | None,
    options: CAOptions,
    *,
    now: datetime,
) -> CAInspection:
    """Decide whether the CA material in *secret* must be regenerated."""
    if secret is None:
        return CAInspection(reason="secret does not exist")

    try:
        cert_pem = secret_bytes(secret, TLS_CERT_KEY)
        key_pem = secret_bytes(secret, TLS_PRIVATE_KEY_KEY)
        if cert_pem is None or key_pem is None:
            return CAInspection(reason="certificate or private key is missing")
        cert = decode_certificate(cert_pem)
        key = decode_private_key(key_pem)
        if not public_keys_equal(cert.public_key(), key.public_key()):
            return CAInspection(reason="private key does not match certificate")
    except PKIError as exc:
        return CAInspection(reason=f"stored CA material is unusable: {exc.detail}")

    if cert.subject != cert.issuer:
        return CAInspection(cert, key, reason="certificate is not self-signed")
    if cert.not_valid_after_utc <= now:
        return CAInspection(cert, key, reason="certificate has expired")
    if now >= options.renew_at(cert):
        return CAInspection(cert, key, reason="certificate is due for renewal")
    if renewal_pending(annotations_of(secret)):
        return CAInspection(cert, key, reason="renewal requested")
    return CAInspection(cert, key)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CAReconcileOutcome:
    """Result of one :meth:`CAAuthority.reconcile` pass.

    ``recheck_at`` is the earlier of ``renew_at`` and the expiry of the
    oldest bundle member, the next moment the secret must change.
    """

    generated: bool
    written: bool
    reason: str | None
    renew_at: datetime
    recheck_at: datetime


class CAAuthority:
    """Keeps the CA secret valid and its trust bundle aged.

    Parameters
    ----------
    store:
        Resource store holding the CA secret.
    options:
        Secret location and generation parameters.
    metrics:
        Optional collector for generation and bundle counters.
    clock:
        Returns the current UTC time; injectable for tests.

    """

    def __init__(
        self,
        store: ResourceStore,
        options: CAOptions,
        *,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self.options = options
        self._metrics = metrics
        self._clock = clock or (lambda: datetime.now(UTC))

    def now(self) -> datetime:
        return self._clock()

    def reconcile(self, ctx: Context) -> CAReconcileOutcome:
        """Run one validate → generate → persist pass."""
        now = self._clock()
        ref = self.options.ref

        try:
            secret: dict[str, Any] | None = self._store.get(SECRET_KIND, ref.namespace, ref.name)
        except NotFoundError:
            secret = None

        inspection = inspect_ca_secret(secret, self.options, now=now)
        cert, key = inspection.certificate, inspection.private_key
        annotations = annotations_of(secret) if secret else {}

        if inspection.needs_generate:
            log.info("Generating new CA certificate for %s: %s", ref, inspection.reason)
            ctx.check()
            cert, key = generate_ca(self.options, now=now)
            ctx.check()
            owned_annotations = issuance_annotations(annotations, now)
        else:
            owned_annotations = {
                k: annotations[k]
                for k in (ISSUED_AT_ANNOTATION, RENEW_HANDLED_AT_ANNOTATION)
                if k in annotations
            }

        previous_bundle = None
        if secret is not None:
            try:
                previous_bundle = secret_bytes(secret, CA_BUNDLE_KEY)
            except InvalidDataError:
                # Undecodable base64 takes the same fallback as an undecodable bundle.
                previous_bundle = str((secret.get("data") or {})[CA_BUNDLE_KEY]).encode()
        bundle = reconcile_bundle(previous_bundle, cert, now=now, metrics=self._metrics)

        desired = build_ca_secret(
            self.options,
            cert_pem=encode_certificate(cert),
            key_pem=encode_private_key(key),
            bundle=bundle,
            annotations=owned_annotations,
        )
        renew_at = self.options.renew_at(cert)
        recheck_at = min(
            [renew_at, *(c.not_valid_after_utc for c in decode_certificate_set(bundle))],
        )

        if secret is not None and _up_to_date(secret, desired):
            log.debug("CA secret %s is up to date", ref)
            return CAReconcileOutcome(False, False, inspection.reason, renew_at, recheck_at)

        ctx.check()
        log.debug("Applying CA secret %s", sanitize_for_logs(desired))
        self._store.apply(desired, field_manager=self.options.field_owner, force=True)

        if self._metrics:
            if inspection.needs_generate:
                self._metrics.increment("dynauth_ca_generations_total")
            self._metrics.set_gauge(
                "dynauth_ca_not_after_timestamp_seconds",
                cert.not_valid_after_utc.timestamp(),
            )
        log.info(
            "Updated CA secret %s (serial=%x, bundle=%d bytes)",
            ref,
            cert.serial_number,
            len(bundle),
        )
        return CAReconcileOutcome(
            inspection.needs_generate,
            True,
            inspection.reason,
            renew_at,
            recheck_at,
        )


def build_ca_secret(
    options: CAOptions,
    *,
    cert_pem: bytes,
    key_pem: bytes,
    bundle: bytes,
    annotations: dict[str, str],
) -> dict[str, Any]:
    """Return the apply patch holding the CA material and its markers."""
    metadata: dict[str, Any] = {
        "name": options.secret_name,
        "namespace": options.namespace,
        "labels": {INJECT_DYNAMIC_CA_LABEL: "true"},
    }
    if annotations:
        metadata["annotations"] = dict(annotations)
    return {
        "apiVersion": SECRET_API_VERSION,
        "kind": SECRET_KIND,
        "metadata": metadata,
        "type": SECRET_TYPE_TLS,
        "data": {
            TLS_CERT_KEY: base64.b64encode(cert_pem).decode("ascii"),
            TLS_PRIVATE_KEY_KEY: base64.b64encode(key_pem).decode("ascii"),
            CA_BUNDLE_KEY: base64.b64encode(bundle).decode("ascii"),
        },
    }


def _up_to_date(live: dict[str, Any], desired: dict[str, Any]) -> bool:
    live_data = live.get("data") or {}
    if any(live_data.get(k) != v for k, v in desired["data"].items()):
        return False
    if live.get("type") != desired["type"]:
        return False
    labels = labels_of(live)
    if any(labels.get(k) != v for k, v in desired["metadata"]["labels"].items()):
        return False
    annotations = annotations_of(live)
    wanted = desired["metadata"].get("annotations") or {}
    return all(annotations.get(k) == v for k, v in wanted.items())


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class CASecretReconciler(Reconciler):
    """Drives :class:`CAAuthority` and schedules the proactive rotation."""

    def __init__(self, authority: CAAuthority) -> None:
        self._authority = authority

    def reconcile(self, ctx: Context, request: Request) -> Result:
        if request != self._authority.options.ref:
            log.debug("Ignoring request for unmanaged secret %s", request)
            return Result()
        outcome = self._authority.reconcile(ctx)
        remaining = (outcome.recheck_at - self._authority.now()).total_seconds()
        return Result(requeue_after=max(remaining, _MIN_RECHECK_SECONDS))
