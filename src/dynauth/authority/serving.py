"""Serving certificate holder and its CA secret watcher.

Every TLS handshake of the process's listeners reads the current
certificate through :meth:`CertificateHolder.get`.  Readers never take
a lock: the holder publishes immutable :class:`TLSCertificate` objects
by rebinding a single attribute, which is atomic for Python threads.
"""

from __future__ import annotations

import hashlib
import logging
import os
import ssl
import tempfile
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from cryptography.hazmat.primitives import serialization

from dynauth.authority.ca import secret_bytes
from dynauth.authority.constants import SECRET_KIND, TLS_CERT_KEY, TLS_PRIVATE_KEY_KEY
from dynauth.controller.base import Reconciler, Result
from dynauth.pki import PKIError, decode_certificate, decode_private_key, public_keys_equal
from dynauth.store.base import NotFoundError

if TYPE_CHECKING:
    from cryptography import x509
    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from dynauth.controller.base import Request
    from dynauth.controller.context import Context
    from dynauth.metrics.collector import MetricsCollector
    from dynauth.store.base import NamespacedName, ResourceStore

log = logging.getLogger(__name__)


class NotAvailableError(Exception):
    """No serving certificate has been published yet."""


@dataclass(frozen=True)
class TLSCertificate:
    """An immutable certificate/key pair with a ready server context."""

    certificate: x509.Certificate
    private_key: PrivateKeyTypes
    cert_pem: bytes
    key_pem: bytes
    context: ssl.SSLContext = field(repr=False, compare=False)

    @classmethod
    def from_pem(cls, cert_pem: bytes, key_pem: bytes) -> TLSCertificate:
        """Decode and pair *cert_pem* with *key_pem*.

        Raises
        ------
        PKIError
            If either block cannot be decoded or the keys do not match.

        """
        cert = decode_certificate(cert_pem)
        key = decode_private_key(key_pem)
        if not public_keys_equal(cert.public_key(), key.public_key()):
            msg = "serving private key does not match certificate"
            raise PKIError(msg)
        return cls(cert, key, cert_pem, key_pem, _server_context(cert_pem, key_pem))

    @property
    def fingerprint(self) -> str:
        """SHA-256 fingerprint of the DER certificate."""
        der = self.certificate.public_bytes(serialization.Encoding.DER)
        return hashlib.sha256(der).hexdigest()


# tmpfs keeps the key off disk where the platform has one.
_KEY_DIR = "/dev/shm" if os.path.isdir("/dev/shm") else None  # noqa: PTH112


def _server_context(cert_pem: bytes, key_pem: bytes) -> ssl.SSLContext:
    # load_cert_chain only reads from files. The 0600 key file sits in a
    # private directory that is removed before returning.
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    with tempfile.TemporaryDirectory(prefix="dynauth-tls-", dir=_KEY_DIR) as tmp:
        cert_path = os.path.join(tmp, "tls.crt")  # noqa: PTH118
        key_path = os.path.join(tmp, "tls.key")  # noqa: PTH118
        for path, data in ((cert_path, cert_pem), (key_path, key_pem)):
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
        context.load_cert_chain(cert_path, key_path)
    return context


class CertificateHolder:
    """Single cell holding the current serving certificate."""

    def __init__(self) -> None:
        self._current: TLSCertificate | None = None

    def get(self) -> TLSCertificate:
        """Return the current certificate.

        Raises
        ------
        NotAvailableError
            If no certificate has been set yet.

        """
        current = self._current
        if current is None:
            msg = "no serving certificate available"
            raise NotAvailableError(msg)
        return current

    def set(self, certificate: TLSCertificate) -> None:
        """Replace the current certificate wholesale."""
        self._current = certificate

    @property
    def available(self) -> bool:
        return self._current is not None


def server_ssl_context(holder: CertificateHolder) -> ssl.SSLContext:
    """Return a server context that serves *holder*'s certificate.

    The SNI callback runs for every handshake and switches the
    connection to the context of the certificate current at that
    moment, so rotations apply to new connections only.  While the
    holder is empty the handshake fails.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    def _select(sslobj: ssl.SSLObject, server_name: str | None, _ctx: ssl.SSLContext) -> int | None:
        try:
            sslobj.context = holder.get().context
        except NotAvailableError:
            log.warning("Rejecting TLS handshake for %r: no serving certificate", server_name)
            return ssl.ALERT_DESCRIPTION_HANDSHAKE_FAILURE
        return None

    context.sni_callback = _select
    return context


class ServingCertificateReconciler(Reconciler):
    """Publishes the CA secret's certificate and key to the holder.

    Runs on every replica: it must not wait for leadership.
    """

    def __init__(
        self,
        store: ResourceStore,
        secret: NamespacedName,
        holder: CertificateHolder,
        *,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._store = store
        self._secret = secret
        self._holder = holder
        self._metrics = metrics

    def reconcile(self, ctx: Context, request: Request) -> Result:
        if request != self._secret:
            return Result()
        try:
            secret: dict[str, Any] = self._store.get(SECRET_KIND, request.namespace, request.name)
        except NotFoundError:
            log.debug("CA secret %s does not exist yet", request)
            return Result()

        ctx.check()
        try:
            cert_pem = secret_bytes(secret, TLS_CERT_KEY)
            key_pem = secret_bytes(secret, TLS_PRIVATE_KEY_KEY)
            if cert_pem is None or key_pem is None:
                log.debug("CA secret %s holds no certificate yet", request)
                return Result()
            if self._holder.available and self._holder.get().cert_pem == cert_pem:
                return Result()
            certificate = TLSCertificate.from_pem(cert_pem, key_pem)
        except PKIError as exc:
            # The CA controller regenerates the material; its write triggers us again.
            log.info("CA secret %s holds unusable material: %s", request, exc.detail)
            return Result()

        self._holder.set(certificate)
        if self._metrics:
            self._metrics.increment("dynauth_serving_certificate_updates_total")
        log.info(
            "Serving certificate updated (serial=%x, fingerprint=%s)",
            certificate.certificate.serial_number,
            certificate.fingerprint[:16],
        )
        return Result()
