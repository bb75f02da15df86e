"""X.509 certificate PEM codec and self-signed CA construction."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.x509.oid import NameOID

from dynauth.pki.errors import InvalidDataError

if TYPE_CHECKING:
    from datetime import datetime

    from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPrivateKeyTypes

_CERTIFICATE = b"CERTIFICATE"

_PEM_BLOCK_RE = re.compile(
    rb"-----BEGIN ([A-Z0-9 ]+)-----\r?\n.*?-----END \1-----",
    re.DOTALL,
)

# ---------------------------------------------------------------------------
# Key usage
# ---------------------------------------------------------------------------

_KEY_USAGE_FIELDS = (
    "digital_signature",
    "content_commitment",
    "key_encipherment",
    "data_encipherment",
    "key_agreement",
    "key_cert_sign",
    "crl_sign",
    "encipher_only",
    "decipher_only",
)

CA_KEY_USAGES = ("digital_signature", "key_encipherment", "key_cert_sign")


def build_key_usage(usages: tuple[str, ...]) -> x509.KeyUsage:
    """Build an :class:`x509.KeyUsage` extension from usage names."""
    unknown = set(usages) - set(_KEY_USAGE_FIELDS)
    if unknown:
        msg = f"unknown key usage(s) {sorted(unknown)}; supported: {list(_KEY_USAGE_FIELDS)}"
        raise ValueError(msg)
    usage_set = set(usages)
    ka = "key_agreement" in usage_set
    return x509.KeyUsage(
        digital_signature="digital_signature" in usage_set,
        content_commitment="content_commitment" in usage_set,
        key_encipherment="key_encipherment" in usage_set,
        data_encipherment="data_encipherment" in usage_set,
        key_agreement=ka,
        key_cert_sign="key_cert_sign" in usage_set,
        crl_sign="crl_sign" in usage_set,
        encipher_only="encipher_only" in usage_set if ka else False,
        decipher_only="decipher_only" in usage_set if ka else False,
    )


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


def encode_certificate(cert: x509.Certificate) -> bytes:
    """Return *cert* as a single PEM ``CERTIFICATE`` block."""
    return cert.public_bytes(serialization.Encoding.PEM)


def decode_certificate(data: bytes) -> x509.Certificate:
    """Decode the first certificate of a PEM blob.

    Raises
    ------
    InvalidDataError
        If *data* holds no parseable certificate.

    """
    return decode_certificate_set(data)[0]


def decode_certificate_set(data: bytes) -> list[x509.Certificate]:
    """Decode a concatenation of PEM certificates, preserving order.

    Text outside PEM blocks is ignored.  Every block must be a valid
    certificate.

    Raises
    ------
    InvalidDataError
        If any block fails to parse, or no certificate is found.

    """
    certs: list[x509.Certificate] = []
    for match in _PEM_BLOCK_RE.finditer(data or b""):
        if match.group(1) != _CERTIFICATE:
            msg = f"error parsing TLS certificate: unexpected PEM block {match.group(1).decode()}"
            raise InvalidDataError(msg)
        try:
            certs.append(x509.load_pem_x509_certificate(match.group(0)))
        except ValueError as exc:
            msg = f"error parsing TLS certificate: {exc}"
            raise InvalidDataError(msg) from exc

    if not certs:
        msg = "error decoding certificate PEM block"
        raise InvalidDataError(msg)
    return certs


# ---------------------------------------------------------------------------
# Self-signed CA
# ---------------------------------------------------------------------------


def self_signed_ca(
    key: CertificateIssuerPrivateKeyTypes,
    *,
    common_name: str,
    not_before: datetime,
    not_after: datetime,
    serial_number: int | None = None,
) -> x509.Certificate:
    """Build and self-sign a CA certificate for *key*.

    Subject and issuer are both ``CN=<common_name>``.  The certificate
    carries critical BasicConstraints (CA, no path length) and a
    critical KeyUsage of digital signature, key encipherment and
    certificate signing.
    """
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    public_key = key.public_key()
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(public_key)
        .serial_number(serial_number or x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(
            x509.BasicConstraints(ca=True, path_length=None),
            critical=True,
        )
        .add_extension(build_key_usage(CA_KEY_USAGES), critical=True)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(public_key),
            critical=False,
        )
    )
    # Ed25519 signs without a separate digest
    algorithm = None if isinstance(key, ed25519.Ed25519PrivateKey) else hashes.SHA256()
    return builder.sign(key, algorithm)
