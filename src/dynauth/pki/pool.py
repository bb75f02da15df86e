"""Trust bundle aging.

:func:`build_certificate_pool` is the single place where bundle
membership is decided: expired certificates leave, the current CA
joins, duplicates collapse.  Order is preserved so consumers see the
oldest still-trusted CA first.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import serialization

from dynauth.pki.certificates import decode_certificate_set, encode_certificate

if TYPE_CHECKING:
    from cryptography import x509


def build_certificate_pool(
    existing_bundle: bytes | None,
    new_cert: x509.Certificate,
    *,
    now: datetime | None = None,
) -> bytes:
    """Merge *new_cert* into *existing_bundle* and drop expired entries.

    Parameters
    ----------
    existing_bundle:
        Concatenated PEM certificates.  ``None`` or blank input is an
        empty bundle.
    new_cert:
        Certificate that must be trusted from now on.  It is appended
        unless an identical certificate is already present, and like
        every other member it is left out once expired.
    now:
        Reference time for expiry; defaults to the current UTC time.

    Raises
    ------
    InvalidDataError
        If a non-empty *existing_bundle* cannot be decoded.

    """
    now = now or datetime.now(UTC)
    certs = []
    if existing_bundle and existing_bundle.strip():
        certs = decode_certificate_set(existing_bundle)

    seen: set[bytes] = set()
    pool: list[bytes] = []
    for cert in (*certs, new_cert):
        if cert.not_valid_after_utc <= now:
            continue
        der = cert.public_bytes(serialization.Encoding.DER)
        if der in seen:
            continue
        seen.add(der)
        pool.append(encode_certificate(cert))
    return b"".join(pool)
