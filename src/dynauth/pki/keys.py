"""Private key generation, PEM encoding and public key comparison.

Supports EC (P-256, P-384, P-521), RSA and Ed25519 signers.  Keys are
always written as unencrypted PKCS#8 (``PRIVATE KEY``); decoding also
accepts the legacy ``EC PRIVATE KEY`` (SEC 1) and ``RSA PRIVATE KEY``
(PKCS#1) forms.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from dynauth.pki.errors import InvalidDataError, UnsupportedCurveError, UnsupportedKeyTypeError

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import (
        CertificatePublicKeyTypes,
        PrivateKeyTypes,
    )

# secp256r1 / prime256v1 / NIST P-256
EC_CURVE_256 = 256
# secp384r1 / NIST P-384
EC_CURVE_384 = 384
# secp521r1 / NIST P-521
EC_CURVE_521 = 521

_CURVES: dict[int, type[ec.EllipticCurve]] = {
    EC_CURVE_256: ec.SECP256R1,
    EC_CURVE_384: ec.SECP384R1,
    EC_CURVE_521: ec.SECP521R1,
}

SUPPORTED_CURVES = frozenset(_CURVES)

_PEM_BLOCK_RE = re.compile(
    rb"-----BEGIN ([A-Z0-9 ]+)-----\r?\n.*?-----END \1-----",
    re.DOTALL,
)

_PKCS8 = "PRIVATE KEY"
_SEC1 = "EC PRIVATE KEY"
_PKCS1 = "RSA PRIVATE KEY"

# Key families a block label promises; PKCS#8 may hold any signer.
_LABEL_TYPES: dict[str, tuple[type, ...]] = {
    _PKCS8: (ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey, ed25519.Ed25519PrivateKey),
    _SEC1: (ec.EllipticCurvePrivateKey,),
    _PKCS1: (rsa.RSAPrivateKey,),
}

_PUBLIC_KEY_TYPES = (
    rsa.RSAPublicKey,
    ec.EllipticCurvePublicKey,
    ed25519.Ed25519PublicKey,
)


def generate_ec_private_key(key_size: int = EC_CURVE_384) -> ec.EllipticCurvePrivateKey:
    """Generate an ECDSA private key on the NIST curve of *key_size* bits.

    Raises
    ------
    UnsupportedCurveError
        If *key_size* is not 256, 384 or 521.

    """
    curve = _CURVES.get(key_size)
    if curve is None:
        msg = f"unsupported ecdsa key size specified: {key_size}"
        raise UnsupportedCurveError(msg)
    return ec.generate_private_key(curve())


def encode_private_key(key: PrivateKeyTypes) -> bytes:
    """Serialise *key* as an unencrypted PKCS#8 PEM block."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def decode_private_key(
    data: bytes,
) -> ec.EllipticCurvePrivateKey | rsa.RSAPrivateKey | ed25519.Ed25519PrivateKey:
    """Decode the first PEM private key block in *data*.

    Raises
    ------
    InvalidDataError
        If there is no PEM block, the block label is not a supported
        private key form, or the key material is malformed.

    """
    match = _PEM_BLOCK_RE.search(data or b"")
    if match is None:
        msg = "error decoding private key PEM block"
        raise InvalidDataError(msg)

    label = match.group(1).decode("ascii")
    allowed = _LABEL_TYPES.get(label)
    if allowed is None:
        msg = f"unknown private key type: {label}"
        raise InvalidDataError(msg)

    try:
        key = serialization.load_pem_private_key(match.group(0), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        msg = f"error parsing {label.lower()}: {exc}"
        raise InvalidDataError(msg) from exc

    if not isinstance(key, allowed):
        msg = f"error parsing {label.lower()}: invalid key type {type(key).__name__}"
        raise InvalidDataError(msg)
    return key


def public_keys_equal(a: CertificatePublicKeyTypes, b: object) -> bool:
    """Compare two public keys for cryptographic equality.

    Keys of different algorithms are never equal.

    Raises
    ------
    UnsupportedKeyTypeError
        If the algorithm of *a* is not RSA, EC or Ed25519.

    """
    family = next((t for t in _PUBLIC_KEY_TYPES if isinstance(a, t)), None)
    if family is None:
        msg = f"unrecognised public key type: {type(a).__name__}"
        raise UnsupportedKeyTypeError(msg)
    if not isinstance(b, family):
        return False
    return _spki(a) == _spki(b)


def _spki(key: CertificatePublicKeyTypes) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
