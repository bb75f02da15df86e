"""PKI codec: key generation, PEM encoding and trust bundle aging.

Public API::

    from dynauth.pki import (
        build_certificate_pool,
        decode_certificate,
        decode_private_key,
        generate_ec_private_key,
        public_keys_equal,
    )
"""

from dynauth.pki.certificates import (
    CA_KEY_USAGES,
    build_key_usage,
    decode_certificate,
    decode_certificate_set,
    encode_certificate,
    self_signed_ca,
)
from dynauth.pki.errors import (
    InvalidDataError,
    PKIError,
    UnsupportedCurveError,
    UnsupportedKeyTypeError,
)
from dynauth.pki.keys import (
    EC_CURVE_256,
    EC_CURVE_384,
    EC_CURVE_521,
    SUPPORTED_CURVES,
    decode_private_key,
    encode_private_key,
    generate_ec_private_key,
    public_keys_equal,
)
from dynauth.pki.pool import build_certificate_pool

__all__ = [
    "CA_KEY_USAGES",
    "EC_CURVE_256",
    "EC_CURVE_384",
    "EC_CURVE_521",
    "SUPPORTED_CURVES",
    "InvalidDataError",
    "PKIError",
    "UnsupportedCurveError",
    "UnsupportedKeyTypeError",
    "build_certificate_pool",
    "build_key_usage",
    "decode_certificate",
    "decode_certificate_set",
    "decode_private_key",
    "encode_certificate",
    "encode_private_key",
    "generate_ec_private_key",
    "public_keys_equal",
    "self_signed_ca",
]
