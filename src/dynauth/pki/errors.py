"""Exceptions raised by the PKI codec.

All codec errors derive from :class:`PKIError` so callers can treat
"the material is unusable" uniformly while still distinguishing
malformed data (recoverable by regenerating) from configuration
mistakes (unsupported curves or key types).
"""

from __future__ import annotations


class PKIError(Exception):
    """Base class for PKI codec failures.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.

    Attributes
    ----------
    retryable:
        False when retrying cannot help because the caller asked for
        something the codec does not support.

    """

    retryable = True

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class InvalidDataError(PKIError):
    """PEM, certificate or key bytes could not be decoded."""


class UnsupportedKeyTypeError(PKIError):
    """A key algorithm the codec does not recognise."""

    retryable = False


class UnsupportedCurveError(PKIError):
    """An elliptic curve size other than 256, 384 or 521 bits."""

    retryable = False
