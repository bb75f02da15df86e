"""Trust bundle reconciliation for CA rotations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from dynauth.pki import InvalidDataError, build_certificate_pool

if TYPE_CHECKING:
    from datetime import datetime

    from cryptography import x509

    from dynauth.metrics.collector import MetricsCollector

log = logging.getLogger(__name__)


def reconcile_bundle(
    previous_bundle: bytes | None,
    new_cert: x509.Certificate,
    *,
    now: datetime | None = None,
    metrics: MetricsCollector | None = None,
) -> bytes:
    """Merge *new_cert* into *previous_bundle*, dropping expired entries.

    A previous bundle that cannot be decoded is replaced by a bundle
    holding only *new_cert*.  Consumers lose trust in older CAs in that
    case, so it is logged as a warning rather than failing the pass.
    """
    try:
        return build_certificate_pool(previous_bundle, new_cert, now=now)
    except InvalidDataError as exc:
        log.warning(
            "Discarding undecodable trust bundle, starting over with the current CA: %s",
            exc.detail,
        )
        if metrics:
            metrics.increment("dynauth_bundle_fallbacks_total")
        return build_certificate_pool(None, new_cert, now=now)
