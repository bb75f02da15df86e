"""Timestamp-annotation protocol for requesting CA rotation.

An operator requests a rotation by writing the current time to the
``renew-requested-at`` annotation of the CA secret.  The engine honours
the request once: it stamps ``issued-at`` at or after the requested
time and copies the request into ``renew-handled-at``.

A malformed timestamp in either annotation never forces a rotation.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from dynauth.authority.constants import (
    ISSUED_AT_ANNOTATION,
    RENEW_HANDLED_AT_ANNOTATION,
    RENEW_REQUESTED_AT_ANNOTATION,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

log = logging.getLogger(__name__)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp; return None if absent or malformed.

    Values without an explicit offset are rejected since their instant
    is ambiguous.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    """Render *value* as RFC 3339 in UTC with a ``Z`` suffix."""
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def renewal_pending(annotations: Mapping[str, str]) -> bool:
    """Return True if an unhandled renewal request is present.

    Pending means the request parses, differs from the last handled
    request, and the CA was not issued strictly after it.
    """
    raw_requested = annotations.get(RENEW_REQUESTED_AT_ANNOTATION)
    if not raw_requested:
        return False
    requested = parse_timestamp(raw_requested)
    if requested is None:
        log.warning(
            "Ignoring malformed %s annotation %r",
            RENEW_REQUESTED_AT_ANNOTATION,
            raw_requested,
        )
        return False
    if annotations.get(RENEW_HANDLED_AT_ANNOTATION) == raw_requested:
        return False

    raw_issued = annotations.get(ISSUED_AT_ANNOTATION)
    if not raw_issued:
        return True
    issued = parse_timestamp(raw_issued)
    if issued is None:
        log.warning(
            "Ignoring renewal request: malformed %s annotation %r",
            ISSUED_AT_ANNOTATION,
            raw_issued,
        )
        return False
    return not issued > requested


def issuance_annotations(
    annotations: Mapping[str, str],
    now: datetime,
) -> dict[str, str]:
    """Return the annotations to record after generating a new CA.

    ``issued-at`` becomes ``max(now, renew-requested-at)`` so that a
    request stamped slightly in the future is still considered handled;
    a parseable request is copied to ``renew-handled-at``.
    """
    issued = now
    result: dict[str, str] = {}
    raw_requested = annotations.get(RENEW_REQUESTED_AT_ANNOTATION)
    requested = parse_timestamp(raw_requested)
    if requested is not None:
        issued = max(issued, requested)
        result[RENEW_HANDLED_AT_ANNOTATION] = raw_requested
    result[ISSUED_AT_ANNOTATION] = format_timestamp(issued)
    return result
