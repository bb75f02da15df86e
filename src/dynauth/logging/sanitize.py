"""Sensitive data sanitization for log output.

Provides :func:`sanitize_for_logs` which redacts key material (PEM
bodies and Secret ``data`` values) from resources before they are
written to log files.  Only metadata (names, labels, annotations) and
the kind of object are preserved.
"""

from __future__ import annotations

import re
from typing import Any

# Regex matching the base64 body inside PEM blocks
_PEM_BODY_RE = re.compile(
    r"(-----BEGIN [A-Z0-9 ]+-----)"
    r"([\s\S]*?)"
    r"(-----END [A-Z0-9 ]+-----)",
)

_REDACTED = "[REDACTED]"


def sanitize_pem(pem: str) -> str:
    """Replace the base64 body of PEM blocks with ``[REDACTED]``.

    Preserves BEGIN/END markers so the type of object is still visible.
    """

    def _redact(m: re.Match[str]) -> str:
        return f"{m.group(1)}\n{_REDACTED}\n{m.group(3)}"

    return _PEM_BODY_RE.sub(_redact, pem)


def sanitize_secret(secret: dict) -> dict:
    """Return a copy of *secret* with every ``data`` value redacted."""
    result = dict(secret)
    data = secret.get("data")
    if isinstance(data, dict):
        result["data"] = dict.fromkeys(data, _REDACTED)
    return result


def sanitize_for_logs(data: Any) -> Any:  # noqa: ANN401
    """Recursively sanitize sensitive material in *data*.

    Handles Secret-like resources, dicts, lists, and plain strings.
    Non-sensitive data passes through unchanged.
    """
    if isinstance(data, dict):
        if data.get("kind") == "Secret":
            return sanitize_secret(data)
        return {k: sanitize_for_logs(v) for k, v in data.items()}

    if isinstance(data, (list, tuple)):
        return type(data)(sanitize_for_logs(item) for item in data)

    if isinstance(data, str):
        if "-----BEGIN " in data:
            return sanitize_pem(data)
        return data

    return data
