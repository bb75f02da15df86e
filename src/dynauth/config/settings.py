"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders
are what the application actually reads.

Access pattern::

    from dynauth.config import get_config

    authority = get_config().settings.authority
    print(authority.namespace, authority.ca_secret)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

# ---------------------------------------------------------------------------
# Authority
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthoritySettings:
    """Self-issued CA, its storage location and the consumers to inject."""

    namespace: str
    ca_secret: str
    ca_duration_seconds: int
    renew_before_seconds: int | None
    key_curve: int
    common_name: str
    field_owner: str
    injectables: tuple[str, ...]
    not_found_requeue_seconds: float

    @property
    def ca_duration(self) -> timedelta:
        return timedelta(seconds=self.ca_duration_seconds)

    @property
    def renew_before(self) -> timedelta:
        """Remaining lifetime below which the CA is rotated proactively."""
        if self.renew_before_seconds is None:
            return self.ca_duration / 3
        return timedelta(seconds=self.renew_before_seconds)


def _build_authority(data: dict | None) -> AuthoritySettings:
    d = data or {}
    return AuthoritySettings(
        namespace=d.get("namespace", "cert-manager"),
        ca_secret=d.get("ca_secret", "cert-manager-webhook-ca"),
        ca_duration_seconds=d.get("ca_duration_seconds", 7 * 24 * 3600),
        renew_before_seconds=d.get("renew_before_seconds"),
        key_curve=d.get("key_curve", 384),
        common_name=d.get("common_name", "cert-manager-dynamic-ca"),
        field_owner=d.get("field_owner", "cert-manager-dynamic-authority"),
        injectables=tuple(d.get("injectables", ["validating_webhook"])),
        not_found_requeue_seconds=d.get("not_found_requeue_seconds", 5),
    )


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ControllerSettings:
    """Worker pool and retry backoff shared by every controller."""

    workers: int
    backoff_base_seconds: float
    backoff_max_seconds: float


def _build_controller(data: dict | None) -> ControllerSettings:
    d = data or {}
    return ControllerSettings(
        workers=d.get("workers", 1),
        backoff_base_seconds=d.get("backoff_base_seconds", 0.5),
        backoff_max_seconds=d.get("backoff_max_seconds", 300),
    )


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServerSettings:
    """HTTPS health and metrics endpoint."""

    enabled: bool
    bind: str
    port: int


def _build_server(data: dict | None) -> ServerSettings:
    d = data or {}
    return ServerSettings(
        enabled=d.get("enabled", True),
        bind=d.get("bind", "0.0.0.0"),  # noqa: S104
        port=d.get("port", 9443),
    )


# ---------------------------------------------------------------------------
# Logging / Metrics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    format: str


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "json"),
    )


@dataclass(frozen=True)
class MetricsSettings:
    enabled: bool


def _build_metrics(data: dict | None) -> MetricsSettings:
    d = data or {}
    return MetricsSettings(enabled=d.get("enabled", True))


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DynauthSettings:
    authority: AuthoritySettings
    controller: ControllerSettings
    server: ServerSettings
    logging: LoggingSettings
    metrics: MetricsSettings


def build_settings(data: dict) -> DynauthSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`DynauthConfig` initialization after
    schema validation and environment-variable resolution.  An empty
    mapping yields every default.
    """
    return DynauthSettings(
        authority=_build_authority(data.get("authority")),
        controller=_build_controller(data.get("controller")),
        server=_build_server(data.get("server")),
        logging=_build_logging(data.get("logging")),
        metrics=_build_metrics(data.get("metrics")),
    )
