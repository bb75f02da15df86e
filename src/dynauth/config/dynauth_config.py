"""dynauth configuration loader built on ConfigKit.

Lifecycle::

    # 1. CLI creates the singleton (once, at startup)
    DynauthConfig(config_file="/etc/dynauth/config.yaml", schema_file="bundled")

    # 2. Any module retrieves it afterwards
    from dynauth.config import get_config
    cfg = get_config()
    cfg.settings.authority.ca_secret  # typed access

    # 3. Dynamic access
    cfg.get("server.port", default=9443)
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

from configkit import ConfigKit, ConfigKitMeta

from dynauth.config.settings import DynauthSettings, build_settings
from dynauth.pki.keys import SUPPORTED_CURVES

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_CLASS_PATH_RE = re.compile(
    r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)+$",
)

# Kubernetes object names (RFC 1123 subdomain)
_DNS_SUBDOMAIN_RE = re.compile(
    r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$",
)
_MAX_NAME_LENGTH = 253
_MIN_CA_DURATION_SECONDS = 3600

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singleton reference
# ---------------------------------------------------------------------------
_instance: DynauthConfig | None = None


def get_config() -> DynauthConfig:
    """Return the initialised configuration singleton.

    Raises :class:`RuntimeError` if :class:`DynauthConfig` has not been
    created yet (i.e. the CLI entry point has not run).
    """
    if _instance is None:
        msg = (
            "Configuration not initialised. "
            "DynauthConfig must be created with config_file= before calling get_config()."
        )
        raise RuntimeError(msg)
    return _instance


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(Exception):
    """Raised when cross-field validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        """Store *errors* and build a human-readable message."""
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(
    data: Any,  # noqa: ANN401
    path: str = "",
) -> None:
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, child_path)


def _is_valid_name(value: str) -> bool:
    return len(value) <= _MAX_NAME_LENGTH and bool(_DNS_SUBDOMAIN_RE.match(value))


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class DynauthConfig(ConfigKit):
    """Central configuration for the dynamic authority.

    Subclasses :class:`configkit.ConfigKit`.  The JSON schema is
    bundled at ``config/schema.json``; users supply only ``config_file``.

    After construction the typed settings tree is available at
    :pyattr:`settings` and the raw dict via :pyattr:`data` /
    :pymeth:`get`.
    """

    def __init__(
        self,
        *,
        config_file: str | Path,
        schema_file: str | Path | None = None,  # noqa: ARG002
    ) -> None:
        """Initialise the configuration singleton.

        Parameters
        ----------
        config_file:
            Path to the YAML/JSON configuration file.
        schema_file:
            Ignored.  Exists only to satisfy the
            :class:`ConfigKitMeta` singleton guard.

        """
        global _instance  # noqa: PLW0603

        super().__init__(
            config_file=config_file,
            schema_file=_SCHEMA_PATH,
        )

        self._settings: DynauthSettings = build_settings(self.data)
        _instance = self

    # -- lifecycle overrides ------------------------------------------------

    def _load(self) -> None:
        """Load config file then resolve ``${VAR}`` env-var references.

        Runs env-var resolution **before** schema validation so that
        substituted values (e.g. ``${LOG_LEVEL:-INFO}``) are checked
        against enum constraints in the schema.
        """
        super()._load()
        _resolve_env_vars(self._data)

    # -- typed access -------------------------------------------------------

    @property
    def settings(self) -> DynauthSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    # -- cross-field validation ---------------------------------------------

    def additional_checks(self) -> None:
        """Semantic & cross-field validation.

        Called automatically by ConfigKit **after** schema validation
        passes.
        """
        errors: list[str] = []
        warnings: list[str] = []

        authority = self.data.get("authority") or {}
        controller = self.data.get("controller") or {}

        # -- authority --
        for field in ("namespace", "ca_secret"):
            value = authority.get(field)
            if value is not None and not _is_valid_name(value):
                errors.append(
                    f"authority.{field} '{value}' is not a valid resource name "
                    "(lowercase RFC 1123 subdomain)",
                )

        curve = authority.get("key_curve", 384)
        if curve not in SUPPORTED_CURVES:
            errors.append(
                f"authority.key_curve ({curve}) must be one of {sorted(SUPPORTED_CURVES)}",
            )

        duration = authority.get("ca_duration_seconds", 7 * 24 * 3600)
        renew_before = authority.get("renew_before_seconds")
        if renew_before is not None and renew_before >= duration:
            errors.append(
                f"authority.renew_before_seconds ({renew_before}) must be < "
                f"authority.ca_duration_seconds ({duration})",
            )
        if duration < _MIN_CA_DURATION_SECONDS:
            warnings.append(
                f"authority.ca_duration_seconds ({duration}) is shorter than one hour; "
                "consumers will see frequent bundle changes",
            )

        from dynauth.authority.registry import BUILTIN_INJECTABLES  # noqa: PLC0415

        injectables = authority.get("injectables", ["validating_webhook"])
        for name in injectables:
            if name in BUILTIN_INJECTABLES:
                continue
            if name.startswith("ext:") and _CLASS_PATH_RE.match(name[4:]):
                continue
            errors.append(
                f"authority.injectables contains unknown kind '{name}'. "
                f"Known kinds: {sorted(BUILTIN_INJECTABLES)}. "
                "Use 'ext:package.module.ClassName' for custom kinds.",
            )
        if len(set(injectables)) != len(injectables):
            errors.append("authority.injectables must not contain duplicates")

        # -- controller --
        backoff_base = controller.get("backoff_base_seconds", 0.5)
        backoff_max = controller.get("backoff_max_seconds", 300)
        if backoff_base > backoff_max:
            errors.append(
                f"controller.backoff_base_seconds ({backoff_base}) must be <= "
                f"controller.backoff_max_seconds ({backoff_max})",
            )

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)

    # -- helpers ------------------------------------------------------------

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton -- testing only."""
        global _instance  # noqa: PLW0603
        _instance = None
        ConfigKitMeta.reset()

    def __repr__(self) -> str:
        """Return a developer-friendly representation."""
        return f"<DynauthConfig config_file={self._config_path}>"
