"""Configuration subsystem for dynauth.

Public API::

    from dynauth.config import get_config, DynauthConfig

    # At startup (CLI only):
    DynauthConfig(config_file="config.yaml", schema_file="bundled")

    # Everywhere else:
    cfg  = get_config()
    port = cfg.settings.server.port       # typed access
    ns   = cfg.get("authority.namespace") # dynamic dot-path
"""

from dynauth.config.dynauth_config import (
    ConfigValidationError,
    DynauthConfig,
    get_config,
)
from dynauth.config.settings import (
    AuthoritySettings,
    ControllerSettings,
    DynauthSettings,
    LoggingSettings,
    MetricsSettings,
    ServerSettings,
    build_settings,
)

__all__ = [
    "AuthoritySettings",
    "ConfigValidationError",
    "ControllerSettings",
    "DynauthConfig",
    "DynauthSettings",
    "LoggingSettings",
    "MetricsSettings",
    "ServerSettings",
    "build_settings",
    "get_config",
]
