"""Logging subsystem for dynauth.

Public API::

    from dynauth.logging import configure_logging

    configure_logging(settings.logging)
"""

from dynauth.logging.setup import configure_logging, reconcile_scope

__all__ = ["configure_logging", "reconcile_scope"]
