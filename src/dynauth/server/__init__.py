"""HTTPS health and metrics endpoint."""

from dynauth.server.app import create_app
from dynauth.server.tls import HTTPSServer

__all__ = ["HTTPSServer", "create_app"]
