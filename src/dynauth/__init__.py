"""dynauth: dynamic self-issued CA, trust bundle rotation and CA injection."""

__version__ = "0.1.0"
