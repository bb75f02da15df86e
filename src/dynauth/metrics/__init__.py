"""In-process metrics for dynauth."""

from dynauth.metrics.collector import MetricsCollector

__all__ = ["MetricsCollector"]
