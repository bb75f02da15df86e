"""In-process metrics collector.

Collects counters and gauges without external dependencies.
Exports in OpenMetrics/Prometheus text format.
"""

from __future__ import annotations

import threading
import time


class MetricsCollector:
    """Thread-safe in-process metrics collector."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}
        self._gauges: dict[str, float] = {}
        self._start_time = time.time()

    def increment(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        """Increment a counter."""
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def set_gauge(self, name: str, value: float, labels: dict | None = None) -> None:
        """Set a gauge to *value*."""
        key = self._make_key(name, labels)
        with self._lock:
            self._gauges[key] = value

    def get(self, name: str, labels: dict | None = None) -> float:
        """Get the current value of a counter or gauge."""
        key = self._make_key(name, labels)
        with self._lock:
            if key in self._gauges:
                return self._gauges[key]
            return self._counters.get(key, 0)

    def export(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = [
            "# HELP dynauth_uptime_seconds Time since process start",
            "# TYPE dynauth_uptime_seconds gauge",
            f"dynauth_uptime_seconds {time.time() - self._start_time:.1f}",
            "",
        ]

        with self._lock:
            for kind, values in (("counter", self._counters), ("gauge", self._gauges)):
                grouped: dict[str, list[tuple[str, float]]] = {}
                for key, value in sorted(values.items()):
                    grouped.setdefault(key.split("{")[0], []).append((key, value))

                for name, entries in sorted(grouped.items()):
                    lines.append(f"# TYPE {name} {kind}")
                    lines.extend(f"{key} {value}" for key, value in entries)
                    lines.append("")

        return "\n".join(lines) + "\n"

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"
