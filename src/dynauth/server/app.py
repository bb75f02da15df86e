"""Flask application exposing health probes and metrics.

Routes::

    /livez    process is alive
    /healthz  CA and serving certificate status
    /readyz   503 until a serving certificate is available
    /metrics  Prometheus text format
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from flask import Flask, Response, jsonify

if TYPE_CHECKING:
    from flask.typing import ResponseReturnValue

    from dynauth.authority.operator import ServingCertificateOperator
    from dynauth.metrics.collector import MetricsCollector


def create_app(
    operator: ServingCertificateOperator | None = None,
    metrics: MetricsCollector | None = None,
) -> Flask:
    """Build the health and metrics application.

    Parameters
    ----------
    operator:
        Running operator whose state the probes report.
    metrics:
        Collector exported at ``/metrics``; the route is not registered
        without one.

    """
    app = Flask("dynauth")
    if operator is not None:
        app.extensions["operator"] = operator
    if metrics is not None:
        app.extensions["metrics"] = metrics
    _register_health(app)
    if metrics is not None:
        _register_metrics(app)
    return app


def _register_health(app: Flask) -> None:
    """Register ``/livez``, ``/healthz``, and ``/readyz`` probes."""
    from dynauth import __version__  # noqa: PLC0415

    @app.route("/livez")
    def livez() -> ResponseReturnValue:
        """Return minimal liveness probe."""
        return jsonify({"alive": True, "version": __version__}), 200

    @app.route("/healthz")
    def healthz() -> ResponseReturnValue:
        """Return authority health status."""
        result: dict = {"status": "ok", "version": __version__}
        operator = app.extensions.get("operator")
        if operator is None:
            result["status"] = "degraded"
            result["reason"] = "operator not initialized"
            return jsonify(result), 503

        result.update(operator.status())
        if result.get("serving_certificate") is None:
            result["status"] = "degraded"
        status_code = 200 if result["status"] == "ok" else 503
        return jsonify(result), status_code

    @app.route("/readyz")
    def readyz() -> ResponseReturnValue:
        """Return Kubernetes readiness probe."""
        operator = app.extensions.get("operator")
        if operator is None:
            return jsonify({"ready": False, "reason": "Operator not initialized"}), 503
        if not operator.serving_certificate().available:
            return (
                jsonify({"ready": False, "reason": "No serving certificate available"}),
                503,
            )
        return jsonify({"ready": True}), 200


def _register_metrics(app: Flask) -> None:
    @app.route("/metrics")
    def metrics() -> ResponseReturnValue:
        collector = app.extensions["metrics"]
        return Response(
            collector.export(),
            mimetype="text/plain; version=0.0.4; charset=utf-8",
        )
