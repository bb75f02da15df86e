"""Tests for dynauth.authority.bundle.reconcile_bundle."""

from __future__ import annotations

from datetime import timedelta

from conftest import T0

from dynauth.authority.bundle import reconcile_bundle
from dynauth.authority.ca import generate_ca
from dynauth.metrics.collector import MetricsCollector
from dynauth.pki import decode_certificate_set, encode_certificate


class TestReconcileBundle:
    def test_adds_new_certificate(self, ca_options):
        old, _ = generate_ca(ca_options, now=T0)
        new, _ = generate_ca(ca_options, now=T0 + timedelta(hours=2))
        bundle = reconcile_bundle(encode_certificate(old), new, now=T0 + timedelta(hours=2))
        assert decode_certificate_set(bundle) == [old, new]

    def test_undecodable_previous_bundle(self, ca_options, caplog):
        metrics = MetricsCollector()
        cert, _ = generate_ca(ca_options, now=T0)
        bundle = reconcile_bundle(b"garbage", cert, now=T0, metrics=metrics)
        assert decode_certificate_set(bundle) == [cert]
        assert metrics.get("dynauth_bundle_fallbacks_total") == 1
        assert "Discarding undecodable trust bundle" in caplog.text

    def test_fallback_without_metrics(self, ca_options):
        cert, _ = generate_ca(ca_options, now=T0)
        assert reconcile_bundle(b"garbage", cert, now=T0) == encode_certificate(cert)
