"""Dynamic CA authority: CA lifecycle, trust bundle, serving certificate, injection.

Public API::

    from dynauth.authority import ServingCertificateOperator

    operator = ServingCertificateOperator(store, settings.authority, settings.controller)
    operator.start()
    context = operator.server_ssl_context()
"""

from dynauth.authority.bundle import reconcile_bundle
from dynauth.authority.ca import CAAuthority, CAOptions, CASecretReconciler, generate_ca
from dynauth.authority.injectable import (
    APIServiceInjectable,
    CRDConversionInjectable,
    Injectable,
    MutatingWebhookInjectable,
    ValidatingWebhookInjectable,
)
from dynauth.authority.injection import InjectableReconciler
from dynauth.authority.operator import ServingCertificateOperator
from dynauth.authority.registry import InjectableLoadError, load_injectable, load_injectables
from dynauth.authority.renewal import renewal_pending
from dynauth.authority.serving import (
    CertificateHolder,
    NotAvailableError,
    ServingCertificateReconciler,
    TLSCertificate,
    server_ssl_context,
)

__all__ = [
    "APIServiceInjectable",
    "CAAuthority",
    "CAOptions",
    "CASecretReconciler",
    "CRDConversionInjectable",
    "CertificateHolder",
    "Injectable",
    "InjectableLoadError",
    "InjectableReconciler",
    "MutatingWebhookInjectable",
    "NotAvailableError",
    "ServingCertificateOperator",
    "ServingCertificateReconciler",
    "TLSCertificate",
    "ValidatingWebhookInjectable",
    "generate_ca",
    "load_injectable",
    "load_injectables",
    "reconcile_bundle",
    "renewal_pending",
    "server_ssl_context",
]
