"""Well-known names of the CA secret layout and the injection labels."""

from __future__ import annotations

from datetime import timedelta

# -- CA secret --------------------------------------------------------------

SECRET_API_VERSION = "v1"
SECRET_KIND = "Secret"
SECRET_TYPE_TLS = "kubernetes.io/tls"

TLS_CERT_KEY = "tls.crt"
TLS_PRIVATE_KEY_KEY = "tls.key"
CA_BUNDLE_KEY = "ca-bundle.crt"

# Marks a secret as dynamic CA material.
INJECT_DYNAMIC_CA_LABEL = "cert-manager.io/inject-dynamic-ca"

ISSUED_AT_ANNOTATION = "cert-manager.io/issued-at"
RENEW_REQUESTED_AT_ANNOTATION = "cert-manager.io/renew-requested-at"
RENEW_HANDLED_AT_ANNOTATION = "cert-manager.io/renew-handled-at"

# -- Injectable reference ---------------------------------------------------

INJECT_FROM_SECRET_NAMESPACE_LABEL = "cert-manager.io/inject-dynamic-ca-from-secret-namespace"
INJECT_FROM_SECRET_NAME_LABEL = "cert-manager.io/inject-dynamic-ca-from-secret-name"

# -- Defaults ---------------------------------------------------------------

DEFAULT_CA_DURATION = timedelta(days=7)
DEFAULT_COMMON_NAME = "cert-manager-dynamic-ca"
DEFAULT_FIELD_OWNER = "cert-manager-dynamic-authority"
SERIAL_NUMBER_BITS = 128
