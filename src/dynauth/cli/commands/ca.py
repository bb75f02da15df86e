"""Offline CA subcommands."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import argparse

    from dynauth.config import DynauthConfig

log = logging.getLogger(__name__)


def run_ca(config: DynauthConfig, args: argparse.Namespace) -> None:
    """Handle ca subcommands."""
    if args.ca_command == "generate":
        _ca_generate(config, Path(args.out_dir))
    elif args.ca_command == "inspect":
        _ca_inspect(Path(args.file))
    else:
        print("dynauth: error: ca requires 'generate' or 'inspect'", file=sys.stderr)  # noqa: T201
        sys.exit(1)


def _ca_generate(config: DynauthConfig, out_dir: Path) -> None:
    """Write a fresh CA with the configured parameters to *out_dir*."""
    from dynauth.authority.bundle import reconcile_bundle  # noqa: PLC0415
    from dynauth.authority.ca import CAOptions, generate_ca  # noqa: PLC0415
    from dynauth.authority.constants import (  # noqa: PLC0415
        CA_BUNDLE_KEY,
        TLS_CERT_KEY,
        TLS_PRIVATE_KEY_KEY,
    )
    from dynauth.pki import encode_certificate, encode_private_key  # noqa: PLC0415

    options = CAOptions.from_settings(config.settings.authority)
    cert, key = generate_ca(options)

    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / TLS_CERT_KEY).write_bytes(encode_certificate(cert))
    key_path = out_dir / TLS_PRIVATE_KEY_KEY
    fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(encode_private_key(key))
    (out_dir / CA_BUNDLE_KEY).write_bytes(reconcile_bundle(None, cert))

    log.info("Generated CA serial=%x in %s", cert.serial_number, out_dir)
    print(  # noqa: T201
        f"serial:    {cert.serial_number:x}\n"
        f"not after: {cert.not_valid_after_utc.isoformat()}\n"
        f"written:   {out_dir}",
    )


def _ca_inspect(path: Path) -> None:
    """Describe every certificate of the PEM file at *path*."""
    from dynauth.pki import InvalidDataError, decode_certificate_set  # noqa: PLC0415

    try:
        certs = decode_certificate_set(path.read_bytes())
    except OSError as exc:
        print(f"dynauth: error: cannot read {path}: {exc.strerror}", file=sys.stderr)  # noqa: T201
        sys.exit(1)
    except InvalidDataError as exc:
        print(f"dynauth: error: {path}: {exc.detail}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    for index, cert in enumerate(certs):
        print(  # noqa: T201
            f"[{index}] subject:    {cert.subject.rfc4514_string()}\n"
            f"    serial:     {cert.serial_number:x}\n"
            f"    not before: {cert.not_valid_before_utc.isoformat()}\n"
            f"    not after:  {cert.not_valid_after_utc.isoformat()}",
        )
