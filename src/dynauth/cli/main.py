"""dynauth command-line entry point.

Usage::

    dynauth -c /etc/dynauth/config.yaml
    dynauth -c config.yaml --validate-only
    dynauth -c config.yaml run
    dynauth -c config.yaml ca generate --out-dir ./ca
    dynauth -c config.yaml ca inspect ./ca/ca-bundle.crt
    python -m dynauth -c config.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dynauth.config import DynauthConfig

log = logging.getLogger(__name__)


def _get_version() -> str:
    from dynauth import __version__  # noqa: PLC0415

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dynauth",
        description="dynauth: self-issued CA, rolling trust bundle and CA injection",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="Path to the configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration file and exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # run
    subparsers.add_parser("run", help="Run the authority controllers and HTTPS endpoint")

    # ca
    ca_parser = subparsers.add_parser("ca", help="Offline CA helpers")
    ca_sub = ca_parser.add_subparsers(dest="ca_command")
    generate = ca_sub.add_parser("generate", help="Write a fresh CA certificate, key and bundle")
    generate.add_argument(
        "--out-dir",
        required=True,
        metavar="DIR",
        help="Directory receiving tls.crt, tls.key and ca-bundle.crt",
    )
    inspect = ca_sub.add_parser("inspect", help="Describe every certificate of a PEM bundle")
    inspect.add_argument("file", metavar="FILE", help="PEM file to inspect")

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"dynauth: error: {message}", file=sys.stderr)  # noqa: T201


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, dispatches."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- resolve config path ---
    config_path = Path(args.config)
    if not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(1)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    try:
        from dynauth.config import ConfigValidationError, DynauthConfig  # noqa: PLC0415

        config = DynauthConfig(
            config_file=str(config_path),
            schema_file="bundled",
        )
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(1)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"failed to load configuration: {exc}")
        sys.exit(1)

    # -- replace bootstrap logging with structured logging ---
    from dynauth.logging import configure_logging  # noqa: PLC0415

    configure_logging(config.settings.logging)
    if args.debug:
        logging.getLogger("dynauth").setLevel(logging.DEBUG)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(0)

    command = args.command

    if command == "ca":
        from dynauth.cli.commands.ca import run_ca  # noqa: PLC0415

        run_ca(config, args)
    else:
        # No subcommand means run.
        from dynauth.cli.commands.run import run_operator  # noqa: PLC0415

        _print_settings_summary(config)
        run_operator(config, args)


def _print_settings_summary(config: DynauthConfig) -> None:
    """Print a short summary of the loaded configuration."""
    s = config.settings
    lines = [
        f"config:      {config._config_path}",  # noqa: SLF001
        f"ca secret:   {s.authority.namespace}/{s.authority.ca_secret}",
        f"ca duration: {s.authority.ca_duration} (renew before {s.authority.renew_before})",
        f"injectables: {', '.join(s.authority.injectables) or '-'}",
        f"https:       {f'{s.server.bind}:{s.server.port}' if s.server.enabled else 'disabled'}",
    ]
    print("\n".join(lines), file=sys.stderr)  # noqa: T201
