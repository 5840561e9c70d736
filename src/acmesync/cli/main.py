"""acmesync command-line entry point.

Usage::

    acmesync -c /etc/acmesync/config.yaml
    acmesync -c config.yaml --validate-only
    acmesync -c config.yaml run
    acmesync -c config.yaml check issuer letsencrypt-staging
    acmesync -c config.yaml status
    acmesync -c config.yaml request create --issuer letsencrypt-staging \\
        --domain '*.example.com' --secret wildcard-tls --namespace production
    acmesync -c config.yaml request list --state failed
    python -m acmesync -c config.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

log = logging.getLogger(__name__)


def _get_version() -> str:
    from acmesync import __version__  # noqa: PLC0415

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acmesync",
        description="acmesync: ACME DNS-01 certificate reconciliation controller",
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
    subparsers.add_parser("run", help="Run the reconciliation controller (default)")

    # check
    check_parser = subparsers.add_parser("check", help="Check external dependencies")
    check_sub = check_parser.add_subparsers(dest="check_command")
    issuer_check = check_sub.add_parser(
        "issuer",
        help="Verify DNS credentials, zone access and TXT propagation for an issuer",
    )
    issuer_check.add_argument("name", help="Issuer name from the configuration")
    issuer_check.add_argument(
        "--skip-propagation",
        action="store_true",
        default=False,
        help="Only publish and delete the test record; do not wait for resolvers.",
    )
    issuer_check.add_argument(
        "--acme",
        action="store_true",
        default=False,
        help="Also register / load the ACME account.",
    )

    # status
    subparsers.add_parser("status", help="Show stored requests and their states")

    # request
    request_parser = subparsers.add_parser("request", help="Manage certificate requests")
    request_sub = request_parser.add_subparsers(dest="request_command")

    create = request_sub.add_parser("create", help="Create (or coalesce) a request")
    create.add_argument("--issuer", required=True, help="Issuer name")
    create.add_argument(
        "--domain",
        dest="domains",
        action="append",
        required=True,
        help="Domain name (repeatable)",
    )
    create.add_argument("--secret", dest="secret_name", required=True, help="Secret name")
    create.add_argument(
        "--namespace",
        dest="namespaces",
        action="append",
        required=True,
        help="Target namespace (repeatable)",
    )

    list_parser = request_sub.add_parser("list", help="List requests")
    list_parser.add_argument(
        "--state",
        action="append",
        default=None,
        help="Only show requests in this state (repeatable)",
    )

    for name, help_text in [
        ("show", "Show one request with its attempt history"),
        ("delete", "Flag a request for deletion"),
        ("retry", "Re-trigger a failed request or force renewal"),
    ]:
        p = request_sub.add_parser(name, help=help_text)
        p.add_argument("request_id", help="Request UUID")

    revoke = request_sub.add_parser("revoke", help="Flag a certificate for revocation")
    revoke.add_argument("request_id", help="Request UUID")
    revoke.add_argument("--reason", default="unspecified", help="Revocation reason")

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"error: {message}", file=sys.stderr)  # noqa: T201


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
        from acmesync.config import AcmesyncConfig, ConfigValidationError  # noqa: PLC0415

        config = AcmesyncConfig(config_file=str(config_path))
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(1)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"failed to load configuration: {exc}")
        sys.exit(1)

    # -- replace bootstrap logging with structured logging ---
    from acmesync.logging import configure_logging  # noqa: PLC0415

    configure_logging(config.settings.logging)
    if args.debug:
        logging.getLogger("acmesync").setLevel(logging.DEBUG)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(0)

    command = args.command

    if command == "check":
        from acmesync.cli.commands.check import run_check  # noqa: PLC0415

        run_check(config, args)
    elif command == "status":
        from acmesync.cli.commands.status import run_status  # noqa: PLC0415

        run_status(config, args)
    elif command == "request":
        from acmesync.cli.commands.request import run_request  # noqa: PLC0415

        run_request(config, args)
    else:
        # Default: run the controller
        _print_settings_summary(config)
        from acmesync.cli.commands.run import run_controller  # noqa: PLC0415

        run_controller(config, args)


def _print_settings_summary(config) -> None:
    """Print a short summary of the loaded configuration."""
    s = config.settings
    lines = [
        f"config:       {config.data.get('_source', '?')}",
        f"storage:      {s.storage.backend}",
        f"secrets:      {s.secrets.backend}",
        f"providers:    {', '.join(p.name for p in s.providers) or '-'}",
        f"issuers:      {', '.join(f'{i.name} ({i.environment}, {i.zone})' for i in s.issuers) or '-'}",
        f"certificates: {len(s.certificates)} declared",
        f"interval:     {s.controller.reconcile_interval_seconds}s",
        f"api:          {f'{s.api.host}:{s.api.port}' if s.api.enabled else 'disabled'}",
    ]
    print("\n".join(lines))  # noqa: T201
