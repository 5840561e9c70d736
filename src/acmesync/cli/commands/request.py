"""``request`` and ``status`` helpers: operate on stored certificate requests.

These commands talk to the configured request store directly and only
set flags; a running controller picks the change up on its next tick.
They require ``storage.backend: database`` because the in-memory store
lives inside the controller process.

Usage::

    acmesync -c config.yaml request create --issuer le-staging \\
        --domain example.com --domain www.example.com \\
        --secret example-tls --namespace web
    acmesync -c config.yaml request list --state failed
    acmesync -c config.yaml request retry 0b9c...
"""

from __future__ import annotations

import json
import logging
import sys
from uuid import UUID

log = logging.getLogger(__name__)


def _fail(message: str) -> None:
    print(f"error: {message}", file=sys.stderr)  # noqa: T201
    sys.exit(1)


def build_controller(settings):
    """Return a :class:`Controller` bound to the configured database store."""
    from acmesync.app.context import build_request_store  # noqa: PLC0415
    from acmesync.reconciler import Controller  # noqa: PLC0415

    if settings.storage.backend != "database":
        _fail("request commands need storage.backend: database")
    return Controller(build_request_store(settings))


def _check_issuer(settings, issuer_name: str, domains: list[str]) -> None:
    from acmesync.core.domains import in_zone, normalize_domains  # noqa: PLC0415

    entry = settings.issuer(issuer_name)
    if entry is None:
        _fail(f"unknown issuer '{issuer_name}'")
    try:
        normalized = normalize_domains(domains)
    except ValueError as exc:
        _fail(str(exc))
    outside = [d for d in normalized if not in_zone(d, entry.zone)]
    if outside:
        _fail(f"domains {outside} are outside zone '{entry.zone}'")


def run_request(config, args, controller=None) -> None:
    """Dispatch request subcommands."""
    from acmesync.api.serializers import serialize_request  # noqa: PLC0415
    from acmesync.core.types import RequestState  # noqa: PLC0415
    from acmesync.reconciler import InvalidOperationError, RequestNotFoundError  # noqa: PLC0415

    sub = getattr(args, "request_command", None)
    if sub is None:
        _fail("missing request subcommand (create, list, show, delete, retry, revoke)")

    settings = config.settings
    if controller is None:
        controller = build_controller(settings)

    try:
        if sub == "create":
            _check_issuer(settings, args.issuer, args.domains)
            req, created = controller.create(
                args.issuer, args.domains, args.secret_name, args.namespaces
            )
            verb = "created" if created else "already active"
            print(f"{req.id} {verb} ({req.state.value})")  # noqa: T201
        elif sub == "list":
            states = [RequestState(s) for s in args.state] if args.state else None
            print_table(controller.list(states))
        elif sub == "show":
            req = controller.get(UUID(args.request_id))
            print(json.dumps(serialize_request(req, detailed=True), indent=2))  # noqa: T201
        elif sub == "delete":
            req = controller.delete(UUID(args.request_id))
            print(f"{req.id} flagged for deletion")  # noqa: T201
        elif sub == "retry":
            req = controller.retry(UUID(args.request_id))
            print(f"{req.id} flagged for re-trigger")  # noqa: T201
        elif sub == "revoke":
            req = controller.revoke(UUID(args.request_id), args.reason)
            print(f"{req.id} flagged for revocation ({args.reason})")  # noqa: T201
        else:
            _fail(f"unknown request subcommand '{sub}'")
    except (RequestNotFoundError, InvalidOperationError) as exc:
        _fail(str(exc))
    except ValueError as exc:
        _fail(f"invalid argument: {exc}")


def _namespace_label(req, namespace: str) -> str:
    if namespace in req.failed_namespaces:
        return f"{namespace}(failed)"
    if any(d.namespace == namespace for d in req.distributed):
        return namespace
    return f"{namespace}(pending)"


def print_table(requests) -> None:
    """Print requests as a fixed-width table."""
    header = ("ID", "ISSUER", "STATE", "EXPIRES", "DOMAINS", "NAMESPACES")
    rows = [header]
    for req in requests:
        namespaces = ",".join(_namespace_label(req, ns) for ns in req.namespaces)
        rows.append(
            (
                str(req.id),
                req.issuer_name,
                req.state.value,
                req.expires_at.strftime("%Y-%m-%d") if req.expires_at else "-",
                ",".join(req.domains),
                namespaces,
            )
        )
    widths = [max(len(row[i]) for row in rows) for i in range(len(header))]
    for row in rows:
        print("  ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip())  # noqa: T201
